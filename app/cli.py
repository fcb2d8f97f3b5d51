"""
app/cli.py

Command-line chat loop around the assistant.
- Loads .env, configures logging from LOG_LEVEL (default WARNING)
- Reads user input, hands each line to Assistant.handle_turn and prints the reply
- Appends every exchange to transcripts/session-<stamp>.txt

Type 'quit' or 'exit' on its own line to leave without a farewell turn.
"""

import logging
import os
import uuid
from datetime import datetime, timezone

from dotenv import load_dotenv

from assistant.config import Settings
from assistant.orchestrator import Assistant


logger = logging.getLogger(__name__)


def _transcript_path():
    try:
        root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        transcripts_dir = os.path.join(root_dir, "transcripts")
        os.makedirs(transcripts_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return os.path.join(transcripts_dir, f"session-{stamp}.txt")
    except OSError as exc:
        logger.warning("Transcripts disabled: %s", exc)
        return None


def _append_transcript(path, user, reply):
    if not path:
        return
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"You: {user}\n")
            f.write(f"Assistant: {reply}\n")
    except OSError as exc:
        logger.warning("Could not write transcript: %s", exc)


def main():
    """Run the interactive CLI loop."""
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    assistant = Assistant.from_settings(settings)
    session_id = f"cli-{uuid.uuid4().hex[:8]}"
    user_id = os.getenv("USER") or None
    transcript_path = _transcript_path()

    print("Assistant (type 'exit' to quit)\n")
    while True:
        try:
            raw = input("You: ")
        except (EOFError, KeyboardInterrupt):
            print()
            break
        # pasted transcripts repeat the prompt prefix
        user = raw.replace("You:", "").replace("you:", "").replace("YOU:", "").strip()
        if not user:
            continue
        if user.lower() in {"exit", "quit"}:
            print("Bye!")
            break

        reply = assistant.handle_turn(session_id, user_id, user)
        print(f"Assistant: {reply}\n")
        _append_transcript(transcript_path, user, reply)


if __name__ == "__main__":
    main()
