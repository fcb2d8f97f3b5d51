from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from assistant.config import Settings
from assistant.orchestrator import Assistant


load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                    format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    session_id: str
    message: str
    user_id: str | None = None


ASSISTANT: Assistant | None = None


def get_assistant() -> Assistant:
    global ASSISTANT
    if ASSISTANT is None:
        ASSISTANT = Assistant.from_settings(Settings.from_env())
    return ASSISTANT


@asynccontextmanager
async def lifespan(_app: FastAPI):
    assistant = get_assistant()
    assistant.cache.start()
    logger.info("Cache sweeper started")
    try:
        yield
    finally:
        assistant.cache.stop()


app = FastAPI(title="Task Assistant API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/chat")
def chat(req: ChatRequest):
    user = (req.message or "").strip()
    if not user:
        return {"reply": ""}
    reply = get_assistant().handle_turn(req.session_id, req.user_id, user)
    return {"reply": reply}


@app.get("/api/history/{session_id}")
def history(session_id: str, limit: int = Query(10, ge=1, le=100)):
    return {"session_id": session_id, "messages": get_assistant().history(session_id, limit)}


@app.get("/api/cache/stats")
def cache_stats():
    return get_assistant().cache.stats()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3001)
