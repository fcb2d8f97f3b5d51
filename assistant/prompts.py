"""
assistant/prompts.py

Prompt templates for every gateway call. Structured prompts ask for strict JSON;
callers extract the first balanced span, so surrounding prose is tolerated.
"""

import json


CLASSIFY_PROMPT = """Classify the intent of the following text into one of these categories:
- research_intent: For requests about researching a topic
- calendar_intent: For scheduling events or meetings
- email_intent: For sending emails
- exit_intent: For exiting or ending the conversation
- chat_intent: For general conversation

Text: "{text}"

Intent:"""


def classify_prompt(text):
    return CLASSIFY_PROMPT.format(text=text)


def research_topic_prompt(text):
    return (
        f'Extract the research topic from this text: "{text}"\n'
        "Output just the topic with no additional text."
    )


def schedule_parse_prompt(text, today_iso):
    return (
        f'Parse this scheduling request: "{text}"\n'
        "Extract date (YYYY-MM-DD), start time (HH:MM 24h), end time or duration, title, attendees, location.\n"
        f"Today is {today_iso}.\n"
        "Return ONLY as JSON: {\n"
        '  "date": "YYYY-MM-DD or null", "time": "HH:MM or null", "endTime": "HH:MM or null",\n'
        '  "duration": minutes or null, "title": "event title", "description": "description or null",\n'
        '  "attendees": ["email1", "email2"], "location": "location or null"\n'
        "}"
    )


def mail_entities_prompt(text):
    return (
        f'Extract the following information from this text: "{text}"\n'
        "- to: The recipient's email (output MISSING if not found)\n"
        "- subject: The email subject (output MISSING if not found)\n"
        "- body: The email body (output MISSING if not found)\n\n"
        'Return as JSON like: {"to": "email or MISSING", "subject": "subject line or MISSING", "body": "email body or MISSING"}'
    )


def slot_suggestion_prompt(events, purpose, target_iso, duration):
    compact = [
        {
            "summary": ev.get("summary", "Untitled"),
            "start": (ev.get("start") or {}).get("dateTime") or (ev.get("start") or {}).get("date"),
            "end": (ev.get("end") or {}).get("dateTime") or (ev.get("end") or {}).get("date"),
        }
        for ev in events
    ]
    return (
        "Given the following events over a 5-day window:\n"
        f"{json.dumps(compact)}\n\n"
        f'And the purpose of the new event is: "{purpose}" ({duration} minutes)\n'
        f"Please suggest up to 3 optimal time slots on {target_iso} that would best suit the purpose "
        "and do not overlap existing events. Each suggestion should include a \"start\" (ISO format), "
        '"end" (ISO format) and "displayText" for human readability.\n'
        "Return only as JSON array:\n"
        '[{"start": "ISO string", "end": "ISO string", "displayText": "e.g., 10:00 AM - 11:00 AM"}]'
    )


def style_analysis_prompt(recipient, emails_text):
    return f"""Analyze these previous emails I've sent to {recipient}:

{emails_text}

Based on these actual emails, extract:
1. Common topics I've discussed with this person
2. Ongoing conversations or context
3. My typical email purpose with them
4. My tone and formality level
5. Specific vocabulary or terminology I commonly use
6. My typical greeting style
7. My typical closing style
8. Inside jokes or references between us
9. Any upcoming events or deadlines mentioned

Return ONLY as JSON: {{
  "relationship": "professional/personal/academic/etc",
  "tone": "observed tone",
  "greeting": "my typical greeting",
  "closing": "my typical closing",
  "style": "my writing style",
  "context": {{
    "previousTopics": ["topic1", "topic2"],
    "ongoingContext": "brief description of ongoing conversations",
    "typicalPurpose": "common purpose of my emails",
    "commonTerms": ["term1", "term2"],
    "relationshipDynamics": "description of relationship",
    "insideReferences": ["reference1"],
    "upcomingEvents": ["event1"]
  }}
}}"""


def context_check_prompt(purpose):
    return f"""Analyze this email purpose: "{purpose}"

Check if important context is missing that would be needed to write a complete email.
For example, check for:
- Missing names (who is "he/she/they/him/her"?)
- Missing specific details (what plan? which meeting? what time?)
- Vague references that need clarification

Return as JSON: {{
  "hasAllContext": true/false,
  "missingInfo": "description of what's missing or null if nothing is missing",
  "suggestedApproach": "how to handle writing the email given the available context"
}}"""


def humanized_email_prompt(recipient, purpose, profile, missing_info=None):
    ctx = profile.context
    history_lines = []
    if ctx.previousTopics:
        history_lines.append(f"- We've previously discussed: {', '.join(ctx.previousTopics[:3])}")
    if ctx.ongoingContext:
        history_lines.append(f"- Ongoing conversation: {ctx.ongoingContext}")
    if ctx.commonTerms:
        history_lines.append(f"- I often use phrases like: {', '.join(ctx.commonTerms[:5])}")
    if ctx.insideReferences:
        history_lines.append(f"- Inside references between us: {', '.join(ctx.insideReferences[:2])}")
    if missing_info:
        gaps = (
            f"- This purpose is missing some context: {missing_info}\n"
            "- Handle the gaps naturally, as a human would, without explicitly mentioning anything is missing"
        )
    else:
        gaps = "- The purpose has sufficient context"
    return f"""Generate a very natural, human-sounding email to {recipient} about: {purpose}.

My writing style based on previous emails:
- I typically use this greeting: {profile.greeting}
- I typically use this closing: {profile.closing}
- My writing tone is: {profile.tone}
- My relationship with this person is: {profile.relationship}

Previous context with this person:
{chr(10).join(history_lines) or "- None known"}

Important:
{gaps}

Email writing guidelines:
1. Write like a real human: contractions, casual language where it fits my tone
2. Don't be template-like; get to the point naturally
3. Don't use cliches like "I hope this email finds you well" unless that's my style
4. Format with "Subject:" on the first line, followed by the body starting with my typical greeting

Write the complete email now:"""


def subject_prompt(purpose):
    return (
        "Generate a natural, human-sounding email subject line for this purpose:\n"
        f'"{purpose}"\n\n'
        "Keep it short (3-7 words), conversational, without prefixes like \"Re:\" or \"Subject:\".\n"
        "Return ONLY the subject line text."
    )


def research_prompt(topic, summary, sources=("Wikipedia",)):
    cited = " and ".join(sources)
    return (
        f'Write a concise, engaging research summary about "{topic}" for a curious reader.\n'
        f"Base it on this source material:\n{summary}\n\n"
        f"Mention that the material comes from {cited}. Avoid generic introductions and forced enthusiasm."
    )
