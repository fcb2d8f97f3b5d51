"""
assistant/postprocess.py

Post-processing applied to raw model output.
- extract_json_object / extract_json_array: decode the first balanced {...} / [...] span,
  tolerating prose or markdown fences around it
- split_subject_body: split a generated email into subject and body
- clean_line: strip quotes, bullets and markdown from a one-line answer
"""

from __future__ import annotations

import json

from assistant.errors import ParseError


def _first_balanced_span(text: str, opener: str, closer: str) -> str | None:
    """Return the first balanced opener..closer span, ignoring brackets inside JSON strings."""
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from here; try the next opener
        start = text.find(opener, start + 1)
    return None


def _decode(text: str | None, opener: str, closer: str, expected: type):
    if not text:
        raise ParseError("empty model response")
    span = _first_balanced_span(text, opener, closer)
    if span is None:
        raise ParseError(f"no {opener}...{closer} span in model response")
    try:
        value = json.loads(span)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON in model response: {exc}") from exc
    if not isinstance(value, expected):
        raise ParseError(f"expected a JSON {expected.__name__}")
    return value


def extract_json_object(text: str | None) -> dict:
    return _decode(text, "{", "}", dict)


def extract_json_array(text: str | None) -> list:
    return _decode(text, "[", "]", list)


def split_subject_body(generated: str) -> tuple[str, str]:
    """Split 'Subject: ...' + body. Subject is '' when the first line isn't a subject line."""
    text = generated.strip()
    lines = text.splitlines()
    if not lines or not lines[0].strip().lower().startswith("subject:"):
        return "", text
    subject = lines[0].split(":", 1)[1].strip().strip("*").strip()
    rest = lines[1:]
    # body starts at the first non-blank line after the subject
    while rest and not rest[0].strip():
        rest = rest[1:]
    return subject, "\n".join(rest).strip()


def clean_line(text: str | None) -> str:
    if not text:
        return ""
    line = text.strip().splitlines()[0] if text.strip() else ""
    line = line.lstrip("-*•# ").strip()
    return line.strip("\"'`*").strip()
