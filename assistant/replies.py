"""
assistant/replies.py

Flow handlers return one of these; the orchestrator matches on the type.
- Plain: text shown as-is
- NeedsChoice: numbered slot options; the orchestrator stores a suggestion marker
- NeedsConfirmation: a yes/no question about a pending event; stores a confirmation marker
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Plain:
    text: str


@dataclass(frozen=True)
class NeedsChoice:
    text: str
    suggestions: list = field(default_factory=list)
    parsed_input: dict = field(default_factory=dict)


@dataclass(frozen=True)
class NeedsConfirmation:
    text: str
    pending_id: str
    event_name: str


Reply = Plain | NeedsChoice | NeedsConfirmation
