"""
assistant/config.py

Runtime settings read from the environment (a .env file is loaded by the entry points).
Completion-provider settings live with the client in llm/client.py.
"""

import os
from dataclasses import dataclass


def _env_int(name, default):
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name, default):
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class Settings:
    history_turns: int = 10
    cache_max_size: int = 100
    cache_default_ttl: float = 60.0
    cache_cleanup_interval: float = 300.0
    mail_flow_timeout: float = 15 * 60
    schedule_flow_timeout: float = 10 * 60
    session_idle_ttl: float = 60 * 60
    workday_start_hour: int = 9
    workday_end_hour: int = 17
    timezone: str | None = None
    google_access_token: str | None = None
    google_calendar_id: str = "primary"
    conversation_log: str | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls):
        return cls(
            history_turns=_env_int("HISTORY_TURNS", 10),
            cache_max_size=_env_int("CACHE_MAX_SIZE", 100),
            cache_default_ttl=_env_float("CACHE_DEFAULT_TTL", 60.0),
            cache_cleanup_interval=_env_float("CACHE_CLEANUP_INTERVAL", 300.0),
            mail_flow_timeout=_env_float("MAIL_FLOW_TIMEOUT", 15 * 60),
            schedule_flow_timeout=_env_float("SCHEDULE_FLOW_TIMEOUT", 10 * 60),
            session_idle_ttl=_env_float("SESSION_IDLE_TTL", 60 * 60),
            workday_start_hour=_env_int("WORKDAY_START_HOUR", 9),
            workday_end_hour=_env_int("WORKDAY_END_HOUR", 17),
            timezone=os.getenv("ASSISTANT_TZ") or None,
            google_access_token=os.getenv("GOOGLE_ACCESS_TOKEN") or None,
            google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
            conversation_log=os.getenv("CONVERSATION_LOG") or None,
            log_level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        )
