from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List
import os

from dotenv import load_dotenv
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Settings:
    bot_token: str
    allowed_chat_ids: List[int]
    local_timezone: ZoneInfo
    store_path: Path
    notification_offset_minutes: int
    default_meeting_date_offset: int
    delivery_poll_interval: int
    log_level: str


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"Missing required env var: {name}")
    return value


def _get_int(name: str, default: int | None = None) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        if default is None:
            raise ValueError(f"Missing required env var: {name}")
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {name}: {value}") from exc


def _get_list(name: str) -> List[str]:
    value = os.getenv(name, "")
    if value == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_chat_ids(name: str) -> List[int]:
    raw = _get_list(name)
    if not raw:
        raise ValueError(f"Missing required env var: {name}")
    return [int(item) for item in raw]


def load_settings() -> Settings:
    load_dotenv(override=False)

    bot_token = _require_env("REMINDER_BOT_TOKEN")
    allowed_chat_ids = _parse_chat_ids("ALLOWED_CHAT_IDS")
    local_timezone = ZoneInfo(os.getenv("LOCAL_TIMEZONE", "UTC") or "UTC")
    store_path = Path(os.getenv("STORE_PATH", "meetings.json") or "meetings.json")

    notification_offset_minutes = _get_int("NOTIFICATION_OFFSET_MINUTES", 10)
    default_meeting_date_offset = _get_int("DEFAULT_MEETING_DATE_OFFSET", 3600)
    delivery_poll_interval = _get_int("DELIVERY_POLL_INTERVAL", 15)
    if notification_offset_minutes < 0:
        raise ValueError("NOTIFICATION_OFFSET_MINUTES must not be negative")
    if delivery_poll_interval <= 0:
        raise ValueError("DELIVERY_POLL_INTERVAL must be positive")

    log_level = os.getenv("LOG_LEVEL", "INFO")

    return Settings(
        bot_token=bot_token,
        allowed_chat_ids=allowed_chat_ids,
        local_timezone=local_timezone,
        store_path=store_path,
        notification_offset_minutes=notification_offset_minutes,
        default_meeting_date_offset=default_meeting_date_offset,
        delivery_poll_interval=delivery_poll_interval,
        log_level=log_level,
    )
