from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


_RELATIVE_RE = re.compile(r"^\+(\d{1,5})$")
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_MD_V2_ESCAPE_CHARS = r"_*[]()~`>#+-=|{}.!\\"
_MD_V2_ESCAPE_TABLE = str.maketrans(
    {ch: f"\\{ch}" for ch in _MD_V2_ESCAPE_CHARS}
)


def to_utc_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_local_dt(dt_utc: datetime, tz: ZoneInfo, with_date: bool = True) -> str:
    local_dt = dt_utc.astimezone(tz)
    if with_date:
        return local_dt.strftime("%Y-%m-%d %H:%M")
    return local_dt.strftime("%H:%M")


def escape_markdown_v2(text: str) -> str:
    return text.translate(_MD_V2_ESCAPE_TABLE)


def zero_seconds(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def parse_when(
    token: str, tz: ZoneInfo, now_utc: Optional[datetime] = None
) -> Optional[datetime]:
    """Parse a ``+minutes`` or ``HH:MM`` token into a UTC datetime.

    ``HH:MM`` refers to the next occurrence of that wall-clock time in ``tz``.
    Returns None when the token is neither form.
    """
    if now_utc is None:
        now_utc = datetime.now(timezone.utc)
    token = token.strip()

    match = _RELATIVE_RE.match(token)
    if match:
        return zero_seconds(now_utc + timedelta(minutes=int(match.group(1))))

    match = _CLOCK_RE.match(token)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    now_local = now_utc.astimezone(tz)
    candidate = now_local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now_local:
        candidate += timedelta(days=1)
    return candidate.astimezone(timezone.utc)
