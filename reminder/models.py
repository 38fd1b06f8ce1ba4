from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Tuple
import uuid


@dataclass(frozen=True)
class Meeting:
    id: uuid.UUID
    title: str
    date: datetime
    started: bool = False

    @classmethod
    def create(cls, title: str, date: datetime) -> Meeting:
        return cls(id=uuid.uuid4(), title=title, date=date, started=False)

    def started_copy(self) -> Meeting:
        return replace(self, started=True)


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    actions: Tuple[str, ...]


@dataclass(frozen=True)
class PendingNotification:
    id: str
    title: str
    body: str
    delivery_utc: datetime
    actions: Tuple[str, ...]


@dataclass(frozen=True)
class MeetingMove:
    meeting: Meeting
    old_index: int
    new_index: int
