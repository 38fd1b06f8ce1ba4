from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from reminder.models import Meeting, NotificationPayload, PendingNotification
from reminder.storage import Defaults, KeyValueBackend

NOTIFICATION_TITLE = "Meeting is coming!"
ACTION_OPEN = "open"
ACTION_DISMISS = "dismiss"


def identifier_for(meeting: Meeting) -> str:
    """Notification id for a meeting; ``uuid.UUID(identifier)`` gives the id back."""
    return str(meeting.id)


def delivery_time_for(meeting: Meeting, lead_time_minutes: float) -> datetime:
    # Not clamped: a lead time past "now" yields an overdue reminder.
    return meeting.date - timedelta(minutes=lead_time_minutes)


def payload_for(meeting: Meeting) -> NotificationPayload:
    return NotificationPayload(
        title=NOTIFICATION_TITLE,
        body=meeting.title,
        actions=(ACTION_OPEN, ACTION_DISMISS),
    )


class NotificationService(Protocol):
    def schedule_notification(
        self,
        identifier: str,
        title: str,
        body: str,
        delivery_utc: datetime,
        actions: Sequence[str],
    ) -> None:
        ...

    def cancel_notification(self, identifier: str) -> None:
        ...

    def list_pending_notifications(self) -> List[PendingNotification]:
        ...


def notification_to_record(notification: PendingNotification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "title": notification.title,
        "body": notification.body,
        "delivery": notification.delivery_utc.timestamp(),
        "actions": list(notification.actions),
    }


def notification_from_record(record: Dict[str, Any]) -> PendingNotification:
    return PendingNotification(
        id=record["id"],
        title=record["title"],
        body=record["body"],
        delivery_utc=datetime.fromtimestamp(record["delivery"], tz=timezone.utc),
        actions=tuple(record["actions"]),
    )


class NotificationCenter:
    """Pending reminders keyed by notification id.

    The pending set is written to the backend on every change so reminders
    scheduled before a restart are still pending afterwards. A change is
    applied in memory only after the write succeeded.

    Writes are synchronous and run on the calling thread, which is the event
    loop: with ``JsonFileBackend`` that is a small file rewrite, and it may
    wait on the backend lock while a ``MeetingStore`` write is in progress.
    """

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend
        self._logger = logging.getLogger("reminder.notifications")
        self._pending: Dict[str, PendingNotification] = {}
        for record in backend.get(Defaults.PENDING_NOTIFICATIONS.value) or []:
            notification = notification_from_record(record)
            self._pending[notification.id] = notification

    def _commit(self, pending: Dict[str, PendingNotification]) -> None:
        self.backend.set(
            Defaults.PENDING_NOTIFICATIONS.value,
            [notification_to_record(item) for item in pending.values()],
        )
        self._pending = pending

    def schedule_notification(
        self,
        identifier: str,
        title: str,
        body: str,
        delivery_utc: datetime,
        actions: Sequence[str],
    ) -> None:
        if not identifier:
            raise ValueError("Notification identifier must not be empty")
        if delivery_utc.tzinfo is None:
            raise ValueError("Notification delivery time must be timezone-aware")
        pending = dict(self._pending)
        pending[identifier] = PendingNotification(
            id=identifier,
            title=title,
            body=body,
            delivery_utc=delivery_utc.astimezone(timezone.utc),
            actions=tuple(actions),
        )
        self._commit(pending)
        self._logger.info("Scheduled notification %s for %s", identifier, delivery_utc)

    def cancel_notification(self, identifier: str) -> None:
        if identifier not in self._pending:
            return
        pending = dict(self._pending)
        del pending[identifier]
        self._commit(pending)
        self._logger.info("Cancelled notification %s", identifier)

    def list_pending_notifications(self) -> List[PendingNotification]:
        return list(self._pending.values())

    def due(self, now_utc: Optional[datetime] = None) -> List[PendingNotification]:
        """Remove and return the reminders whose delivery time has come.

        If the backend write fails nothing is removed, so the same reminders
        are due again on the next call.
        """
        if now_utc is None:
            now_utc = datetime.now(timezone.utc)
        due_items = [
            item for item in self._pending.values() if item.delivery_utc <= now_utc
        ]
        if not due_items:
            return []
        self._commit(
            {
                key: item
                for key, item in self._pending.items()
                if item.delivery_utc > now_utc
            }
        )
        return sorted(due_items, key=lambda item: item.delivery_utc)


def find_pending(
    notifications: Iterable[PendingNotification], identifier: str
) -> Optional[PendingNotification]:
    for notification in notifications:
        if notification.id == identifier:
            return notification
    return None
