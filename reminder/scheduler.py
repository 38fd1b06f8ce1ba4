from __future__ import annotations

import logging
from typing import Optional

from reminder.models import Meeting, PendingNotification
from reminder.notifications import (
    NotificationService,
    delivery_time_for,
    find_pending,
    identifier_for,
    payload_for,
)


class Scheduler:
    """Creates, finds and cancels the single reminder linked to each meeting.

    Lookup and the following schedule/cancel are separate calls to the
    notification service, not one atomic step.
    """

    def __init__(self, service: NotificationService) -> None:
        self.service = service
        self._logger = logging.getLogger("reminder.scheduler")

    def lookup(self, meeting: Meeting) -> Optional[PendingNotification]:
        return find_pending(
            self.service.list_pending_notifications(), identifier_for(meeting)
        )

    def schedule(self, meeting: Meeting, lead_time_minutes: float) -> None:
        if self.lookup(meeting) is not None:
            self._logger.debug("Reminder for %s already scheduled", meeting.id)
            return
        payload = payload_for(meeting)
        self.service.schedule_notification(
            identifier_for(meeting),
            payload.title,
            payload.body,
            delivery_time_for(meeting, lead_time_minutes),
            payload.actions,
        )

    def unschedule(self, meeting: Meeting) -> None:
        notification = self.lookup(meeting)
        if notification is None:
            self._logger.debug("No pending reminder for %s", meeting.id)
            return
        self.service.cancel_notification(notification.id)
