from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Iterable, List, Optional
import uuid

from reminder.errors import UnknownMeetingError
from reminder.models import Meeting, MeetingMove
from reminder.notifications import identifier_for
from reminder.scheduler import Scheduler
from reminder.storage import Defaults, KeyValueBackend
from reminder.store import MeetingStore
from reminder.utils import to_utc_datetime, zero_seconds


class MeetingListManager:
    """Owns the ordered meeting list.

    Not-started meetings come first; started ones form a trailing run with
    the most recently started at its front. Every mutation updates the list,
    then reminders, then persists the whole list. All methods must be called
    from the event loop that owns the manager.
    """

    def __init__(
        self,
        store: MeetingStore,
        scheduler: Scheduler,
        backend: KeyValueBackend,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.backend = backend
        self.meetings: List[Meeting] = []
        self._logger = logging.getLogger("reminder.manager")

    @property
    def lead_time_minutes(self) -> float:
        return float(self.backend.get(Defaults.NOTIFICATION_OFFSET_MINUTES.value) or 0)

    def default_meeting_date(self, now_utc: Optional[datetime] = None) -> datetime:
        if now_utc is None:
            now_utc = datetime.now(timezone.utc)
        offset = float(self.backend.get(Defaults.DEFAULT_MEETING_DATE_OFFSET.value) or 0)
        return zero_seconds(now_utc + timedelta(seconds=offset))

    async def initialize(self) -> None:
        loaded = await self.store.load()
        self.meetings = list(loaded)

    def index_of(self, meeting_id: uuid.UUID) -> Optional[int]:
        for index, meeting in enumerate(self.meetings):
            if meeting.id == meeting_id:
                return index
        return None

    def add(self, title: str, date: datetime) -> Optional[Meeting]:
        title = title.strip()
        if not title:
            self._logger.debug("Ignoring meeting with an empty title")
            return None
        meeting = Meeting.create(title, to_utc_datetime(date))
        self.scheduler.schedule(meeting, self.lead_time_minutes)
        self.meetings.insert(0, meeting)
        self.store.save(self.meetings)
        self._logger.info("Added meeting %s at %s", meeting.id, meeting.date)
        return meeting

    def remove(self, meeting_ids: Iterable[uuid.UUID]) -> List[Meeting]:
        wanted = set(meeting_ids)
        removed = [meeting for meeting in self.meetings if meeting.id in wanted]
        for meeting in removed:
            self.scheduler.unschedule(meeting)
        self.meetings = [meeting for meeting in self.meetings if meeting not in removed]
        self.store.save(self.meetings)
        self._logger.info("Removed %s meetings", len(removed))
        return removed

    def mark_started(self, meeting_id: uuid.UUID) -> MeetingMove:
        old_index = self.index_of(meeting_id)
        if old_index is None:
            raise UnknownMeetingError(f"Meeting {meeting_id} is not in the list")
        if self.meetings[old_index].started:
            # Started is a one-way transition; the trailing run keeps its order.
            self._logger.debug("Meeting %s already started", meeting_id)
            return MeetingMove(
                meeting=self.meetings[old_index], old_index=old_index, new_index=old_index
            )
        meeting = self.meetings.pop(old_index)
        self.scheduler.unschedule(meeting)

        started = meeting.started_copy()
        new_index = next(
            (index for index, item in enumerate(self.meetings) if item.started),
            len(self.meetings),
        )
        self.meetings.insert(new_index, started)
        self.store.save(self.meetings)
        self._logger.info(
            "Meeting %s started, moved from %s to %s", meeting_id, old_index, new_index
        )
        return MeetingMove(meeting=started, old_index=old_index, new_index=new_index)

    def accept_external_activation(self, notification_id: str) -> Optional[int]:
        for index, meeting in enumerate(self.meetings):
            if identifier_for(meeting) == notification_id:
                return index
        self._logger.debug("No meeting for notification %s", notification_id)
        return None

    async def flush(self) -> None:
        await self.store.flush()
