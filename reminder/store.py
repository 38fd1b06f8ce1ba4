from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Iterable, List, Set
import uuid

from reminder.errors import MalformedRecordError
from reminder.models import Meeting
from reminder.storage import Defaults, KeyValueBackend


def meeting_to_record(meeting: Meeting) -> Dict[str, Any]:
    return {
        "title": meeting.title,
        "date": meeting.date.timestamp(),
        "started": meeting.started,
        "id": str(meeting.id),
    }


def _field(record: Dict[str, Any], name: str, expected: type | tuple) -> Any:
    if name not in record:
        raise MalformedRecordError(f"Missing `{name}` key")
    value = record[name]
    # bool is an int subclass; only `started` may hold one
    if isinstance(value, bool) and expected is not bool:
        raise MalformedRecordError(f"Invalid `{name}` key: {value!r}")
    if not isinstance(value, expected):
        raise MalformedRecordError(f"Invalid `{name}` key: {value!r}")
    return value


def meeting_from_record(record: Any) -> Meeting:
    if not isinstance(record, dict):
        raise MalformedRecordError(f"Meeting record is not a mapping: {record!r}")
    title = _field(record, "title", str)
    timestamp = _field(record, "date", (int, float))
    started = _field(record, "started", bool)
    raw_id = _field(record, "id", str)
    try:
        meeting_id = uuid.UUID(raw_id)
    except ValueError as exc:
        raise MalformedRecordError(f"Invalid `id` key: {raw_id!r}") from exc
    try:
        date = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedRecordError(f"Invalid `date` key: {timestamp!r}") from exc
    return Meeting(id=meeting_id, title=title, date=date, started=started)


def decode_meetings(blob: Any) -> List[Meeting]:
    if not isinstance(blob, list):
        raise MalformedRecordError("Persisted meetings are not a list")
    return [meeting_from_record(record) for record in blob]


def encode_meetings(meetings: Iterable[Meeting]) -> List[Dict[str, Any]]:
    return [meeting_to_record(meeting) for meeting in meetings]


class MeetingStore:
    """Persists the ordered meeting list under a single backend key.

    ``save`` does not block the caller: the list is serialized right away and
    written on a worker thread. Writes are applied in the order ``save`` was
    called, so the last call wins.
    """

    def __init__(self, backend: KeyValueBackend, key: str = Defaults.MEETINGS.value) -> None:
        self.backend = backend
        self.key = key
        self._write_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._logger = logging.getLogger("reminder.store")

    async def load(self) -> List[Meeting]:
        blob = await asyncio.to_thread(self.backend.get, self.key)
        if blob is None:
            self._logger.info("No persisted meetings, starting with an empty list")
            return []
        meetings = decode_meetings(blob)
        self._logger.info("Loaded %s meetings", len(meetings))
        return meetings

    def save(self, meetings: Iterable[Meeting]) -> asyncio.Task:
        records = encode_meetings(meetings)
        task = asyncio.get_running_loop().create_task(self._write(records))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, records: List[Dict[str, Any]]) -> None:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self.backend.set, self.key, records)
            except Exception:
                self._logger.exception("Failed to persist %s meetings", len(records))
                return
        self._logger.debug("Persisted %s meetings", len(records))

    async def flush(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
