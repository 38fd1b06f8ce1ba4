from __future__ import annotations


class ReminderError(Exception):
    """Base class for unrecoverable meeting list failures."""


class MalformedRecordError(ReminderError, ValueError):
    """A persisted meeting record is missing a field or has the wrong type."""


class UnknownMeetingError(ReminderError, LookupError):
    """An operation referenced a meeting id that is not in the list."""
