from __future__ import annotations

from enum import Enum
import json
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import Any, Dict, Mapping, Optional, Protocol


class Defaults(str, Enum):
    MEETINGS = "meetings"
    NOTIFICATION_OFFSET_MINUTES = "notification_offset_minutes"
    DEFAULT_MEETING_DATE_OFFSET = "default_meeting_date_offset"
    PENDING_NOTIFICATIONS = "pending_notifications"


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def register_defaults(self, defaults: Mapping[str, Any]) -> None:
        ...


def _key(key: str | Defaults) -> str:
    return key.value if isinstance(key, Defaults) else key


class MemoryBackend:
    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self._defaults: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register_defaults(self, defaults: Mapping[str, Any]) -> None:
        with self._lock:
            self._defaults.update({_key(k): v for k, v in defaults.items()})

    def get(self, key: str | Defaults) -> Optional[Any]:
        name = _key(key)
        with self._lock:
            if name in self._values:
                return self._values[name]
            return self._defaults.get(name)

    def set(self, key: str | Defaults, value: Any) -> None:
        with self._lock:
            self._values[_key(key)] = value


class JsonFileBackend(MemoryBackend):
    """Key-value backend kept in a single JSON document.

    Values live in memory; every ``set`` rewrites the whole document through a
    temporary file and ``os.replace``, so a reader never sees a partial file.
    Values must be JSON-serializable.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._logger = logging.getLogger("reminder.storage")
        super().__init__(self._read())

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Invalid key-value document in {self.path}")
        self._logger.debug("Loaded %s keys from %s", len(data), self.path)
        return data

    def set(self, key: str | Defaults, value: Any) -> None:
        with self._lock:
            self._values[_key(key)] = value
            self._write(self._values)

    def _write(self, values: Mapping[str, Any]) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(values, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
