"""Bounded queue of discoveries whose first remote fetch failed."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from todoist_sync.utils.date import from_iso, to_iso


@dataclass
class RetryEntry:
    task_id: str
    document_path: str
    line_index: int
    attempts: int
    next_attempt_at: datetime
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "document_path": self.document_path,
            "line_index": self.line_index,
            "attempts": self.attempts,
            "next_attempt_at": to_iso(self.next_attempt_at),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryEntry":
        return cls(
            task_id=str(data["task_id"]),
            document_path=data.get("document_path", ""),
            line_index=int(data.get("line_index", 0)),
            attempts=int(data.get("attempts", 1)),
            next_attempt_at=from_iso(data.get("next_attempt_at")),
            last_error=data.get("last_error"),
        )


class RetryQueue:
    """
    task ID -> attempt count and next eligible time.

    An entry is dropped once ``max_attempts`` fetches have failed; bulk
    healing picks such tasks up later.
    """

    def __init__(self, max_attempts: int = 3, delay: timedelta = timedelta(minutes=5)):
        self.max_attempts = max_attempts
        self.delay = delay
        self._entries: Dict[str, RetryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._entries

    def get(self, task_id: str) -> Optional[RetryEntry]:
        return self._entries.get(task_id)

    def entries(self) -> List[RetryEntry]:
        return list(self._entries.values())

    def enqueue(self, task_id: str, document_path: str, line_index: int, now: datetime,
                error: Optional[str] = None) -> Optional[RetryEntry]:
        """
        Record a failed attempt. Returns the entry, or None when the task has
        exhausted its attempts and was dropped.
        """
        entry = self._entries.get(task_id)
        if entry is None:
            entry = RetryEntry(task_id, document_path, line_index, 0, now)
            self._entries[task_id] = entry
        entry.attempts += 1
        entry.document_path = document_path
        entry.line_index = line_index
        entry.last_error = error
        entry.next_attempt_at = now + self.delay
        if entry.attempts >= self.max_attempts:
            del self._entries[task_id]
            return None
        return entry

    def due(self, now: datetime) -> List[RetryEntry]:
        return [e for e in self._entries.values() if e.next_attempt_at is None or e.next_attempt_at <= now]

    def remove(self, task_id: str) -> bool:
        return self._entries.pop(task_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]

    def load(self, rows: Iterable[Dict[str, Any]]) -> None:
        self._entries = {}
        for row in rows or []:
            try:
                entry = RetryEntry.from_dict(row)
            except (KeyError, TypeError, ValueError):
                continue
            self._entries[entry.task_id] = entry
