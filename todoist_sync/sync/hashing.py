"""Content fingerprints used to detect edits without deep comparison."""

import hashlib
from typing import Optional


class ContentHasher:
    """Deterministic md5 fingerprints of task text."""

    @staticmethod
    def hash(text: Optional[str]) -> str:
        data = (text or "").encode("utf-8")
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    @classmethod
    def hash_task_line(cls, line: str) -> str:
        """Hash a task line, ignoring trailing whitespace."""
        return cls.hash(line.rstrip())

    @classmethod
    def hash_remote(cls, content: str, completed: bool, due_date: Optional[str] = None) -> str:
        return cls.hash(f"{content}|{int(completed)}|{due_date or ''}")
