"""
Construction of TrackedTask entries.

Entries are built from a discovered vault line plus a normalized
RemoteTask (freshly fetched or taken from a bulk listing), or as a
minimal stub when no remote data is available. Partial updates for
existing entries are produced as keyword dicts for ``Journal.update_task``.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from todoist_sync.core.models import DiscoveredTask, LocatedTask, RemoteTask, TrackedTask
from todoist_sync.obsidian.parser import extract_block_id
from todoist_sync.todoist.adapters import is_canonical_id
from todoist_sync.utils.date import utc_now
from .hashing import ContentHasher


class EntryFactory:
    """Builds and updates the journal's representation of a task."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def _build(self, discovered: DiscoveredTask, remote: RemoteTask, now: datetime) -> TrackedTask:
        task_id = discovered.task_id
        if remote.id and is_canonical_id(remote.id) and not is_canonical_id(task_id):
            task_id = remote.id
        return TrackedTask(
            task_id=task_id,
            document_path=discovered.document_path,
            line_index=discovered.line_index,
            document_uid=discovered.document_uid,
            anchor=discovered.anchor or extract_block_id(discovered.line),
            local_completed=discovered.completed,
            remote_completed=remote.completed,
            local_content_hash=ContentHasher.hash_task_line(discovered.line),
            remote_content_hash=ContentHasher.hash_remote(remote.content, remote.completed, remote.due_date),
            discovered_at=now,
            last_local_check_at=now,
            last_remote_check_at=now,
            last_remote_seen_at=now,
            last_anchor_validation_at=now,
            remote_due_date=remote.due_date,
            project_id=remote.project_id,
        )

    def from_remote(self, discovered: DiscoveredTask, remote: RemoteTask) -> TrackedTask:
        """Entry for a task fetched individually."""
        return self._build(discovered, remote, self.clock())

    def from_bulk(self, discovered: DiscoveredTask, remote: RemoteTask) -> TrackedTask:
        """
        Entry for a task found in a bulk listing.

        Completed-archive items carry no due date; the entry is otherwise
        identical to an individually fetched one.
        """
        return self._build(discovered, remote, self.clock())

    def minimal(self, task_id: str, document_path: str, line_index: int, line: str = "",
                completed: bool = False, document_uid: Optional[str] = None) -> TrackedTask:
        """
        Stub entry with no remote data.

        The remote side is assumed to agree with the note and has never been
        checked, so the eligibility policy fetches it on the next cycle.
        """
        now = self.clock()
        return TrackedTask(
            task_id=task_id,
            document_path=document_path,
            line_index=line_index,
            document_uid=document_uid,
            anchor=extract_block_id(line) if line else None,
            local_completed=completed,
            remote_completed=completed,
            local_content_hash=ContentHasher.hash_task_line(line) if line else None,
            discovered_at=now,
            last_local_check_at=now if line else None,
        )

    def location_changes(self, task: TrackedTask, located: LocatedTask) -> Dict[str, Any]:
        """Fields to write back after TaskLocator found the task somewhere new."""
        changes: Dict[str, Any] = {}
        if located.needs_journal_update:
            if located.document_path != task.document_path:
                changes["document_path"] = located.document_path
            if located.line_index != task.line_index:
                changes["line_index"] = located.line_index
            if located.anchor and located.anchor != task.anchor:
                changes["anchor"] = located.anchor
        if located.document_uid and located.document_uid != task.document_uid:
            changes["document_uid"] = located.document_uid
        if task.document_missing_since is not None:
            changes["document_missing_since"] = None
        changes["last_anchor_validation_at"] = self.clock()
        return changes

    def remote_changes(self, remote: RemoteTask) -> Dict[str, Any]:
        """Fields to write after a successful remote observation."""
        now = self.clock()
        return {
            "remote_completed": remote.completed,
            "remote_content_hash": ContentHasher.hash_remote(remote.content, remote.completed, remote.due_date),
            "remote_due_date": remote.due_date,
            "project_id": remote.project_id,
            "last_remote_check_at": now,
            "last_remote_seen_at": now,
            "remote_missing_since": None,
        }
