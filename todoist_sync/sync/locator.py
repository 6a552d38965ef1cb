"""
Finds the current line of a tracked task inside the vault.

Documents are resolved by front-matter UID before path, so a renamed or
moved note is still found. Inside the document the task line is looked
up by anchor, then by Todoist ID, then at its last known index.
"""

import logging
from typing import Callable, Iterable, List, Optional, Set, Tuple

from todoist_sync.core.models import DocumentMethod, LocateMethod, LocatedTask, TaskStatus, TrackedTask
from todoist_sync.obsidian.parser import (
    extract_block_id,
    find_linked_task_id,
    find_owning_task_index,
    find_todoist_id,
    get_task_status,
    is_task_line,
)
from .hashing import ContentHasher


class TaskLocator:
    """Three-tier task line lookup over a VaultDocumentStore."""

    def __init__(
        self,
        store,
        aliases: Optional[Callable[[str], Iterable[str]]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self._aliases = aliases
        self.logger = logger or logging.getLogger(__name__)

    def _ids_for(self, task_id: str) -> Set[str]:
        """The task's own ID plus any legacy IDs that notes may still link."""
        ids = {task_id}
        if self._aliases is not None:
            ids.update(a for a in self._aliases(task_id) if a)
        return ids

    def resolve_document(self, task: TrackedTask) -> Optional[Tuple[str, DocumentMethod]]:
        """Current path of the task's note and how it was found."""
        if task.document_uid:
            if self.store.exists(task.document_path) and self.store.get_uid(task.document_path) == task.document_uid:
                return task.document_path, DocumentMethod.UID
            moved = self.store.find_by_uid(task.document_uid)
            if moved is not None:
                self.logger.debug(f"Note for {task.task_id} moved: {task.document_path} -> {moved.path}")
                return moved.path, DocumentMethod.UPDATED

        if self.store.exists(task.document_path):
            return task.document_path, DocumentMethod.PATH
        return None

    def find_line(self, lines: List[str], task: TrackedTask) -> Optional[Tuple[int, LocateMethod]]:
        ids = self._ids_for(task.task_id)

        if task.anchor:
            for index, line in enumerate(lines):
                if extract_block_id(line) == task.anchor and is_task_line(line):
                    return index, LocateMethod.ANCHOR

        for index, line in enumerate(lines):
            if find_todoist_id(line) not in ids:
                continue
            owner = find_owning_task_index(lines, index)
            if owner is not None:
                return owner, LocateMethod.ID_SEARCH

        index = task.line_index
        if 0 <= index < len(lines) and is_task_line(lines[index]):
            if find_linked_task_id(lines, index) in ids:
                return index, LocateMethod.LAST_LINE

        return None

    def get_task_content(self, task: TrackedTask) -> Optional[LocatedTask]:
        """Locate ``task`` and describe its current line, or None if it is gone."""
        resolved = self.resolve_document(task)
        if resolved is None:
            self.logger.debug(f"Document for task {task.task_id} not found: {task.document_path}")
            return None
        path, document_method = resolved

        try:
            lines = self.store.read_lines(path)
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Could not read {path}: {e}")
            return None

        found = self.find_line(lines, task)
        if found is None:
            self.logger.debug(f"Task {task.task_id} not found in {path}")
            return None
        index, method = found
        line = lines[index]
        anchor = extract_block_id(line)

        needs_update = (
            path != task.document_path
            or index != task.line_index
            or (anchor is not None and anchor != task.anchor)
        )
        return LocatedTask(
            document_path=path,
            line_index=index,
            line=line,
            completed=get_task_status(line) == TaskStatus.COMPLETED,
            content_hash=ContentHasher.hash_task_line(line),
            anchor=anchor,
            method=method,
            document_method=document_method,
            document_uid=task.document_uid or self.store.get_uid(path),
            needs_journal_update=needs_update,
        )
