"""
In-memory Todoist client for tests.

Implements the subset of ``TodoistClient`` used by the detector, healer
and ID normalizer, and records every call so tests can assert on API
usage per method and per task ID.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional

from todoist_sync.core.exceptions import TaskNotFoundError
from todoist_sync.core.models import RemoteTask


class FakeTodoistClient:
    def __init__(self):
        self.tasks: Dict[str, RemoteTask] = {}
        self.archive: Dict[str, List[RemoteTask]] = {}
        self.errors: Dict[str, Exception] = {}
        self.bulk_error: Optional[Exception] = None
        self.completed_errors: Dict[str, Exception] = {}
        self.id_map: Dict[str, str] = {}
        self.api_calls = 0
        self.calls: Counter = Counter()
        self.task_fetches: Counter = Counter()
        self._lock = threading.Lock()

    # -- setup helpers -------------------------------------------------

    def add_task(self, task_id: str, content: str = "Task", completed: bool = False,
                 due_date: Optional[str] = None, project_id: str = "p1",
                 legacy_id: Optional[str] = None) -> RemoteTask:
        task = RemoteTask(
            id=task_id,
            content=content,
            completed=completed,
            due_date=due_date,
            project_id=project_id,
            legacy_id=legacy_id,
        )
        self.tasks[task_id] = task
        return task

    def archive_task(self, task_id: str, project_id: str = "p1", content: str = "Done") -> RemoteTask:
        """Put a completed task in the archive only (absent from the active listing)."""
        task = RemoteTask(id=task_id, content=content, completed=True, project_id=project_id)
        self.archive.setdefault(project_id, []).append(task)
        return task

    def set_completed(self, task_id: str, completed: bool) -> None:
        self.tasks[task_id] = replace(self.tasks[task_id], completed=completed)

    def delete_task(self, task_id: str) -> None:
        self.tasks.pop(task_id, None)

    # -- call recording ------------------------------------------------

    def _record(self, method: str, task_id: Optional[str] = None) -> None:
        with self._lock:
            self.api_calls += 1
            self.calls[method] += 1
            if task_id is not None:
                self.task_fetches[task_id] += 1

    def reset_counters(self) -> None:
        self.api_calls = 0
        self.calls.clear()
        self.task_fetches.clear()

    # -- client surface ------------------------------------------------

    def get_task(self, task_id: str) -> RemoteTask:
        self._record("get_task", task_id)
        if task_id in self.errors:
            raise self.errors[task_id]
        task = self.tasks.get(task_id)
        if task is None:
            for archived in self.archive.values():
                for item in archived:
                    if item.id == task_id:
                        return replace(item)
            raise TaskNotFoundError(f"get_task: not found ({task_id})")
        return replace(task)

    def get_tasks(self) -> List[RemoteTask]:
        self._record("get_tasks")
        if self.bulk_error is not None:
            raise self.bulk_error
        return [replace(t) for t in self.tasks.values() if not t.completed]

    def get_projects(self) -> List[Dict[str, str]]:
        self._record("get_projects")
        project_ids = {t.project_id for t in self.tasks.values()} | set(self.archive)
        return [{"id": pid} for pid in sorted(p for p in project_ids if p)]

    def iter_completed_for_project(self, project_id: str) -> Iterator[RemoteTask]:
        self._record("get_completed_items")
        if project_id in self.completed_errors:
            raise self.completed_errors[project_id]
        items = list(self.archive.get(project_id, []))
        items += [t for t in self.tasks.values() if t.completed and t.project_id == project_id]
        return iter([replace(t) for t in items])

    def get_id_mappings(self, legacy_ids: Iterable[str]) -> Dict[str, str]:
        self._record("id_mappings")
        return {i: self.id_map[i] for i in legacy_ids if i in self.id_map}

    def close(self) -> None:
        pass
