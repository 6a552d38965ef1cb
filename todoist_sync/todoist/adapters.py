"""
Adapters from raw Todoist API payloads to ``RemoteTask``.

The task endpoints and the completed-items archive describe a task
slightly differently. Each shape gets one adapter here so nothing
downstream inspects raw dicts.
"""

from typing import Any, Dict, Optional

from todoist_sync.core.models import RemoteTask


def is_legacy_id(task_id: Optional[str]) -> bool:
    """Legacy Todoist IDs are purely numeric."""
    return bool(task_id) and str(task_id).isdigit()


def is_canonical_id(task_id: Optional[str]) -> bool:
    """Current Todoist IDs are alphanumeric and contain at least one letter."""
    if not task_id:
        return False
    text = str(task_id)
    return text.isalnum() and any(ch.isalpha() for ch in text)


def _pick_id(*candidates: Any) -> Optional[str]:
    """First canonical candidate, else the first non-empty one."""
    values = [str(c) for c in candidates if c not in (None, "")]
    for value in values:
        if is_canonical_id(value):
            return value
    return values[0] if values else None


def _legacy_of(*candidates: Any) -> Optional[str]:
    for value in candidates:
        if value not in (None, "") and is_legacy_id(str(value)):
            return str(value)
    return None


def _due_date(raw: Dict[str, Any]) -> Optional[str]:
    due = raw.get("due")
    if isinstance(due, dict):
        value = due.get("date") or due.get("datetime")
        return str(value)[:10] if value else None
    if isinstance(due, str):
        return due[:10]
    return None


def from_rest_task(raw: Dict[str, Any]) -> RemoteTask:
    """``GET /tasks/{id}`` and ``GET /tasks`` objects."""
    completed = raw.get("checked")
    if completed is None:
        completed = raw.get("is_completed", False)
    return RemoteTask(
        id=_pick_id(raw.get("v2_id"), raw.get("id")),
        content=raw.get("content") or "",
        completed=bool(completed),
        due_date=_due_date(raw),
        project_id=_pick_id(raw.get("v2_project_id"), raw.get("project_id")),
        legacy_id=_legacy_of(raw.get("v1_id"), raw.get("id")),
        completed_at=raw.get("completed_at"),
    )


def from_completed_item(raw: Dict[str, Any]) -> RemoteTask:
    """Entry of the completed-items archive; always complete."""
    return RemoteTask(
        id=_pick_id(raw.get("v2_task_id"), raw.get("task_id"), raw.get("id")),
        content=raw.get("content") or "",
        completed=True,
        due_date=_due_date(raw),
        project_id=_pick_id(raw.get("v2_project_id"), raw.get("project_id")),
        legacy_id=_legacy_of(raw.get("task_id")),
        completed_at=raw.get("completed_at"),
    )
