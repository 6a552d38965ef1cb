"""
Remote-check eligibility policy.

Every decision about whether a tracked task is worth an API call goes
through ``classify`` so that the ordering below is encoded in one place:
mismatches are checked eagerly, agreement lazily, tombstones never.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from .models import ReconcileClass, SyncPolicy, TrackedTask


_PRIORITY_RANK = {
    ReconcileClass.MISMATCH: 0,
    ReconcileClass.BOTH_OPEN: 1,
    ReconcileClass.BOTH_COMPLETE: 2,
    ReconcileClass.ORPHANED: 3,
    ReconcileClass.TOMBSTONED: 4,
}


def classify(
    local_completed: bool,
    remote_completed: bool,
    tombstoned: bool = False,
    orphaned: bool = False,
) -> ReconcileClass:
    """Place a task into its eligibility class."""
    if tombstoned:
        return ReconcileClass.TOMBSTONED
    if orphaned:
        return ReconcileClass.ORPHANED
    if local_completed != remote_completed:
        return ReconcileClass.MISMATCH
    if local_completed:
        return ReconcileClass.BOTH_COMPLETE
    return ReconcileClass.BOTH_OPEN


def classify_task(task: TrackedTask, tombstoned: bool = False) -> ReconcileClass:
    return classify(task.local_completed, task.remote_completed, tombstoned, task.is_orphaned)


def _interval_elapsed(last: Optional[datetime], now: datetime, interval: timedelta) -> bool:
    if last is None:
        return True
    return now - last >= interval


def should_check_remote_now(
    task: TrackedTask,
    now: datetime,
    policy: SyncPolicy,
    tombstoned: bool = False,
) -> bool:
    """
    Decide whether ``task`` deserves a remote fetch this cycle.

    Rules, first match wins:
    1. tombstoned: never
    2. local/remote mismatch: always, even while orphaned or missing remotely
    3. both complete with completed tracking disabled: never
    4. orphaned: once per orphan retry interval
    5. inside the not-found grace window: once per sync interval
    6. both complete: after the completed cooldown
    7. both open: after the sync interval
    """
    klass = classify_task(task, tombstoned)
    last = task.last_remote_check_at

    if klass is ReconcileClass.TOMBSTONED:
        return False
    if task.local_completed != task.remote_completed:
        return True
    if task.local_completed and not policy.track_completed_tasks:
        return False
    if klass is ReconcileClass.ORPHANED:
        return _interval_elapsed(last, now, policy.orphan_retry_interval)
    if task.remote_missing_since is not None:
        return _interval_elapsed(last, now, policy.sync_interval)
    if klass is ReconcileClass.BOTH_COMPLETE:
        return _interval_elapsed(last, now, policy.completed_check_cooldown)
    if klass is ReconcileClass.BOTH_OPEN:
        return _interval_elapsed(last, now, policy.sync_interval)
    return False


def priority_key(task: TrackedTask, tombstoned: bool = False) -> Tuple[int, str, str]:
    """Sort key: mismatch first, then both-open, then both-complete; earliest due date breaks ties."""
    rank = _PRIORITY_RANK[classify_task(task, tombstoned)]
    return (rank, task.remote_due_date or "9999-12-31", task.task_id)
