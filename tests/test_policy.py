"""
Tests for remote-check eligibility and prioritisation.
"""

from datetime import timedelta

import pytest

from todoist_sync.core.models import OrphanReason, ReconcileClass, SyncPolicy, TrackedTask
from todoist_sync.core.policy import classify, priority_key, should_check_remote_now
from todoist_sync.utils.date import utc_now


NOW = utc_now()
POLICY = SyncPolicy()


def make_task(local=False, remote=False, checked_ago=None, **kwargs):
    last = NOW - checked_ago if checked_ago is not None else None
    return TrackedTask(
        task_id=kwargs.pop("task_id", "abc123"),
        document_path="note.md",
        line_index=0,
        local_completed=local,
        remote_completed=remote,
        last_remote_check_at=last,
        **kwargs,
    )


class TestClassify:

    def test_order(self):
        assert classify(True, False, tombstoned=True, orphaned=True) is ReconcileClass.TOMBSTONED
        assert classify(True, False, orphaned=True) is ReconcileClass.ORPHANED
        assert classify(True, False) is ReconcileClass.MISMATCH
        assert classify(False, True) is ReconcileClass.MISMATCH
        assert classify(True, True) is ReconcileClass.BOTH_COMPLETE
        assert classify(False, False) is ReconcileClass.BOTH_OPEN


class TestShouldCheckRemote:

    @pytest.mark.parametrize("local, remote", [(True, False), (False, True)])
    def test_mismatch_always_checked(self, local, remote):
        task = make_task(local, remote, checked_ago=timedelta(seconds=1))
        assert should_check_remote_now(task, NOW, POLICY)

    def test_tombstoned_never_checked(self):
        task = make_task(True, False)
        assert not should_check_remote_now(task, NOW, POLICY, tombstoned=True)

    def test_both_open_respects_interval(self):
        assert not should_check_remote_now(make_task(checked_ago=timedelta(minutes=5)), NOW, POLICY)
        assert should_check_remote_now(make_task(checked_ago=timedelta(minutes=15)), NOW, POLICY)
        assert should_check_remote_now(make_task(), NOW, POLICY)

    def test_both_complete_cooldown(self):
        assert not should_check_remote_now(make_task(True, True, checked_ago=timedelta(hours=2)), NOW, POLICY)
        assert should_check_remote_now(make_task(True, True, checked_ago=timedelta(hours=25)), NOW, POLICY)

    def test_both_complete_ignored_when_tracking_disabled(self):
        policy = SyncPolicy(track_completed_tasks=False)
        task = make_task(True, True, checked_ago=timedelta(days=10))
        assert not should_check_remote_now(task, NOW, policy)

    def test_orphan_uses_retry_interval(self):
        recent = make_task(checked_ago=timedelta(hours=1), is_orphaned=True,
                           orphan_reason=OrphanReason.REMOTE_NOT_FOUND)
        stale = make_task(checked_ago=timedelta(hours=25), is_orphaned=True,
                          orphan_reason=OrphanReason.REMOTE_NOT_FOUND)
        assert not should_check_remote_now(recent, NOW, POLICY)
        assert should_check_remote_now(stale, NOW, POLICY)

    def test_not_found_window_uses_sync_interval(self):
        task = make_task(checked_ago=timedelta(minutes=1), remote_missing_since=NOW - timedelta(hours=1))
        assert not should_check_remote_now(task, NOW, POLICY)
        task.last_remote_check_at = NOW - timedelta(minutes=20)
        assert should_check_remote_now(task, NOW, POLICY)

    def test_mismatch_outranks_orphan_and_not_found_window(self):
        missing = make_task(True, False, checked_ago=timedelta(seconds=30),
                            remote_missing_since=NOW - timedelta(hours=1))
        orphan = make_task(False, True, checked_ago=timedelta(minutes=1), is_orphaned=True,
                           orphan_reason=OrphanReason.DOCUMENT_MISSING)
        assert should_check_remote_now(missing, NOW, POLICY)
        assert should_check_remote_now(orphan, NOW, POLICY)
        assert not should_check_remote_now(orphan, NOW, POLICY, tombstoned=True)


def test_priority_order():
    both_complete = make_task(True, True, task_id="c")
    both_open_late = make_task(task_id="b2", remote_due_date="2030-01-01")
    both_open_soon = make_task(task_id="b1", remote_due_date="2024-01-01")
    mismatch = make_task(True, False, task_id="m")

    ordered = sorted([both_complete, both_open_late, mismatch, both_open_soon], key=priority_key)
    assert [t.task_id for t in ordered] == ["m", "b1", "b2", "c"]
