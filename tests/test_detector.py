"""
Tests for ChangeDetector: discovery, comparison and instruction decisions.
"""

import os
import time

import pytest

from todoist_sync.core.exceptions import RemoteUnavailableError, TaskAccessDeniedError
from todoist_sync.core.models import OrphanReason, SyncDirection, TombstoneReason


def link(task_id):
    return f"[todoist](https://todoist.com/app/task/{task_id})"


def task_line(text, task_id, done=False):
    return f"- [{'x' if done else ' '}] {text} {link(task_id)}"


class TestDiscovery:

    def test_link_on_child_line_is_discovered(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", "- [ ] Buy milk\n    [todoist](https://todoist.com/app/task/123456)\n")
        fake_client.add_task("123456", "Buy milk")

        changes = detector.detect_changes()

        assert len(changes.new_tasks) == 1
        task = journal.get_task("123456")
        assert task.local_completed is False
        assert task.remote_completed is False
        assert task.document_path == "Inbox.md"
        assert task.line_index == 0

    def test_legacy_link_is_tracked_under_canonical_id(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Buy milk", "123456") + "\n")
        fake_client.id_map = {"123456": "abc123"}
        fake_client.add_task("abc123", "Buy milk", legacy_id="123456")

        detector.detect_changes()

        assert journal.has_task("abc123")
        assert not journal.has_task("123456")

    def test_repeated_cycles_are_idempotent(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        fake_client.add_task("abc1", "Buy milk")

        first = detector.detect_changes()
        second = detector.detect_changes()

        assert len(first.new_tasks) == 1
        assert second.new_tasks == []
        assert second.instructions == []
        assert second.modified_tasks == []
        assert fake_client.task_fetches["abc1"] == 1
        assert len(journal.tasks) == 1

    def test_same_id_linked_twice_is_tracked_once(self, vault, detector, fake_client, journal):
        vault.write("a.md", task_line("One", "abc1") + "\n")
        vault.write("b.md", task_line("Copy", "abc1") + "\n")
        fake_client.add_task("abc1")

        changes = detector.detect_changes()

        assert len(changes.new_tasks) == 1
        assert journal.get_task("abc1").document_path == "a.md"

    def test_not_found_is_tombstoned_and_never_fetched_again(self, vault, detector, fake_client, journal, clock):
        vault.write("Inbox.md", task_line("Deleted remotely", "gone1") + "\n")

        for _ in range(3):
            detector.detect_changes()
            clock.advance(hours=30)
            vault.write("Inbox.md", task_line("Deleted remotely", "gone1") + "\n")

        assert journal.is_task_deleted("gone1")
        assert journal.get_deleted_task("gone1").reason == TombstoneReason.REMOTE_DELETED
        assert fake_client.task_fetches["gone1"] == 1

    def test_access_denied_is_tombstoned_as_inaccessible(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Shared", "priv1") + "\n")
        fake_client.errors["priv1"] = TaskAccessDeniedError("forbidden")

        detector.detect_changes()

        stone = journal.get_deleted_task("priv1")
        assert stone.reason == TombstoneReason.REMOTE_INACCESSIBLE
        assert stone.http_status == 403

    def test_transient_failure_is_retried_later(self, vault, detector, fake_client, journal, clock):
        vault.write("Inbox.md", task_line("Flaky", "abc1") + "\n")
        fake_client.add_task("abc1")
        fake_client.errors["abc1"] = RemoteUnavailableError("503")

        detector.detect_changes()
        assert not journal.has_task("abc1")
        assert "abc1" in journal.retry_queue

        del fake_client.errors["abc1"]
        detector.detect_changes()
        assert not journal.has_task("abc1")

        clock.advance(minutes=6)
        changes = detector.detect_changes()
        assert journal.has_task("abc1")
        assert "abc1" not in journal.retry_queue
        assert [t.task_id for t in changes.new_tasks] == ["abc1"]

    def test_warm_scan_skips_untouched_notes(self, vault, detector, fake_client, journal, clock):
        lines = []
        for i in range(5):
            fake_client.add_task(f"abc{i}")
            lines.append(task_line(f"Task {i}", f"abc{i}"))
        vault.write("a.md", "\n".join(lines) + "\n")
        detector.detect_changes()

        path = vault.write("old.md", task_line("Old note", "old1") + "\n")
        fake_client.add_task("old1")
        stale = time.time() - 3 * 24 * 3600
        os.utime(path, (stale, stale))

        detector.detect_changes()
        assert not journal.has_task("old1")

        clock.advance(hours=25)
        detector.detect_changes()
        assert journal.has_task("old1")

    def test_undecodable_note_does_not_abort_cycle(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        (vault.root / "bad.md").write_bytes(b"- [ ] broken \xff\xfe " + link("abc2").encode() + b"\n")
        fake_client.add_task("abc1", "Buy milk")
        fake_client.add_task("abc2", "Broken")

        changes = detector.detect_changes()

        assert [t.task_id for t in changes.new_tasks] == ["abc1"]
        assert not journal.has_task("abc2")

    def test_tombstoned_legacy_link_costs_no_calls(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Gone", "999999") + "\n")

        detector.detect_changes()
        assert journal.is_task_deleted("999999")

        fake_client.reset_counters()
        for _ in range(3):
            detector.detect_changes()
        assert sum(fake_client.calls.values()) == 0

    def test_known_ids_skip_id_lookup(self, vault, detector, fake_client, journal):
        journal.mark_as_deleted("888888", TombstoneReason.USER_REMOVED)
        vault.write("Inbox.md", task_line("Removed", "888888") + "\n")

        detector.detect_changes()

        assert fake_client.calls["id_mappings"] == 0
        assert fake_client.task_fetches["888888"] == 0

    def test_full_vault_scan_makes_no_api_calls(self, vault, detector, fake_client):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n" + task_line("Buy milk again", "abc1", done=True) + "\n")
        vault.write("Work.md", "# Work\n" + task_line("Report", "123456", done=True) + "\n")

        found = detector.scan_all_files_for_task_ids()

        assert set(found) == {"abc1", "123456"}
        assert found["abc1"].line_index == 0
        assert found["abc1"].completed is False
        assert found["123456"].document_path == "Work.md"
        assert found["123456"].completed is True
        assert sum(fake_client.calls.values()) == 0

    def test_discovery_records_scan_time(self, vault, detector, fake_client, journal, clock):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        fake_client.add_task("abc1", "Buy milk")
        assert journal.last_scan_at is None

        new_tasks = detector.discover_new_tasks()

        assert [t.task_id for t in new_tasks] == ["abc1"]
        assert journal.last_scan_at == clock()


class TestComparison:

    @pytest.fixture
    def tracked(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        fake_client.add_task("abc1", "Buy milk")
        detector.detect_changes()
        return journal.get_task("abc1")

    def test_local_completion_emits_one_instruction(self, tracked, vault, detector, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1", done=True) + "\n")

        changes = detector.detect_changes()

        assert len(changes.instructions) == 1
        instruction = changes.instructions[0]
        assert instruction.task_id == "abc1"
        assert instruction.direction == SyncDirection.LOCAL_TO_REMOTE
        assert instruction.new_completed is True
        assert journal.get_task("abc1").local_completed is True

        again = detector.detect_changes()
        assert again.instructions == []
        assert len(journal.get_pending_instructions()) == 1

    def test_remote_completion_emits_remote_to_local(self, tracked, detector, fake_client, clock):
        fake_client.set_completed("abc1", True)
        clock.advance(minutes=16)

        changes = detector.detect_changes()

        assert len(changes.instructions) == 1
        assert changes.instructions[0].direction == SyncDirection.REMOTE_TO_LOCAL
        assert changes.instructions[0].new_completed is True

    def test_persistent_mismatch_is_pushed_by_completion(self, tracked, vault, detector, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1", done=True) + "\n")
        journal.update_task("abc1", local_completed=True)

        changes = detector.detect_changes()

        assert len(changes.instructions) == 1
        instruction = changes.instructions[0]
        assert instruction.direction == SyncDirection.LOCAL_TO_REMOTE
        assert instruction.new_completed is True

    def test_undecodable_tracked_note_is_skipped(self, tracked, vault, detector, journal):
        (vault.root / "Inbox.md").write_bytes(b"- [x] Buy milk \xff " + link("abc1").encode() + b"\n")

        changes = detector.detect_changes()

        assert changes.instructions == []
        assert journal.get_task("abc1").local_completed is False

    def test_agreement_checked_lazily(self, tracked, detector, fake_client, clock):
        fake_client.reset_counters()
        clock.advance(minutes=5)
        detector.detect_changes()
        assert fake_client.task_fetches["abc1"] == 0

        clock.advance(minutes=11)
        detector.detect_changes()
        assert fake_client.task_fetches["abc1"] == 1

    def test_no_reopen_after_dual_completion(self, vault, detector, fake_client, journal, clock):
        vault.write("Inbox.md", task_line("Done", "abc1", done=True) + "\n")
        fake_client.add_task("abc1", completed=True)
        detector.detect_changes()
        assert journal.get_task("abc1").has_achieved_dual_completion

        vault.write("Inbox.md", task_line("Done", "abc1") + "\n")
        for _ in range(3):
            changes = detector.detect_changes()
            assert changes.instructions == []
            clock.advance(hours=25)
        assert journal.get_pending_instructions() == []

    def test_remote_reopen_after_dual_completion_not_propagated(self, vault, detector, fake_client, journal, clock):
        vault.write("Inbox.md", task_line("Done", "abc1", done=True) + "\n")
        fake_client.add_task("abc1", completed=True)
        detector.detect_changes()

        fake_client.set_completed("abc1", False)
        clock.advance(hours=25)
        changes = detector.detect_changes()
        assert changes.instructions == []
        assert journal.get_task("abc1").remote_completed is False

    def test_moved_note_is_followed_by_uid(self, vault, detector, fake_client, journal):
        vault.write("old.md", "---\nuuid: note-1\n---\n" + task_line("Buy milk", "abc1") + "\n")
        fake_client.add_task("abc1")
        detector.detect_changes()
        assert journal.get_task("abc1").document_uid == "note-1"

        vault.rename("old.md", "archive/new.md")
        detector.detect_changes()

        task = journal.get_task("abc1")
        assert task.document_path == "archive/new.md"
        assert task.line_index == 3

    def test_shifted_line_is_relocated(self, tracked, vault, detector, journal):
        vault.write("Inbox.md", "# Header\n\nSome text\n" + task_line("Buy milk", "abc1") + "\n")
        changes = detector.detect_changes()
        assert journal.get_task("abc1").line_index == 3
        assert [t.task_id for t in changes.modified_tasks] == ["abc1"]

    def test_bulk_prefetch_replaces_single_fetches(self, vault, detector, fake_client, clock):
        lines = []
        for i in range(12):
            fake_client.add_task(f"abc{i}")
            lines.append(task_line(f"Task {i}", f"abc{i}"))
        vault.write("a.md", "\n".join(lines) + "\n")
        detector.detect_changes()

        fake_client.reset_counters()
        clock.advance(minutes=16)
        changes = detector.detect_changes()

        assert fake_client.calls["get_tasks"] == 1
        assert fake_client.calls["get_task"] == 0
        assert changes.api_calls == 1


class TestMissingTasks:

    @pytest.fixture
    def tracked(self, vault, detector, fake_client, journal):
        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        fake_client.add_task("abc1", "Buy milk")
        detector.detect_changes()
        return journal.get_task("abc1")

    def test_not_found_grace_then_orphan(self, tracked, detector, fake_client, journal, clock):
        fake_client.delete_task("abc1")
        clock.advance(minutes=16)
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert task.remote_missing_since is not None
        assert not task.is_orphaned

        clock.advance(hours=1)
        detector.detect_changes()
        assert not journal.get_task("abc1").is_orphaned

        clock.advance(hours=24)
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert task.is_orphaned
        assert task.orphan_reason == OrphanReason.REMOTE_NOT_FOUND
        assert not journal.is_task_deleted("abc1")

    def test_long_orphan_is_tombstoned(self, tracked, detector, fake_client, journal, clock):
        fake_client.delete_task("abc1")
        clock.advance(minutes=16)
        detector.detect_changes()
        clock.advance(hours=25)
        detector.detect_changes()
        assert journal.get_task("abc1").is_orphaned

        clock.advance(days=31)
        detector.detect_changes()
        assert journal.is_task_deleted("abc1")
        assert journal.get_deleted_task("abc1").reason == TombstoneReason.REMOTE_DELETED

    def test_orphan_found_again_is_restored(self, tracked, detector, fake_client, journal, clock):
        fake_client.delete_task("abc1")
        clock.advance(minutes=16)
        detector.detect_changes()
        clock.advance(hours=25)
        detector.detect_changes()
        assert journal.get_task("abc1").is_orphaned

        fake_client.add_task("abc1", "Buy milk")
        clock.advance(hours=25)
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert not task.is_orphaned
        assert task.remote_missing_since is None

    def test_missing_note_grace_then_orphan(self, tracked, vault, detector, journal, clock):
        vault.remove("Inbox.md")
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert task.document_missing_since is not None
        assert not task.is_orphaned

        clock.advance(days=8)
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert task.is_orphaned
        assert task.orphan_reason == OrphanReason.DOCUMENT_MISSING

        vault.write("Inbox.md", task_line("Buy milk", "abc1") + "\n")
        clock.advance(hours=25)
        detector.detect_changes()
        task = journal.get_task("abc1")
        assert not task.is_orphaned
        assert task.document_missing_since is None


def test_compare_skips_tombstoned(detector, journal, fake_client):
    from todoist_sync.core.models import TrackedTask

    task = TrackedTask(task_id="abc1", document_path="x.md", line_index=0)
    journal.mark_as_deleted("abc1", TombstoneReason.USER_REMOVED)
    result = detector.compare_task(task)
    assert not result.modified
    assert fake_client.api_calls == 0


def test_should_check_remote_now_uses_tombstones(detector, journal):
    from todoist_sync.core.models import TrackedTask

    task = TrackedTask(task_id="abc1", document_path="x.md", line_index=0, local_completed=True)
    assert detector.should_check_remote_now(task)
    journal.mark_as_deleted("abc1", TombstoneReason.USER_REMOVED)
    assert not detector.should_check_remote_now(task)
