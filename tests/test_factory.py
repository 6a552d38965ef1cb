"""
Tests for TrackedTask construction and content hashing.
"""

from todoist_sync.core.models import (
    DiscoveredTask,
    DocumentMethod,
    LocateMethod,
    LocatedTask,
    RemoteTask,
    TrackedTask,
)
from todoist_sync.sync import ContentHasher, EntryFactory


def discovered(task_id="abc1", completed=False, line="- [ ] Buy milk ^blk1"):
    return DiscoveredTask(
        task_id=task_id,
        document_path="note.md",
        line_index=4,
        line=line,
        completed=completed,
        document_uid="note-1",
    )


class TestHasher:

    def test_stable_and_whitespace_insensitive(self):
        assert ContentHasher.hash_task_line("- [ ] a  ") == ContentHasher.hash_task_line("- [ ] a")
        assert ContentHasher.hash_task_line("- [ ] a") != ContentHasher.hash_task_line("- [x] a")

    def test_remote_hash_covers_completion_and_due(self):
        base = ContentHasher.hash_remote("Buy milk", False, "2024-05-01")
        assert base != ContentHasher.hash_remote("Buy milk", True, "2024-05-01")
        assert base != ContentHasher.hash_remote("Buy milk", False, None)
        assert ContentHasher.hash(None) == ContentHasher.hash("")


class TestEntryFactory:

    def test_from_remote(self, clock):
        remote = RemoteTask(id="abc1", content="Buy milk", completed=True, due_date="2024-05-01", project_id="p1")
        task = EntryFactory(clock).from_remote(discovered(), remote)

        assert task.task_id == "abc1"
        assert task.local_completed is False
        assert task.remote_completed is True
        assert task.anchor == "blk1"
        assert task.document_uid == "note-1"
        assert task.remote_due_date == "2024-05-01"
        assert task.discovered_at == clock()
        assert task.last_remote_check_at == clock()

    def test_remote_canonical_id_replaces_legacy(self, clock):
        remote = RemoteTask(id="abc123", content="x", completed=False, legacy_id="123456")
        task = EntryFactory(clock).from_bulk(discovered(task_id="123456"), remote)
        assert task.task_id == "abc123"

    def test_dual_completion_latched_on_creation(self, clock):
        remote = RemoteTask(id="abc1", content="x", completed=True)
        task = EntryFactory(clock).from_remote(discovered(completed=True, line="- [x] Buy milk"), remote)
        assert task.has_achieved_dual_completion

    def test_minimal_entry_is_due_a_remote_check(self, clock):
        task = EntryFactory(clock).minimal("abc1", "note.md", 2, "- [x] Done", completed=True)
        assert task.remote_completed is True
        assert task.last_remote_check_at is None
        assert task.local_content_hash == ContentHasher.hash_task_line("- [x] Done")

    def test_location_changes(self, clock):
        task = TrackedTask(task_id="abc1", document_path="old.md", line_index=1, document_missing_since=clock())
        located = LocatedTask(
            document_path="new.md", line_index=3, line="- [ ] a ^x", completed=False,
            content_hash="h", anchor="x", method=LocateMethod.ANCHOR, document_method=DocumentMethod.UPDATED,
            needs_journal_update=True,
        )
        changes = EntryFactory(clock).location_changes(task, located)

        assert changes["document_path"] == "new.md"
        assert changes["line_index"] == 3
        assert changes["anchor"] == "x"
        assert changes["document_missing_since"] is None

    def test_location_unchanged_writes_no_position(self, clock):
        task = TrackedTask(task_id="abc1", document_path="note.md", line_index=2, anchor="x")
        located = LocatedTask(
            document_path="note.md", line_index=2, line="- [ ] a ^x", completed=False,
            content_hash="h", anchor="x", method=LocateMethod.ANCHOR, document_method=DocumentMethod.PATH,
        )
        changes = EntryFactory(clock).location_changes(task, located)

        assert set(changes) == {"last_anchor_validation_at"}

    def test_remote_changes_clear_missing_marker(self, clock):
        remote = RemoteTask(id="abc1", content="x", completed=True, project_id="p2")
        changes = EntryFactory(clock).remote_changes(remote)

        assert changes["remote_completed"] is True
        assert changes["remote_missing_since"] is None
        assert changes["last_remote_seen_at"] == clock()
