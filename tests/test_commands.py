"""
Tests for the CLI command classes, wired to the in-memory client.
"""

import json
from dataclasses import replace

import pytest

from todoist_sync.commands import (
    BackupsCommand,
    HealCommand,
    ResetCommand,
    StatsCommand,
    SyncCommand,
    SyncContext,
    TombstonesCommand,
    ValidateCommand,
)
from todoist_sync.core.exceptions import RateLimitError
from todoist_sync.core.models import TombstoneReason


LINK = "[t](https://todoist.com/app/task/{})"


@pytest.fixture
def context(config, journal, store, fake_client, normalizer, detector):
    """SyncContext whose components are the test doubles."""
    ctx = SyncContext(config)
    ctx._client = fake_client
    ctx._normalizer = normalizer
    ctx._journal = journal
    ctx._store = store
    ctx._detector = detector
    return ctx


class TestSyncCommand:

    def test_summary(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] Buy milk " + LINK.format("abc1") + "\n")
        fake_client.add_task("abc1")

        assert SyncCommand(config, context=context).run()

        out = capsys.readouterr().out
        assert "Sync cycle complete" in out
        assert "New tasks:      1" in out

    def test_json_output(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] Buy milk " + LINK.format("abc1") + "\n")
        fake_client.add_task("abc1")

        assert SyncCommand(config, context=context).run(as_json=True)

        payload = json.loads(capsys.readouterr().out)
        assert payload["new_tasks"] == ["abc1"]
        assert payload["instructions"] == []
        assert payload["api_calls"] == 1

    def test_pending_change_is_listed(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] Buy milk " + LINK.format("abc1") + "\n")
        fake_client.add_task("abc1")
        context.detector.detect_changes()
        vault.write("Inbox.md", "- [x] Buy milk " + LINK.format("abc1") + "\n")

        assert SyncCommand(config, context=context).run()
        assert "abc1: complete (vault → Todoist)" in capsys.readouterr().out

    def test_missing_token_fails_cleanly(self, config, capsys):
        no_token = replace(config, api_token=None)

        assert not SyncCommand(no_token).run()
        assert "API token" in capsys.readouterr().out


class TestHealCommand:

    def test_heal_reports_counts(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] A " + LINK.format("abc1") + "\n- [ ] B " + LINK.format("gone1") + "\n")
        fake_client.add_task("abc1")

        assert HealCommand(config, context=context).run()

        out = capsys.readouterr().out
        assert "Healed:     1" in out
        assert "Tombstoned: 1" in out

    def test_rate_limit_is_failure(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] A " + LINK.format("abc1") + "\n")
        fake_client.bulk_error = RateLimitError("429")

        assert not HealCommand(config, context=context).run()
        assert "Rate limited" in capsys.readouterr().out

    def test_skip_is_success(self, context, config, capsys):
        assert HealCommand(config, context=context).run()
        assert "Heal skipped" in capsys.readouterr().out


class TestJournalCommands:

    def test_stats_json(self, context, config, capsys):
        assert StatsCommand(config, context=context).run(as_json=True)
        stats = json.loads(capsys.readouterr().out)
        assert stats["active_tasks"] == 0
        assert "completion_categories" in stats

    def test_stats_summary(self, context, config, capsys):
        assert StatsCommand(config, context=context).run()
        assert "Journal statistics" in capsys.readouterr().out

    def test_validate_without_token(self, config, vault, capsys):
        vault.write("Inbox.md", "- [ ] A " + LINK.format("abc1") + "\n")
        no_token = replace(config, api_token=None)

        assert not ValidateCommand(no_token).run()

        out = capsys.readouterr().out
        assert "Missing:             1" in out
        assert "abc1 (Inbox.md)" in out
        assert "todoist-sync heal" in out

    def test_validate_complete(self, context, config, vault, fake_client, capsys):
        vault.write("Inbox.md", "- [ ] A " + LINK.format("abc1") + "\n")
        fake_client.add_task("abc1")
        context.detector.detect_changes()

        assert ValidateCommand(config, context=context).run()
        assert "Journal is complete" in capsys.readouterr().out

    def test_tombstone_actions(self, context, config, journal, clock, capsys):
        journal.mark_as_deleted("old1", TombstoneReason.REMOTE_DELETED)
        clock.advance(days=100)
        journal.mark_as_deleted("new1", TombstoneReason.USER_REMOVED)

        assert TombstonesCommand(config, context=context).run("list")
        assert "old1" in capsys.readouterr().out

        assert TombstonesCommand(config, context=context).run("cleanup", older_than_days=90)
        assert not journal.is_task_deleted("old1")

        assert TombstonesCommand(config, context=context).run("restore", task_id="new1")
        assert not journal.is_task_deleted("new1")
        assert not TombstonesCommand(config, context=context).run("restore", task_id="new1")

    def test_backup_create_and_list(self, context, config, journal, capsys):
        journal.mark_as_deleted("old1", TombstoneReason.REMOTE_DELETED)

        assert BackupsCommand(config, context=context).run("create")
        assert BackupsCommand(config, context=context).run("list")

        out = capsys.readouterr().out
        assert "Backup written to" in out
        assert "manual" in out

    def test_restore_requires_path(self, context, config, capsys):
        assert not BackupsCommand(config, context=context).run("restore")

    def test_reset_needs_confirmation(self, context, config, journal, fake_client, vault, capsys):
        vault.write("Inbox.md", "- [ ] A " + LINK.format("abc1") + "\n")
        fake_client.add_task("abc1")
        context.detector.detect_changes()

        assert not ResetCommand(config, context=context).run()
        assert journal.has_task("abc1")

        assert ResetCommand(config, context=context).run(confirmed=True)
        assert journal.tasks == {}
        assert journal.list_backups("reset")
