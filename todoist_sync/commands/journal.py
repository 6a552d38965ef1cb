"""Journal maintenance commands: stats, validate, backups, tombstones and reset."""

import json
import logging
from typing import Optional

from ..core.exceptions import BackupError, TodoistSyncError
from ..core.models import SyncConfig
from .context import SyncContext


class _JournalCommand:
    """Shared construction for commands that operate on the journal."""

    def __init__(self, config: SyncConfig, verbose: bool = False, context: Optional[SyncContext] = None):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)
        if verbose:
            self.logger.setLevel(logging.DEBUG)
        self.context = context or SyncContext(config, logger=self.logger)

    @property
    def journal(self):
        return self.context.journal


class StatsCommand(_JournalCommand):
    """Print journal statistics."""

    def run(self, as_json: bool = False) -> bool:
        try:
            stats = self.journal.get_stats()
        finally:
            self.context.close()

        if as_json:
            print(json.dumps(stats, indent=2))
            return True

        print("\n📊 Journal statistics")
        print("=" * 40)
        print(f"  Active tasks:         {stats['active_tasks']}")
        print(f"  Orphaned tasks:       {stats['orphaned_tasks']}")
        print(f"  Tombstones:           {stats['tombstones']}")
        print(f"  Pending instructions: {stats['pending_instructions']}")
        print(f"  Failed instructions:  {stats['failed_instructions']}")
        print(f"  Queued discoveries:   {stats['queued_discoveries']}")
        print(f"  Sync cycles:          {stats['total_cycles']}")
        print(f"  Avg cycle duration:   {stats['average_sync_duration']:.2f}s")
        print(f"  API calls last cycle: {stats['api_calls_last_cycle']}")

        print("\n  Completion:")
        for category, count in stats["completion_categories"].items():
            print(f"    {category:22} {count}")
        if stats["tombstones"]:
            print("\n  Tombstone reasons:")
            for reason, count in stats["tombstone_reasons"].items():
                if count:
                    print(f"    {reason:22} {count}")
        return True


class ValidateCommand(_JournalCommand):
    """Check that every task linked from the vault is tracked or tombstoned."""

    def run(self) -> bool:
        try:
            referenced = self.context.scanner.scan_all_files_for_task_ids()
            report = self.journal.validate_completeness(referenced)
            self.journal.update_last_validation_time()
        except TodoistSyncError as e:
            print(f"❌ Validation failed: {e}")
            return False
        finally:
            self.context.close()

        print("\n🔍 Journal completeness")
        print("=" * 40)
        print(f"  Referenced in vault: {report.referenced}")
        print(f"  Tracked:             {report.tracked}")
        print(f"  Tombstoned:          {report.tombstoned}")
        print(f"  Missing:             {len(report.missing)}")

        if report.is_complete:
            print("\n✓ Journal is complete.")
            return True

        for task_id in sorted(report.missing)[:20]:
            print(f"  • {task_id} ({referenced[task_id].document_path})")
        if len(report.missing) > 20:
            print(f"  ... and {len(report.missing) - 20} more")
        print("\n💡 Run 'todoist-sync heal' to repair the journal.")
        return False


class BackupsCommand(_JournalCommand):
    """List, create and restore journal backups."""

    def run(self, action: str = "list", path: Optional[str] = None) -> bool:
        try:
            if action == "list":
                return self._list()
            if action == "create":
                created = self.journal.create_manual_backup()
                if created is None:
                    print("⚠️  Nothing to back up yet.")
                    return False
                print(f"✓ Backup written to {created}")
                return True
            if action == "restore":
                if not path:
                    print("❌ A backup path is required")
                    return False
                report = self.journal.restore_from_backup(path)
                print(f"✓ Restored {report.task_count} tasks from {path}")
                return True
            print(f"Unknown backups action '{action}'.")
            return False
        except BackupError as e:
            print(f"❌ {e}")
            return False
        finally:
            self.context.close()

    def _list(self) -> bool:
        backups = self.journal.list_backups()
        if not backups:
            print("No backups found.")
            return True
        print(f"\n💾 {len(backups)} backups")
        for info in backups:
            print(f"  {info.created_at:%Y-%m-%d %H:%M:%S}  {info.category:12} {info.size:>9}  {info.path.name}")
        return True


class TombstonesCommand(_JournalCommand):
    """Inspect and maintain tombstones."""

    def run(self, action: str = "list", older_than_days: float = 90, task_id: Optional[str] = None) -> bool:
        try:
            if action == "list":
                stones = sorted(self.journal.tombstones.values(), key=lambda s: s.deleted_at, reverse=True)
                if not stones:
                    print("No tombstones.")
                    return True
                for stone in stones:
                    where = f"  {stone.last_document_path}" if stone.last_document_path else ""
                    print(f"  {stone.deleted_at:%Y-%m-%d}  {stone.reason.value:20} {stone.task_id}{where}")
                return True
            if action == "cleanup":
                removed = self.journal.cleanup_old_tombstones(older_than_days)
                print(f"🧹 Removed {removed} tombstones older than {older_than_days:g} days")
                return True
            if action == "restore":
                if not task_id or not self.journal.restore_tombstone(task_id):
                    print(f"❌ No tombstone for {task_id}")
                    return False
                print(f"✓ {task_id} will be rediscovered on the next sync")
                return True
            print(f"Unknown tombstones action '{action}'.")
            return False
        finally:
            self.context.close()


class ResetCommand(_JournalCommand):
    """Back up and empty the journal."""

    def run(self, confirmed: bool = False) -> bool:
        if not confirmed:
            print("⚠️  This discards all tracked tasks and tombstones. Re-run with --yes to confirm.")
            return False
        try:
            self.journal.reset()
        finally:
            self.context.close()
        print("✓ Journal reset. A backup was kept next to the journal file.")
        return True
