"""Sync command - run one reconciliation cycle."""

import json
import logging
from typing import Optional

from ..core.exceptions import TodoistSyncError
from ..core.models import ChangeSet, SyncConfig, SyncDirection
from ..utils.date import to_iso
from .context import SyncContext


class SyncCommand:
    """Command for detecting changes between the vault and Todoist."""

    def __init__(self, config: SyncConfig, verbose: bool = False, context: Optional[SyncContext] = None):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)
        if verbose:
            self.logger.setLevel(logging.DEBUG)
        self.context = context or SyncContext(config, logger=self.logger)

    def _as_json(self, changes: ChangeSet) -> str:
        return json.dumps({
            "new_tasks": [t.task_id for t in changes.new_tasks],
            "modified_tasks": [t.task_id for t in changes.modified_tasks],
            "instructions": [
                {
                    "id": i.id,
                    "task_id": i.task_id,
                    "direction": i.direction.value,
                    "new_completed": i.new_completed,
                    "created_at": to_iso(i.created_at),
                }
                for i in changes.instructions
            ],
            "api_calls": changes.api_calls,
            "duration_seconds": round(changes.duration_seconds, 3),
        }, indent=2)

    def _print_summary(self, changes: ChangeSet) -> None:
        print("\n🔄 Sync cycle complete")
        print("=" * 40)
        print(f"  New tasks:      {len(changes.new_tasks)}")
        print(f"  Modified tasks: {len(changes.modified_tasks)}")
        print(f"  Instructions:   {len(changes.instructions)}")
        print(f"  API calls:      {changes.api_calls}")
        print(f"  Duration:       {changes.duration_seconds:.2f}s")

        if changes.instructions:
            print("\n📋 Pending changes:")
            for instruction in changes.instructions:
                arrow = "vault → Todoist" if instruction.direction is SyncDirection.LOCAL_TO_REMOTE else "Todoist → vault"
                state = "complete" if instruction.new_completed else "reopen"
                print(f"  • {instruction.task_id}: {state} ({arrow})")
        elif not changes.has_changes:
            print("\n✓ Everything is in sync.")

    def run(self, as_json: bool = False) -> bool:
        """
        Run one sync cycle.

        Args:
            as_json: Print the change set as JSON instead of a summary

        Returns:
            True if the cycle completed, False otherwise
        """
        try:
            changes = self.context.detector.detect_changes()
        except TodoistSyncError as e:
            print(f"❌ Sync failed: {e}")
            self.logger.error(f"Sync failed: {e}")
            return False
        finally:
            self.context.close()

        if as_json:
            print(self._as_json(changes))
        else:
            self._print_summary(changes)
        return True
