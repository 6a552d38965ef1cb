"""Heal command - bring every task linked from the vault into the journal."""

import logging
from typing import Optional

from ..core.exceptions import TodoistSyncError
from ..core.models import SyncConfig
from .context import SyncContext


class HealCommand:
    """Command for repairing journal gaps in bulk."""

    def __init__(self, config: SyncConfig, verbose: bool = False, context: Optional[SyncContext] = None):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)
        if verbose:
            self.logger.setLevel(logging.DEBUG)
        self.context = context or SyncContext(config, logger=self.logger)

    def run(self, force: bool = False) -> bool:
        try:
            result = self.context.detector.heal_journal(force=force)
        except TodoistSyncError as e:
            print(f"❌ Heal failed: {e}")
            return False
        finally:
            self.context.close()

        if result.skipped:
            print(f"⏭️  Heal skipped: {result.reason}")
            return True

        print("\n🩹 Journal heal")
        print("=" * 40)
        print(f"  Missing:    {result.missing_count}")
        print(f"  Healed:     {result.healed_count}")
        print(f"  Tombstoned: {result.tombstoned_count}")
        print(f"  Failed:     {result.failed_count}")
        print(f"  API calls:  {result.api_calls}")

        if result.rate_limited:
            print("\n⚠️  Rate limited by Todoist; try again in a few minutes.")
            return False
        return result.failed_count == 0
