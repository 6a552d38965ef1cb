"""Durable sync journal: store, backups, ID migration and debounced writes."""

from .store import Journal, JournalStats, LoadReport, CompletenessReport, JOURNAL_VERSION
from .backups import BackupManager, BackupInfo
from .migration import JournalMigrator, MigrationReport
from .retry_queue import RetryQueue, RetryEntry
from .writer import DebouncedWriter

__all__ = [
    'Journal',
    'JournalStats',
    'LoadReport',
    'CompletenessReport',
    'JOURNAL_VERSION',
    'BackupManager',
    'BackupInfo',
    'JournalMigrator',
    'MigrationReport',
    'RetryQueue',
    'RetryEntry',
    'DebouncedWriter',
]
