"""
Journal backup creation, listing and per-category retention.

Backups sit next to the journal and are named
``<journal-stem>.backup-<category>-<timestamp>.json``.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from todoist_sync.core.exceptions import BackupError
from todoist_sync.core.models import DEFAULT_BACKUP_RETENTION
from todoist_sync.utils.date import utc_now


STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"

ROUTINE = "routine"
LOAD = "load"
PRE_RESTORE = "pre_restore"
PRE_HEAL = "pre_heal"
RESET = "reset"
MIGRATION = "migration"
MANUAL = "manual"
CORRUPT = "corrupt"

CATEGORIES = (ROUTINE, LOAD, PRE_RESTORE, PRE_HEAL, RESET, MIGRATION, MANUAL, CORRUPT)


@dataclass
class BackupInfo:
    path: Path
    category: str
    created_at: datetime
    sequence: int = 0

    @property
    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0


class BackupManager:
    """Creates and prunes categorized copies of the journal file."""

    def __init__(
        self,
        journal_path: str,
        retention: Optional[Dict[str, Dict[str, Any]]] = None,
        routine_min_interval: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.journal_path = Path(journal_path)
        self.retention = retention or DEFAULT_BACKUP_RETENTION
        self.routine_min_interval = routine_min_interval
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._name_re = re.compile(
            rf"^{re.escape(self.journal_path.stem)}\.backup-(?P<category>[a-z_]+)-"
            rf"(?P<stamp>\d{{8}}T\d{{12}}Z)(?:-(?P<seq>\d+))?\.json$"
        )

    @property
    def directory(self) -> Path:
        return self.journal_path.parent

    def _parse(self, path: Path) -> Optional[BackupInfo]:
        match = self._name_re.match(path.name)
        if not match:
            return None
        try:
            created = datetime.strptime(match.group("stamp"), STAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
        return BackupInfo(
            path=path,
            category=match.group("category"),
            created_at=created,
            sequence=int(match.group("seq") or 0),
        )

    def list_backups(self, category: Optional[str] = None) -> List[BackupInfo]:
        """Backups, newest first."""
        if not self.directory.is_dir():
            return []
        backups = []
        for path in self.directory.glob(f"{self.journal_path.stem}.backup-*.json"):
            info = self._parse(path)
            if info and (category is None or info.category == category):
                backups.append(info)
        backups.sort(key=lambda b: (b.created_at, b.sequence), reverse=True)
        return backups

    def _target_path(self, category: str, now: datetime) -> Path:
        stamp = now.astimezone(timezone.utc).strftime(STAMP_FORMAT)
        base = f"{self.journal_path.stem}.backup-{category}-{stamp}"
        candidate = self.directory / f"{base}.json"
        seq = 0
        while candidate.exists():
            seq += 1
            candidate = self.directory / f"{base}-{seq}.json"
        return candidate

    def should_skip_routine(self) -> bool:
        latest = self.list_backups(ROUTINE)
        if not latest:
            return False
        return self.clock() - latest[0].created_at < self.routine_min_interval

    def create(self, category: str, source: Optional[Path] = None) -> Optional[Path]:
        """
        Copy ``source`` (the journal by default) into a new backup.

        Returns None when there is nothing to back up or a routine backup
        is throttled.
        """
        if category not in CATEGORIES:
            raise BackupError(f"Unknown backup category: {category}")

        source = Path(source) if source else self.journal_path
        if not source.exists() or source.stat().st_size == 0:
            return None
        if category == ROUTINE and self.should_skip_routine():
            self.logger.debug("Skipping routine backup, a recent one exists")
            return None

        target = self._target_path(category, self.clock())
        try:
            shutil.copy2(source, target)
        except OSError as e:
            raise BackupError(f"Failed to create {category} backup: {e}") from e

        self.logger.debug(f"Created {category} backup {target.name}")
        self.prune(category)
        return target

    def prune(self, category: str) -> int:
        """Delete the oldest backups beyond the category's retained count."""
        settings = self.retention.get(category) or DEFAULT_BACKUP_RETENTION.get(category, {})
        max_count = settings.get("max_count")
        if not settings.get("auto_cleanup", False) or not max_count:
            return 0

        removed = 0
        for info in self.list_backups(category)[max_count:]:
            try:
                info.path.unlink()
                removed += 1
            except OSError as e:
                self.logger.warning(f"Could not remove old backup {info.path.name}: {e}")
        if removed:
            self.logger.debug(f"Pruned {removed} {category} backups")
        return removed

    def restore(self, backup_path: Path) -> None:
        """Copy a backup over the journal file."""
        backup_path = Path(backup_path)
        if not backup_path.is_file():
            raise BackupError(f"Backup not found: {backup_path}")
        try:
            shutil.copy2(backup_path, self.journal_path)
        except OSError as e:
            raise BackupError(f"Failed to restore {backup_path.name}: {e}") from e
