"""
Rewrites legacy numeric task IDs in a raw journal to canonical IDs.

Migration works on the decoded JSON document, before it is turned into
model objects, and never changes the number of tasks: a collision or a
lost entry aborts the whole migration.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from todoist_sync.core.exceptions import JournalMigrationError
from todoist_sync.todoist.adapters import is_legacy_id


@dataclass
class MigrationReport:
    migrated_tasks: int = 0
    migrated_tombstones: int = 0
    unresolved: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.migrated_tasks or self.migrated_tombstones)


class JournalMigrator:
    """Canonicalizes every ID-keyed section of a journal document."""

    def __init__(self, normalizer, logger: Optional[logging.Logger] = None):
        self.normalizer = normalizer
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def legacy_ids(data: Dict[str, Any]) -> List[str]:
        ids = [k for k in data.get("tasks", {}) if is_legacy_id(k)]
        ids += [k for k in data.get("tombstones", {}) if is_legacy_id(k)]
        return ids

    def needs_migration(self, data: Dict[str, Any]) -> bool:
        return bool(self.legacy_ids(data))

    def _rekey(self, section: Dict[str, Any], mapping: Dict[str, Optional[str]],
               name: str) -> Tuple[Dict[str, Any], int]:
        result: Dict[str, Any] = {}
        migrated = 0
        for key, entry in section.items():
            new_key = mapping.get(key) or key
            if new_key in result:
                raise JournalMigrationError(
                    f"Migrating {name} would merge {key} into existing {new_key}"
                )
            if new_key != key:
                migrated += 1
            entry = dict(entry)
            entry["task_id"] = new_key
            result[new_key] = entry
        if len(result) != len(section):
            raise JournalMigrationError(
                f"{name} count changed during migration: {len(section)} -> {len(result)}"
            )
        return result, migrated

    def migrate(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], MigrationReport]:
        """
        Return a migrated copy of ``data``. The input is never modified.

        Raises:
            JournalMigrationError: if the task or tombstone count would change
        """
        report = MigrationReport()
        legacy = self.legacy_ids(data)
        if not legacy:
            return data, report

        mapping = self.normalizer.to_canonical_many(legacy)
        report.unresolved = sorted(k for k in legacy if not mapping.get(k))

        migrated = copy.deepcopy(data)
        migrated["tasks"], report.migrated_tasks = self._rekey(data.get("tasks", {}), mapping, "tasks")
        migrated["tombstones"], report.migrated_tombstones = self._rekey(
            data.get("tombstones", {}), mapping, "tombstones"
        )

        for section in ("pending_instructions", "failed_instructions"):
            for entry in migrated.get(section, {}).values():
                entry["task_id"] = mapping.get(entry.get("task_id")) or entry.get("task_id")
        for entry in migrated.get("retry_queue", []):
            entry["task_id"] = mapping.get(entry.get("task_id")) or entry.get("task_id")

        before = len(data.get("tasks", {}))
        after = len(migrated["tasks"])
        if before != after or (before > 0 and after == 0):
            raise JournalMigrationError(f"Task count changed during migration: {before} -> {after}")

        if report.unresolved:
            self.logger.warning(
                f"{len(report.unresolved)} legacy IDs could not be resolved and keep their old keys"
            )
        self.logger.info(
            f"Migrated {report.migrated_tasks} tasks and {report.migrated_tombstones} tombstones to canonical IDs"
        )
        return migrated, report
