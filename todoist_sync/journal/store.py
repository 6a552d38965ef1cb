"""
The sync journal: durable record of every tracked and tombstoned task.

The Journal is the only owner of TrackedTask and Tombstone objects.
Callers read through the accessors and mutate through ``add_task``,
``update_task``, ``remove_task`` and ``mark_as_deleted``; every mutation
schedules a debounced save. Saves are atomic (temp file, read-back,
rename) and preceded by a throttled routine backup. Loads fall back to
the newest usable backup and never replace a damaged journal with an
empty one without keeping a copy of it.
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from todoist_sync.core.exceptions import (
    BackupError,
    JournalError,
    JournalLoadError,
    JournalMigrationError,
    JournalSaveError,
)
from todoist_sync.core.models import (
    CompletionCategory,
    InstructionStatus,
    SyncConfig,
    SyncDirection,
    SyncInstruction,
    SyncPolicy,
    Tombstone,
    TombstoneReason,
    TrackedTask,
)
from todoist_sync.core.policy import priority_key, should_check_remote_now
from todoist_sync.utils.date import from_iso, to_iso, utc_now
from todoist_sync.utils.io import atomic_write_verified
from . import backups as backup_categories
from .backups import BackupInfo, BackupManager
from .migration import JournalMigrator
from .retry_queue import RetryEntry, RetryQueue
from .writer import DebouncedWriter


JOURNAL_VERSION = "2.0"
REQUIRED_KEYS = ("version", "tasks", "tombstones", "stats")
# Weight of the newest cycle in the rolling average duration
SYNC_DURATION_SMOOTHING = 0.2


@dataclass
class JournalStats:
    total_tasks: int = 0
    new_tasks_found: int = 0
    operations_attempted: int = 0
    operations_succeeded: int = 0
    operations_failed: int = 0
    last_sync_duration: float = 0.0
    average_sync_duration: float = 0.0
    total_cycles: int = 0
    tasks_processed_last_cycle: int = 0
    api_calls_last_cycle: int = 0
    total_api_calls: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JournalStats":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class LoadReport:
    """What ``Journal.load`` did."""

    source: str = "new"  # new | primary | backup | memory
    task_count: int = 0
    recovered_from: Optional[str] = None
    problem: Optional[str] = None
    migrated: bool = False
    unresolved_ids: List[str] = field(default_factory=list)


@dataclass
class CompletenessReport:
    referenced: int
    tracked: int
    tombstoned: int
    missing: Set[str]

    @property
    def is_complete(self) -> bool:
        return not self.missing


class Journal:
    """Authoritative store of reconciliation state."""

    def __init__(
        self,
        path: str,
        *,
        normalizer=None,
        policy: Optional[SyncPolicy] = None,
        backup_manager: Optional[BackupManager] = None,
        auto_save_delay: float = 2.0,
        scheduler: Optional[Callable] = None,
        clock: Callable[[], datetime] = utc_now,
        suspicious_empty_bytes: int = 4096,
        retry_max_attempts: int = 3,
        retry_delay: timedelta = timedelta(minutes=5),
        logger: Optional[logging.Logger] = None,
    ):
        self.path = Path(path)
        self.policy = policy or SyncPolicy()
        self.clock = clock
        self.suspicious_empty_bytes = suspicious_empty_bytes
        self.logger = logger or logging.getLogger(__name__)
        self.backups = backup_manager or BackupManager(str(self.path), clock=clock, logger=self.logger)
        self.migrator = JournalMigrator(normalizer, logger=self.logger) if normalizer is not None else None

        self._lock = threading.RLock()
        writer_kwargs = {"scheduler": scheduler} if scheduler is not None else {}
        self._writer = DebouncedWriter(
            self._write_to_disk, delay=auto_save_delay, lock=self._lock, logger=self.logger, **writer_kwargs
        )

        self.retry_queue = RetryQueue(max_attempts=retry_max_attempts, delay=retry_delay)
        self._reset_state()
        self.last_load_report = LoadReport()

    @classmethod
    def from_config(cls, config: SyncConfig, normalizer=None, **kwargs: Any) -> "Journal":
        clock = kwargs.pop("clock", utc_now)
        logger = kwargs.pop("logger", None)
        backup_manager = BackupManager(
            config.journal_path,
            retention=config.backup_retention,
            routine_min_interval=timedelta(minutes=config.routine_backup_min_interval_minutes),
            clock=clock,
            logger=logger,
        )
        return cls(
            config.journal_path,
            normalizer=normalizer,
            policy=config.policy,
            backup_manager=backup_manager,
            auto_save_delay=config.auto_save_delay_seconds,
            clock=clock,
            suspicious_empty_bytes=config.suspicious_empty_journal_bytes,
            retry_max_attempts=config.discovery_retry_max_attempts,
            retry_delay=timedelta(minutes=config.discovery_retry_delay_minutes),
            logger=logger,
            **kwargs,
        )

    def _reset_state(self) -> None:
        self.tasks: Dict[str, TrackedTask] = {}
        self.tombstones: Dict[str, Tombstone] = {}
        self.pending_instructions: Dict[str, SyncInstruction] = {}
        self.failed_instructions: Dict[str, SyncInstruction] = {}
        self.retry_queue.clear()
        self.last_scan_at: Optional[datetime] = None
        self.last_validation_at: Optional[datetime] = None
        self.last_heal_at: Optional[datetime] = None
        self.created_at: datetime = self.clock()
        self.stats = JournalStats()

    # ------------------------------------------------------------------
    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "version": JOURNAL_VERSION,
                "created_at": to_iso(self.created_at),
                "saved_at": to_iso(self.clock()),
                "tasks": {tid: task.to_dict() for tid, task in self.tasks.items()},
                "tombstones": {tid: stone.to_dict() for tid, stone in self.tombstones.items()},
                "pending_instructions": {iid: i.to_dict() for iid, i in self.pending_instructions.items()},
                "failed_instructions": {iid: i.to_dict() for iid, i in self.failed_instructions.items()},
                "retry_queue": self.retry_queue.to_list(),
                "last_scan_at": to_iso(self.last_scan_at),
                "last_validation_at": to_iso(self.last_validation_at),
                "last_heal_at": to_iso(self.last_heal_at),
                "stats": asdict(self.stats),
            }

    @staticmethod
    def _validate_structure(data: Any) -> None:
        if not isinstance(data, dict):
            raise JournalLoadError("Journal root is not an object")
        if not isinstance(data.get("tasks"), dict):
            raise JournalLoadError("Journal has no 'tasks' mapping")
        if not isinstance(data.get("tombstones", {}), dict):
            raise JournalLoadError("Journal 'tombstones' is not a mapping")

    def _apply(self, data: Dict[str, Any]) -> None:
        tasks: Dict[str, TrackedTask] = {}
        for task_id, entry in data.get("tasks", {}).items():
            try:
                entry = dict(entry)
                entry.setdefault("task_id", task_id)
                tasks[task_id] = TrackedTask.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed journal entry {task_id}: {e}")

        tombstones: Dict[str, Tombstone] = {}
        for task_id, entry in data.get("tombstones", {}).items():
            try:
                entry = dict(entry)
                entry.setdefault("task_id", task_id)
                tombstones[task_id] = Tombstone.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed tombstone {task_id}: {e}")

        def _instructions(section: str) -> Dict[str, SyncInstruction]:
            result = {}
            for entry in data.get(section, {}).values():
                try:
                    instruction = SyncInstruction.from_dict(entry)
                except (KeyError, TypeError, ValueError):
                    continue
                result[instruction.id] = instruction
            return result

        self.tasks = tasks
        self.tombstones = tombstones
        self.pending_instructions = _instructions("pending_instructions")
        self.failed_instructions = _instructions("failed_instructions")
        self.retry_queue.load(data.get("retry_queue", []))
        self.last_scan_at = from_iso(data.get("last_scan_at"))
        self.last_validation_at = from_iso(data.get("last_validation_at"))
        self.last_heal_at = from_iso(data.get("last_heal_at"))
        self.created_at = from_iso(data.get("created_at")) or self.clock()
        self.stats = JournalStats.from_dict(data.get("stats", {}))
        self.stats.total_tasks = len(self.tasks)

    # ------------------------------------------------------------------
    # Load / save

    def _read_candidate(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
        if not text.strip():
            raise JournalLoadError(f"{path.name} is empty")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise JournalLoadError(f"{path.name} is not valid JSON: {e}") from e
        self._validate_structure(data)
        return data

    def _recover_from_backups(self) -> Optional[tuple]:
        """Newest backup that parses and holds at least one task."""
        for info in self.backups.list_backups():
            try:
                data = self._read_candidate(info.path)
            except (OSError, JournalLoadError) as e:
                self.logger.debug(f"Backup {info.path.name} unusable: {e}")
                continue
            if data.get("tasks"):
                return data, info
        return None

    def load(self) -> LoadReport:
        """
        Load the journal from disk.

        A missing file yields an empty journal. A damaged or suspiciously
        empty file is replaced by the newest usable backup; if none exists,
        the in-memory state is kept and the damaged file is preserved as a
        ``corrupt`` backup.

        Raises:
            JournalMigrationError: if canonicalizing legacy IDs would lose
                tasks; the pre-migration state is kept in memory.
        """
        with self._lock:
            report = LoadReport()
            if not self.path.exists():
                self.logger.info(f"No journal at {self.path}, starting empty")
                self.last_load_report = report
                return report

            data: Optional[Dict[str, Any]] = None
            try:
                size = self.path.stat().st_size
                data = self._read_candidate(self.path)
            except (OSError, JournalLoadError) as e:
                size = 0
                report.problem = str(e)

            if data is not None and not data.get("tasks"):
                claimed = (data.get("stats") or {}).get("total_tasks", 0)
                if claimed or (size > self.suspicious_empty_bytes and not data.get("tombstones")):
                    report.problem = f"journal has no tasks but claims {claimed} ({size} bytes)"

            if report.problem:
                self.logger.warning(f"Journal problem: {report.problem}; trying backups")
                recovered = self._recover_from_backups()
                if recovered is not None:
                    data, info = recovered
                    report.source = "backup"
                    report.recovered_from = info.path.name
                    self._preserve_damaged_primary()
                    self.logger.warning(f"Recovered journal from backup {info.path.name}")
                elif data is None:
                    self._preserve_damaged_primary()
                    report.source = "memory"
                    report.task_count = len(self.tasks)
                    self.logger.critical(
                        f"Journal {self.path} is unreadable and no backup could be used; "
                        f"keeping {len(self.tasks)} tasks held in memory"
                    )
                    self.last_load_report = report
                    return report
                else:
                    self.logger.info("No backup holds tasks; accepting empty journal")
                    report.source = "primary"
            else:
                report.source = "primary"
                try:
                    self.backups.create(backup_categories.LOAD)
                except BackupError as e:
                    self.logger.warning(f"Load-time backup failed: {e}")

            if self.migrator is not None and self.migrator.needs_migration(data):
                try:
                    self.backups.create(backup_categories.MIGRATION)
                except BackupError as e:
                    self.logger.warning(f"Pre-migration backup failed: {e}")
                try:
                    migrated, migration = self.migrator.migrate(data)
                except JournalMigrationError:
                    self._apply(data)
                    self.last_load_report = report
                    self.logger.error("ID migration aborted; keeping the pre-migration journal")
                    raise
                data = migrated
                report.migrated = migration.changed
                report.unresolved_ids = migration.unresolved

            self._apply(data)
            repaired = self.repair_overlaps(schedule=False)
            report.task_count = len(self.tasks)
            self.last_load_report = report

            if report.source == "backup" or report.migrated or repaired:
                self.save()

            self.logger.debug(f"Loaded journal with {len(self.tasks)} tasks, {len(self.tombstones)} tombstones")
            return report

    def _preserve_damaged_primary(self) -> None:
        try:
            self.backups.create(backup_categories.CORRUPT)
        except BackupError as e:
            self.logger.error(f"Could not preserve damaged journal: {e}")

    def _serialize(self) -> str:
        data = self.to_dict()
        missing = [key for key in REQUIRED_KEYS if key not in data]
        if missing:
            raise JournalSaveError(f"Journal is missing sections: {missing}")
        text = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True)
        if not text or text in ("{}", "null"):
            raise JournalSaveError("Refusing to write an empty journal document")
        return text

    def _write_to_disk(self) -> None:
        with self._lock:
            text = self._serialize()
            try:
                self.backups.create(backup_categories.ROUTINE)
            except BackupError as e:
                self.logger.warning(f"Routine backup failed: {e}")
            try:
                atomic_write_verified(str(self.path), text)
            except (OSError, TimeoutError) as e:
                raise JournalSaveError(f"Failed to save journal to {self.path}: {e}") from e
            self.logger.debug(f"Saved journal ({len(self.tasks)} tasks)")

    def save(self) -> None:
        """Persist now. Raises JournalSaveError if any step fails."""
        with self._lock:
            self._write_to_disk()
            self._writer.mark_clean()

    def flush(self) -> bool:
        """Write pending changes immediately; returns True if a write happened."""
        return self._writer.flush()

    @property
    def is_dirty(self) -> bool:
        return self._writer.pending

    def _touch(self) -> None:
        self._writer.schedule()

    def suspend_auto_save(self) -> None:
        self._writer.suspend()

    def resume_auto_save(self, flush: bool = True) -> None:
        self._writer.resume(flush=flush)

    def close(self) -> None:
        """Flush pending changes and stop the timer."""
        self._writer.flush()
        self._writer.cancel()

    # ------------------------------------------------------------------
    # Task access

    def get_task(self, task_id: str) -> Optional[TrackedTask]:
        return self.tasks.get(task_id)

    def has_task(self, task_id: str) -> bool:
        return task_id in self.tasks

    def is_known(self, task_id: str) -> bool:
        return task_id in self.tasks or task_id in self.tombstones

    def get_active_tasks(self) -> List[TrackedTask]:
        return list(self.tasks.values())

    def is_task_deleted(self, task_id: str) -> bool:
        return task_id in self.tombstones

    def get_deleted_task(self, task_id: str) -> Optional[Tombstone]:
        return self.tombstones.get(task_id)

    def get_tasks_needing_sync(self, now: Optional[datetime] = None) -> List[TrackedTask]:
        """Active tasks due a remote check, highest priority first."""
        now = now or self.clock()
        due = [
            task for task in self.tasks.values()
            if should_check_remote_now(task, now, self.policy, tombstoned=task.task_id in self.tombstones)
        ]
        due.sort(key=priority_key)
        return due

    # ------------------------------------------------------------------
    # Task mutation

    def add_task(self, task: TrackedTask) -> TrackedTask:
        with self._lock:
            if task.task_id in self.tombstones:
                self.logger.warning(f"Task {task.task_id} re-added; dropping its tombstone")
                del self.tombstones[task.task_id]
            is_new = task.task_id not in self.tasks
            task.refresh_category()
            self.tasks[task.task_id] = task
            self.retry_queue.remove(task.task_id)
            if is_new:
                self.stats.new_tasks_found += 1
            self.stats.total_tasks = len(self.tasks)
            self._touch()
            return task

    def update_task(self, task_id: str, **changes: Any) -> TrackedTask:
        """Apply field changes to a tracked task and return it."""
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                raise JournalError(f"Cannot update unknown task {task_id}")
            for name, value in changes.items():
                if name in ("task_id", "completion_category") or not hasattr(task, name):
                    raise AttributeError(f"TrackedTask field {name!r} cannot be updated")
                setattr(task, name, value)
            task.refresh_category()
            self._touch()
            return task

    def remove_task(self, task_id: str) -> bool:
        with self._lock:
            if self.tasks.pop(task_id, None) is None:
                return False
            self._drop_instructions(task_id)
            self.stats.total_tasks = len(self.tasks)
            self._touch()
            return True

    def mark_as_deleted(
        self,
        task_id: str,
        reason: TombstoneReason,
        *,
        http_status: Optional[int] = None,
        note: Optional[str] = None,
        document_path: Optional[str] = None,
    ) -> Tombstone:
        """Move ``task_id`` to the tombstone set. It will never be fetched again."""
        with self._lock:
            task = self.tasks.pop(task_id, None)
            if document_path is None and task is not None:
                document_path = task.document_path
            stone = Tombstone(
                task_id=task_id,
                reason=reason,
                deleted_at=self.clock(),
                last_document_path=document_path,
                http_status=http_status,
                note=note,
            )
            self.tombstones[task_id] = stone
            self.retry_queue.remove(task_id)
            self._drop_instructions(task_id)
            self.stats.total_tasks = len(self.tasks)
            self.logger.info(f"Tombstoned task {task_id} ({reason.value})")
            self._touch()
            return stone

    def _drop_instructions(self, task_id: str) -> None:
        for section in (self.pending_instructions, self.failed_instructions):
            for instruction_id in [i for i, ins in section.items() if ins.task_id == task_id]:
                del section[instruction_id]

    def repair_overlaps(self, schedule: bool = True) -> int:
        """Delete tombstones whose ID is also active. Returns the number repaired."""
        with self._lock:
            overlap = set(self.tasks) & set(self.tombstones)
            for task_id in overlap:
                self.logger.warning(f"Task {task_id} was both active and tombstoned; keeping it active")
                del self.tombstones[task_id]
            if overlap and schedule:
                self._touch()
            return len(overlap)

    # ------------------------------------------------------------------
    # Tombstone maintenance

    def cleanup_old_tombstones(self, max_age_days: float = 90) -> int:
        with self._lock:
            cutoff = self.clock() - timedelta(days=max_age_days)
            old = [tid for tid, stone in self.tombstones.items() if stone.deleted_at < cutoff]
            for task_id in old:
                del self.tombstones[task_id]
            if old:
                self.logger.info(f"Removed {len(old)} tombstones older than {max_age_days} days")
                self._touch()
            return len(old)

    def restore_tombstone(self, task_id: str) -> bool:
        """Forget a tombstone so the task can be discovered again."""
        with self._lock:
            if self.tombstones.pop(task_id, None) is None:
                return False
            self._touch()
            return True

    def get_tombstone_age_stats(self) -> Dict[str, int]:
        now = self.clock()
        stats = {"total": 0, "last_week": 0, "last_month": 0, "older": 0}
        for stone in self.tombstones.values():
            age = now - stone.deleted_at
            stats["total"] += 1
            if age <= timedelta(days=7):
                stats["last_week"] += 1
            elif age <= timedelta(days=30):
                stats["last_month"] += 1
            else:
                stats["older"] += 1
        return stats

    def get_tombstone_reason_breakdown(self) -> Dict[str, int]:
        breakdown = {reason.value: 0 for reason in TombstoneReason}
        for stone in self.tombstones.values():
            breakdown[stone.reason.value] += 1
        return breakdown

    def get_completion_histogram(self) -> Dict[str, int]:
        histogram = {category.value: 0 for category in CompletionCategory}
        for task in self.tasks.values():
            histogram[task.completion_category.value] += 1
        return histogram

    # ------------------------------------------------------------------
    # Sync instructions

    def has_pending_instruction(self, instruction: SyncInstruction) -> bool:
        return any(instruction.same_change_as(p) for p in self.pending_instructions.values())

    def add_instruction(self, instruction: SyncInstruction) -> bool:
        """Queue an instruction. Returns False if an identical one is already pending."""
        with self._lock:
            if self.has_pending_instruction(instruction):
                return False
            # A newer decision for the same task supersedes older pending ones
            for iid in [i for i, p in self.pending_instructions.items() if p.task_id == instruction.task_id]:
                del self.pending_instructions[iid]
            self.pending_instructions[instruction.id] = instruction
            self._touch()
            return True

    def get_pending_instructions(self, task_id: Optional[str] = None) -> List[SyncInstruction]:
        items = sorted(self.pending_instructions.values(), key=lambda i: i.created_at)
        return [i for i in items if task_id is None or i.task_id == task_id]

    def get_failed_instructions(self) -> List[SyncInstruction]:
        return sorted(self.failed_instructions.values(), key=lambda i: i.created_at)

    def mark_instruction_applied(self, instruction_id: str) -> SyncInstruction:
        with self._lock:
            instruction = self.pending_instructions.pop(instruction_id, None)
            if instruction is None:
                raise JournalError(f"No pending instruction {instruction_id}")
            instruction.status = InstructionStatus.APPLIED
            task = self.tasks.get(instruction.task_id)
            if task is not None:
                if instruction.direction == SyncDirection.LOCAL_TO_REMOTE:
                    task.remote_completed = instruction.new_completed
                else:
                    task.local_completed = instruction.new_completed
                task.last_sync_operation_at = self.clock()
                task.refresh_category()
            self.stats.operations_attempted += 1
            self.stats.operations_succeeded += 1
            self._touch()
            return instruction

    def mark_instruction_failed(self, instruction_id: str, error: str) -> SyncInstruction:
        with self._lock:
            instruction = self.pending_instructions.pop(instruction_id, None)
            if instruction is None:
                raise JournalError(f"No pending instruction {instruction_id}")
            instruction.status = InstructionStatus.FAILED
            instruction.retry_count += 1
            instruction.last_error = error
            self.failed_instructions[instruction.id] = instruction
            self.stats.operations_attempted += 1
            self.stats.operations_failed += 1
            self._touch()
            return instruction

    def requeue_failed_instructions(self, max_retries: int = 3) -> int:
        """Move failed instructions below ``max_retries`` back to pending."""
        with self._lock:
            requeued = 0
            for iid, instruction in list(self.failed_instructions.items()):
                if instruction.retry_count >= max_retries or instruction.task_id not in self.tasks:
                    continue
                del self.failed_instructions[iid]
                instruction.status = InstructionStatus.PENDING
                if self.has_pending_instruction(instruction):
                    continue
                self.pending_instructions[iid] = instruction
                requeued += 1
            if requeued:
                self._touch()
            return requeued

    # ------------------------------------------------------------------
    # Discovery retry queue

    def queue_discovery_retry(self, task_id: str, document_path: str, line_index: int,
                              error: Optional[str] = None) -> bool:
        """Record a failed first fetch. Returns False once attempts are exhausted."""
        with self._lock:
            entry = self.retry_queue.enqueue(task_id, document_path, line_index, self.clock(), error)
            self._touch()
            if entry is None:
                self.logger.warning(f"Giving up on discovering task {task_id}: {error}")
                return False
            return True

    def due_discovery_retries(self, now: Optional[datetime] = None) -> List[RetryEntry]:
        return self.retry_queue.due(now or self.clock())

    # ------------------------------------------------------------------
    # Bookkeeping and statistics

    def update_last_scan_time(self, when: Optional[datetime] = None) -> None:
        with self._lock:
            self.last_scan_at = when or self.clock()
            self._touch()

    def update_last_validation_time(self, when: Optional[datetime] = None) -> None:
        with self._lock:
            self.last_validation_at = when or self.clock()
            self._touch()

    def update_last_heal_time(self, when: Optional[datetime] = None) -> None:
        with self._lock:
            self.last_heal_at = when or self.clock()
            self._touch()

    def record_cycle(self, duration: float, api_calls: int, tasks_processed: int) -> None:
        with self._lock:
            stats = self.stats
            stats.total_cycles += 1
            stats.last_sync_duration = duration
            if stats.total_cycles == 1:
                stats.average_sync_duration = duration
            else:
                stats.average_sync_duration += SYNC_DURATION_SMOOTHING * (duration - stats.average_sync_duration)
            stats.api_calls_last_cycle = api_calls
            stats.total_api_calls += api_calls
            stats.tasks_processed_last_cycle = tasks_processed
            self._touch()

    def get_stats(self) -> Dict[str, Any]:
        stats = asdict(self.stats)
        stats.update({
            "active_tasks": len(self.tasks),
            "tombstones": len(self.tombstones),
            "orphaned_tasks": sum(1 for t in self.tasks.values() if t.is_orphaned),
            "pending_instructions": len(self.pending_instructions),
            "failed_instructions": len(self.failed_instructions),
            "queued_discoveries": len(self.retry_queue),
            "completion_categories": self.get_completion_histogram(),
            "tombstone_reasons": self.get_tombstone_reason_breakdown(),
            "tombstone_ages": self.get_tombstone_age_stats(),
            "last_scan_at": to_iso(self.last_scan_at),
            "last_heal_at": to_iso(self.last_heal_at),
        })
        return stats

    def validate_completeness(self, referenced_ids: Iterable[str]) -> CompletenessReport:
        """Compare IDs referenced in the vault against what the journal knows."""
        referenced = set(referenced_ids)
        tracked = referenced & set(self.tasks)
        tombstoned = referenced & set(self.tombstones)
        return CompletenessReport(
            referenced=len(referenced),
            tracked=len(tracked),
            tombstoned=len(tombstoned),
            missing=referenced - tracked - tombstoned,
        )

    # ------------------------------------------------------------------
    # Maintenance

    def list_backups(self, category: Optional[str] = None) -> List[BackupInfo]:
        return self.backups.list_backups(category)

    def create_manual_backup(self) -> Optional[Path]:
        self.flush()
        return self.backups.create(backup_categories.MANUAL)

    def reset(self) -> None:
        """Back up, then empty the journal."""
        with self._lock:
            self.flush()
            self.backups.create(backup_categories.RESET)
            self._reset_state()
            self.logger.warning("Journal reset")
            self.save()

    def restore_from_backup(self, backup_path: str) -> LoadReport:
        """Replace the journal with a backup after validating it."""
        with self._lock:
            path = Path(backup_path)
            try:
                self._read_candidate(path)
            except (OSError, JournalLoadError) as e:
                raise BackupError(f"Backup {path.name} is not a usable journal: {e}") from e
            self.flush()
            self.backups.create(backup_categories.PRE_RESTORE)
            self.backups.restore(path)
            self.logger.info(f"Restored journal from {path.name}")
            return self.load()
