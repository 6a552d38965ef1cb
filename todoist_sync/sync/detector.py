"""
Change detection between the vault and Todoist.

One call to ``detect_changes`` is one reconciliation cycle:

1. discover task lines linking Todoist IDs the journal does not know and
   materialize them (one remote fetch each, failures go to the retry queue)
2. drain the discovery retry queue, then persist
3. compare every task that is due: locally when its note changed, remotely
   when the eligibility policy allows, and emit at most one instruction
4. record cycle statistics and flush the journal
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from todoist_sync.core.exceptions import (
    RemoteAPIError,
    TaskAccessDeniedError,
    TaskNotFoundError,
)
from todoist_sync.core.models import (
    ChangeSet,
    DiscoveredTask,
    DocumentMethod,
    HealResult,
    OrphanReason,
    RemoteTask,
    SyncConfig,
    SyncDirection,
    SyncInstruction,
    TombstoneReason,
    TrackedTask,
)
from todoist_sync.core.policy import priority_key, should_check_remote_now
from todoist_sync.obsidian.parser import extract_block_id, is_completed, iter_linked_tasks
from .factory import EntryFactory
from .healer import JournalHealer
from .locator import TaskLocator


# Completion, content and location fields; timestamps alone do not make a task "modified"
_MEANINGFUL_FIELDS = (
    "local_completed",
    "remote_completed",
    "local_content_hash",
    "remote_content_hash",
    "document_path",
    "line_index",
    "anchor",
    "document_uid",
    "is_orphaned",
)

BULK_CACHE_MAX_AGE = timedelta(minutes=5)


@dataclass
class TaskComparison:
    """Outcome of comparing one task."""

    task_id: str
    modified: bool = False
    tombstoned: bool = False
    instruction: Optional[SyncInstruction] = None
    remote_checked: bool = False


class ChangeDetector:
    """Drives discovery, comparison and healing against one journal."""

    def __init__(
        self,
        journal,
        store,
        client,
        normalizer=None,
        *,
        config: Optional[SyncConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.journal = journal
        self.store = store
        self.client = client
        self.normalizer = normalizer
        self.config = config or SyncConfig()
        self.policy = self.config.policy
        self.clock = clock or journal.clock
        self.logger = logger or logging.getLogger(__name__)

        aliases = None
        if normalizer is not None:
            aliases = lambda task_id: [normalizer.legacy_for(task_id)]
        self.locator = TaskLocator(store, aliases=aliases, logger=self.logger)
        self.factory = EntryFactory(clock=self.clock)
        self.healer = JournalHealer(self, config=self.config, sleep=sleep, logger=self.logger)

        self._bulk_cache: Dict[str, RemoteTask] = {}
        self._bulk_cache_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Remote access

    def api_call_count(self) -> int:
        return getattr(self.client, "api_calls", 0)

    def prime_bulk_cache(self, tasks: Iterable[RemoteTask]) -> None:
        cache: Dict[str, RemoteTask] = {}
        for task in tasks:
            cache[task.id] = task
            if task.legacy_id:
                cache.setdefault(task.legacy_id, task)
        self._bulk_cache = cache
        self._bulk_cache_at = self.clock()

    def _cached_remote(self, task_id: str) -> Optional[RemoteTask]:
        if self._bulk_cache_at is None or self.clock() - self._bulk_cache_at > BULK_CACHE_MAX_AGE:
            return None
        return self._bulk_cache.get(task_id)

    def fetch_remote(self, task_id: str) -> Optional[RemoteTask]:
        """
        Current remote state of a task, bulk cache first.

        Returns None for tombstoned IDs without touching the network.
        Remote errors propagate to the caller.
        """
        if self.journal.is_task_deleted(task_id):
            return None
        cached = self._cached_remote(task_id)
        if cached is not None:
            return cached
        remote = self.client.get_task(task_id)
        if self.normalizer is not None and remote.legacy_id and remote.id != remote.legacy_id:
            self.normalizer.remember(remote.legacy_id, remote.id)
        return remote

    def prefetch_active_tasks(self) -> bool:
        """One bulk listing of active tasks for this cycle's comparisons."""
        try:
            self.prime_bulk_cache(self.client.get_tasks())
        except RemoteAPIError as e:
            self.logger.warning(f"Bulk fetch of active tasks failed, falling back to single fetches: {e}")
            return False
        return True

    def should_check_remote_now(self, task: TrackedTask) -> bool:
        return should_check_remote_now(
            task, self.clock(), self.policy, tombstoned=self.journal.is_task_deleted(task.task_id)
        )

    # ------------------------------------------------------------------
    # Vault scanning

    def _scan_documents(self, documents) -> List[DiscoveredTask]:
        found: List[DiscoveredTask] = []
        for document in documents:
            try:
                lines = self.store.read_lines(document)
            except (OSError, UnicodeDecodeError) as e:
                self.logger.warning(f"Skipping unreadable note {document.path}: {e}")
                continue
            uid = None
            for index, line, raw_id in iter_linked_tasks(lines):
                if uid is None:
                    uid = self.store.get_uid(document) or ""
                found.append(DiscoveredTask(
                    task_id=raw_id,
                    document_path=document.path,
                    line_index=index,
                    line=line,
                    completed=is_completed(line),
                    document_uid=uid or None,
                    anchor=extract_block_id(line),
                ))
        return self._canonicalize(found)

    def _canonicalize(self, found: List[DiscoveredTask]) -> List[DiscoveredTask]:
        """Map IDs to canonical form and keep the first occurrence of each."""
        # Tracked and tombstoned IDs are already in their journal form
        unknown = {d.task_id for d in found if not self.journal.is_known(d.task_id)}
        if self.normalizer is not None and unknown:
            mapping = self.normalizer.to_canonical_many(unknown)
            for discovered in found:
                discovered.task_id = mapping.get(discovered.task_id) or discovered.task_id

        unique: Dict[str, DiscoveredTask] = {}
        for discovered in found:
            unique.setdefault(discovered.task_id, discovered)
        return list(unique.values())

    def scan_all_files_for_task_ids(self) -> Dict[str, DiscoveredTask]:
        """Every Todoist ID linked anywhere in the vault, first occurrence wins."""
        found: Dict[str, DiscoveredTask] = {}
        for discovered in self._scan_documents(self.store.list_documents()):
            found.setdefault(discovered.task_id, discovered)
        return found

    def _candidate_documents(self, now: datetime):
        documents = self.store.list_documents()
        last_scan = self.journal.last_scan_at
        if last_scan is None:
            self.logger.debug("No previous scan, scanning the whole vault")
            return documents
        if len(self.journal.tasks) < self.config.min_task_baseline:
            self.logger.debug("Known-task baseline too small, forcing a full scan")
            return documents
        if now - last_scan > timedelta(hours=self.config.full_scan_max_age_hours):
            self.logger.debug("Last scan too old, forcing a full scan")
            return documents
        return [doc for doc in documents if doc.mtime >= last_scan]

    # ------------------------------------------------------------------
    # Discovery

    def _materialize(self, discovered: DiscoveredTask) -> Optional[TrackedTask]:
        """Fetch and track one discovered task; failures are tombstoned or queued."""
        task_id = discovered.task_id
        try:
            remote = self.fetch_remote(task_id)
        except TaskNotFoundError as e:
            self.journal.mark_as_deleted(
                task_id, TombstoneReason.REMOTE_DELETED, http_status=404,
                note=str(e), document_path=discovered.document_path,
            )
            return None
        except TaskAccessDeniedError as e:
            self.journal.mark_as_deleted(
                task_id, TombstoneReason.REMOTE_INACCESSIBLE, http_status=403,
                note=str(e), document_path=discovered.document_path,
            )
            return None
        except RemoteAPIError as e:
            self.logger.warning(f"Fetching new task {task_id} failed, queued for retry: {e}")
            self.journal.queue_discovery_retry(task_id, discovered.document_path, discovered.line_index, str(e))
            return None

        if remote is None:
            return None
        entry = self.factory.from_remote(discovered, remote)
        if entry.task_id != task_id and self.journal.is_known(entry.task_id):
            return None
        self.journal.add_task(entry)
        self.logger.debug(f"Tracking new task {entry.task_id} from {discovered.document_path}:{discovered.line_index}")
        return entry

    def _process_retry_queue(self, now: datetime) -> List[TrackedTask]:
        recovered: List[TrackedTask] = []
        for entry in self.journal.due_discovery_retries(now):
            if self.journal.is_known(entry.task_id):
                self.journal.retry_queue.remove(entry.task_id)
                continue
            document = self.store.get_document(entry.document_path)
            discovered = None
            if document is not None:
                for candidate in self._scan_documents([document]):
                    if candidate.task_id == entry.task_id:
                        discovered = candidate
                        break
            if discovered is None:
                self.logger.debug(f"Queued task {entry.task_id} no longer linked from {entry.document_path}")
                self.journal.retry_queue.remove(entry.task_id)
                continue
            task = self._materialize(discovered)
            if task is not None:
                recovered.append(task)
        return recovered

    def discover_new_tasks(self) -> List[TrackedTask]:
        """Scan candidate notes for untracked links and start tracking them."""
        now = self.clock()
        new_tasks: List[TrackedTask] = []
        for discovered in self._scan_documents(self._candidate_documents(now)):
            if self.journal.is_known(discovered.task_id) or discovered.task_id in self.journal.retry_queue:
                continue
            task = self._materialize(discovered)
            if task is not None:
                new_tasks.append(task)

        new_tasks.extend(self._process_retry_queue(now))
        self.journal.update_last_scan_time(now)
        self.journal.flush()
        if new_tasks:
            self.logger.info(f"Discovered {len(new_tasks)} new tasks")
        return new_tasks

    # ------------------------------------------------------------------
    # Comparison

    def _select_for_comparison(self, now: datetime, exclude: Iterable[str] = ()) -> List[TrackedTask]:
        """Tasks due a remote check plus tasks whose note changed since their last local check."""
        skip = set(exclude)
        selected: Dict[str, TrackedTask] = {
            t.task_id: t for t in self.journal.get_tasks_needing_sync(now) if t.task_id not in skip
        }
        mtimes = {doc.path: doc.mtime for doc in self.store.list_documents()}
        for task in self.journal.get_active_tasks():
            if task.task_id in selected or task.task_id in skip:
                continue
            mtime = mtimes.get(task.document_path)
            if mtime is None or task.last_local_check_at is None or mtime >= task.last_local_check_at:
                selected[task.task_id] = task
        return sorted(selected.values(), key=priority_key)

    def _handle_missing_document(self, task: TrackedTask, now: datetime, changes: Dict) -> None:
        if task.document_missing_since is None:
            changes["document_missing_since"] = now
            return
        if not task.is_orphaned and now - task.document_missing_since >= self.policy.missing_document_grace:
            self.logger.info(f"Task {task.task_id}: note missing since {task.document_missing_since}, orphaning")
            changes.update(is_orphaned=True, orphaned_at=now, orphan_reason=OrphanReason.DOCUMENT_MISSING)

    def _handle_remote_not_found(self, task: TrackedTask, now: datetime, changes: Dict, error: Exception) -> bool:
        """Grace period, then orphan, then tombstone. Returns True if tombstoned."""
        changes["last_remote_check_at"] = now
        if task.is_orphaned and task.orphan_reason == OrphanReason.REMOTE_NOT_FOUND:
            if task.orphaned_at and now - task.orphaned_at >= self.policy.orphan_tombstone_after:
                self.journal.mark_as_deleted(
                    task.task_id, TombstoneReason.REMOTE_DELETED, http_status=404,
                    note=f"orphaned since {task.orphaned_at.isoformat()} and still not found",
                )
                return True
            return False

        missing_since = task.remote_missing_since or now
        if task.remote_missing_since is None:
            changes["remote_missing_since"] = now
            self.logger.info(f"Task {task.task_id} not found remotely ({error}); grace period started")
        if now - missing_since >= self.policy.not_found_grace:
            self.logger.info(f"Task {task.task_id} still not found after grace period, orphaning")
            changes.update(is_orphaned=True, orphaned_at=now, orphan_reason=OrphanReason.REMOTE_NOT_FOUND)
        return False

    def _decide_instruction(
        self,
        task: TrackedTask,
        fresh_local: bool,
        fresh_remote: bool,
        local_changed: bool,
        remote_changed: bool,
        both_fresh: bool,
    ) -> Optional[SyncInstruction]:
        if fresh_local == fresh_remote:
            return None

        if local_changed and not remote_changed:
            direction, value, source_changed = SyncDirection.LOCAL_TO_REMOTE, fresh_local, True
        elif remote_changed and not local_changed:
            direction, value, source_changed = SyncDirection.REMOTE_TO_LOCAL, fresh_remote, True
        elif both_fresh:
            # Mismatch confirmed by fresh reads of both sides: completion wins
            if fresh_local:
                direction, value = SyncDirection.LOCAL_TO_REMOTE, True
            else:
                direction, value = SyncDirection.REMOTE_TO_LOCAL, True
            source_changed = False
        else:
            return None

        if task.has_achieved_dual_completion and (not value or not source_changed):
            self.logger.debug(f"Task {task.task_id}: dual completion reached, not syncing {direction.value}={value}")
            return None

        return SyncInstruction(task_id=task.task_id, direction=direction, new_completed=value, created_at=self.clock())

    def compare_task(self, task: TrackedTask) -> TaskComparison:
        """Run the local and remote checks for one task and record the result."""
        now = self.clock()
        result = TaskComparison(task_id=task.task_id)
        if self.journal.is_task_deleted(task.task_id):
            return result

        changes: Dict = {}
        located = self.locator.get_task_content(task)
        if located is None:
            self._handle_missing_document(task, now, changes)
            fresh_local = task.local_completed
            local_changed = False
        else:
            if located.document_method is DocumentMethod.UPDATED:
                self.logger.info(f"Task {task.task_id}: note moved to {located.document_path}")
            changes.update(self.factory.location_changes(task, located))
            changes["last_local_check_at"] = now
            changes["local_content_hash"] = located.content_hash
            changes["local_completed"] = located.completed
            fresh_local = located.completed
            local_changed = located.completed != task.local_completed
            if task.is_orphaned and task.orphan_reason == OrphanReason.DOCUMENT_MISSING:
                changes.update(is_orphaned=False, orphaned_at=None, orphan_reason=None)

        projected = task.copy_with(local_completed=fresh_local, is_orphaned=changes.get("is_orphaned", task.is_orphaned))
        remote: Optional[RemoteTask] = None
        if should_check_remote_now(projected, now, self.policy):
            result.remote_checked = True
            try:
                remote = self.fetch_remote(task.task_id)
            except TaskNotFoundError as e:
                if self._handle_remote_not_found(task, now, changes, e):
                    result.modified = result.tombstoned = True
                    return result
            except TaskAccessDeniedError as e:
                self.journal.mark_as_deleted(
                    task.task_id, TombstoneReason.REMOTE_INACCESSIBLE, http_status=403, note=str(e)
                )
                result.modified = result.tombstoned = True
                return result
            except RemoteAPIError as e:
                self.logger.warning(f"Remote check for {task.task_id} deferred: {e}")

        if remote is not None:
            changes.update(self.factory.remote_changes(remote))
            if task.is_orphaned and task.orphan_reason == OrphanReason.REMOTE_NOT_FOUND and located is not None:
                self.logger.info(f"Task {task.task_id} found again, clearing orphan flag")
                changes.update(is_orphaned=False, orphaned_at=None, orphan_reason=None)
        fresh_remote = remote.completed if remote is not None else task.remote_completed
        remote_changed = fresh_remote != task.remote_completed

        instruction = self._decide_instruction(
            task, fresh_local, fresh_remote, local_changed, remote_changed,
            both_fresh=located is not None and remote is not None,
        )

        result.modified = any(
            name in changes and changes[name] != getattr(task, name) for name in _MEANINGFUL_FIELDS
        )
        if changes:
            self.journal.update_task(task.task_id, **changes)
        if instruction is not None and self.journal.add_instruction(instruction):
            result.instruction = instruction
        return result

    # ------------------------------------------------------------------
    # Entry points

    def detect_changes(self) -> ChangeSet:
        """Run one reconciliation cycle."""
        started = time.monotonic()
        calls_before = self.api_call_count()
        changes = ChangeSet()

        changes.new_tasks = self.discover_new_tasks()
        now = self.clock()
        due = self._select_for_comparison(now, exclude=[t.task_id for t in changes.new_tasks])

        remote_due = sum(1 for t in due if self.should_check_remote_now(t))
        if remote_due >= self.config.bulk_fetch_threshold:
            self.prefetch_active_tasks()

        for task in due:
            current = self.journal.get_task(task.task_id)
            if current is None:
                continue
            try:
                comparison = self.compare_task(current)
            except (OSError, UnicodeDecodeError) as e:
                self.logger.warning(f"Comparison of {task.task_id} failed: {e}")
                continue
            if comparison.modified and not comparison.tombstoned:
                changes.modified_tasks.append(self.journal.get_task(task.task_id))
            if comparison.instruction is not None:
                changes.instructions.append(comparison.instruction)

        changes.duration_seconds = time.monotonic() - started
        changes.api_calls = self.api_call_count() - calls_before
        self.journal.record_cycle(changes.duration_seconds, changes.api_calls, len(due))
        self.journal.flush()
        self.logger.info(
            f"Cycle done: {len(changes.new_tasks)} new, {len(changes.modified_tasks)} modified, "
            f"{len(changes.instructions)} instructions, {changes.api_calls} API calls"
        )
        return changes

    def heal_journal(self, force: bool = False) -> HealResult:
        return self.healer.heal(force=force)
