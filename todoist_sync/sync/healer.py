"""
Bulk repair of journal gaps.

A heal compares every Todoist ID linked from the vault with what the
journal knows and materializes the missing ones with as few API calls as
possible: one listing of active tasks, then the completed archive per
project (only for IDs still unresolved), then single fetches for the rest.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from todoist_sync.core.exceptions import (
    BackupError,
    RateLimitError,
    RemoteAPIError,
    TaskAccessDeniedError,
    TaskNotFoundError,
)
from todoist_sync.core.models import DiscoveredTask, HealResult, RemoteTask, SyncConfig, TombstoneReason
from todoist_sync.journal import backups as backup_categories


class JournalHealer:
    """Fills journal gaps found by a full vault scan."""

    def __init__(
        self,
        detector,
        config: Optional[SyncConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.detector = detector
        self.config = config or SyncConfig()
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    @property
    def journal(self):
        return self.detector.journal

    @property
    def client(self):
        return self.detector.client

    @staticmethod
    def _index(tasks) -> Dict[str, RemoteTask]:
        index: Dict[str, RemoteTask] = {}
        for task in tasks:
            index[task.id] = task
            if task.legacy_id:
                index.setdefault(task.legacy_id, task)
        return index

    def _fetch_completed(self, wanted: List[str]) -> Dict[str, RemoteTask]:
        """
        Search the completed archive project by project until every wanted ID is found.

        Projects are fetched in parallel batches. Worker threads only talk
        HTTP; the journal is touched by the calling thread alone.
        """
        try:
            projects = self.client.get_projects()
        except RemoteAPIError as e:
            self.logger.warning(f"Could not list projects for completed-task lookup: {e}")
            return {}

        remaining = set(wanted)
        found: Dict[str, RemoteTask] = {}
        batch_size = max(1, self.config.heal_batch_size)
        base_delay = self.config.heal_batch_delay_seconds
        max_delay = self.config.heal_max_batch_delay_seconds
        delay = base_delay

        project_ids = [str(p.get("id")) for p in projects if p.get("id") is not None]
        batches = [project_ids[i:i + batch_size] for i in range(0, len(project_ids), batch_size)]

        for number, batch in enumerate(batches):
            rate_limited = False
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = {pid: pool.submit(lambda p: list(self.client.iter_completed_for_project(p)), pid)
                           for pid in batch}
                for project_id, future in futures.items():
                    try:
                        items = future.result()
                    except RateLimitError as e:
                        self.logger.warning(f"Rate limited reading completed tasks of project {project_id}: {e}")
                        rate_limited = True
                        continue
                    except RemoteAPIError as e:
                        self.logger.warning(f"Completed tasks of project {project_id} unavailable: {e}")
                        continue
                    for item_id, item in self._index(items).items():
                        if item_id in remaining:
                            found[item_id] = item
                            remaining.discard(item_id)

            if not remaining:
                break
            if rate_limited:
                delay = min(delay * 2, max_delay)
            else:
                delay = max(base_delay, delay / 2)
            if number < len(batches) - 1 and delay > 0:
                self.logger.debug(f"Waiting {delay:.1f}s before next project batch")
                self.sleep(delay)

        self.logger.info(f"Completed archive resolved {len(found)} of {len(wanted)} tasks")
        return found

    def _store(self, discovered: DiscoveredTask, remote: RemoteTask, result: HealResult) -> None:
        entry = self.detector.factory.from_bulk(discovered, remote)
        self.journal.add_task(entry)
        self.journal.save()
        result.healed_count += 1

    def heal(self, force: bool = False) -> HealResult:
        """
        Bring every vault-referenced task into the journal.

        Skipped when a heal ran less than ``heal_min_interval_minutes`` ago
        (unless forced) or when the journal already knows every ID. A rate
        limit on the active-task listing aborts the heal.
        """
        journal = self.journal
        now = self.detector.clock()
        result = HealResult()

        min_interval = timedelta(minutes=self.config.heal_min_interval_minutes)
        if not force and journal.last_heal_at and now - journal.last_heal_at < min_interval:
            result.skipped = True
            result.reason = "healed recently"
            return result

        referenced = self.detector.scan_all_files_for_task_ids()
        missing = [d for task_id, d in referenced.items() if not journal.is_known(task_id)]
        result.missing_count = len(missing)
        if not missing:
            journal.update_last_heal_time(now)
            result.skipped = True
            result.reason = "no missing tasks"
            return result

        self.logger.info(f"Healing journal: {len(missing)} referenced tasks are untracked")
        calls_before = self.detector.api_call_count()
        journal.flush()
        try:
            journal.backups.create(backup_categories.PRE_HEAL)
        except BackupError as e:
            self.logger.warning(f"Pre-heal backup failed: {e}")

        journal.suspend_auto_save()
        try:
            try:
                active_tasks = self.client.get_tasks()
            except RateLimitError as e:
                self.logger.warning(f"Heal aborted, rate limited listing active tasks: {e}")
                result.rate_limited = True
                result.reason = "rate limited"
                return result
            except RemoteAPIError as e:
                self.logger.warning(f"Active task listing failed, continuing without it: {e}")
                active_tasks = []

            self.detector.prime_bulk_cache(active_tasks)
            known = self._index(active_tasks)
            unresolved = [d.task_id for d in missing if d.task_id not in known]
            if unresolved:
                known.update(self._fetch_completed(unresolved))

            for discovered in missing:
                task_id = discovered.task_id
                if journal.is_known(task_id):
                    continue
                remote = known.get(task_id)
                if remote is not None:
                    self._store(discovered, remote, result)
                    continue
                try:
                    remote = self.client.get_task(task_id)
                except TaskNotFoundError as e:
                    journal.mark_as_deleted(
                        task_id, TombstoneReason.REMOTE_DELETED, http_status=404,
                        note=f"not active, not in completed archive: {e}",
                        document_path=discovered.document_path,
                    )
                    journal.save()
                    result.tombstoned_count += 1
                    continue
                except TaskAccessDeniedError as e:
                    journal.mark_as_deleted(
                        task_id, TombstoneReason.REMOTE_INACCESSIBLE, http_status=403,
                        note=str(e), document_path=discovered.document_path,
                    )
                    journal.save()
                    result.tombstoned_count += 1
                    continue
                except RemoteAPIError as e:
                    self.logger.warning(f"Could not heal task {task_id}: {e}")
                    result.failed_count += 1
                    continue
                self._store(discovered, remote, result)
        finally:
            journal.resume_auto_save(flush=True)
            journal.repair_overlaps()
            journal.update_last_heal_time(now)
            result.api_calls = self.detector.api_call_count() - calls_before

        self.logger.info(
            f"Heal finished: {result.healed_count} healed, {result.tombstoned_count} tombstoned, "
            f"{result.failed_count} failed"
        )
        return result
