"""
Domain models for todoist-sync.

This module contains the core data structures shared by the journal,
the change detector and the CLI commands.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4
import os
import json

from ..utils.date import from_iso, to_iso, utc_now
from .paths import get_path_manager


def _normalize_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


class TaskStatus(Enum):
    """Checkbox state of a task line."""

    OPEN = "open"
    COMPLETED = "completed"


class CompletionCategory(Enum):
    """Combined completion state of a tracked task."""

    LOCAL_ONLY = "local-only-complete"
    REMOTE_ONLY = "remote-only-complete"
    BOTH_OPEN = "both-open"
    BOTH_COMPLETE = "both-complete"

    @classmethod
    def from_states(cls, local_completed: bool, remote_completed: bool) -> CompletionCategory:
        if local_completed and remote_completed:
            return cls.BOTH_COMPLETE
        if local_completed:
            return cls.LOCAL_ONLY
        if remote_completed:
            return cls.REMOTE_ONLY
        return cls.BOTH_OPEN


class ReconcileClass(Enum):
    """Eligibility class of a task, in priority order."""

    TOMBSTONED = "tombstoned"
    ORPHANED = "orphaned"
    MISMATCH = "mismatch"
    BOTH_OPEN = "both-open"
    BOTH_COMPLETE = "both-complete"


class TombstoneReason(Enum):
    """Why a task ID must never be fetched again."""

    REMOTE_DELETED = "remote-deleted"
    REMOTE_INACCESSIBLE = "remote-inaccessible"
    USER_REMOVED = "user-removed"


class SyncDirection(Enum):
    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"


class InstructionStatus(Enum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


class LocateMethod(Enum):
    """How TaskLocator found the task line."""

    ANCHOR = "anchor"
    ID_SEARCH = "id_search"
    LAST_LINE = "last_line"


class DocumentMethod(Enum):
    """How TaskLocator resolved the document itself."""

    UID = "uid"
    PATH = "path"
    UPDATED = "updated"


class OrphanReason(Enum):
    REMOTE_NOT_FOUND = "remote-not-found"
    DOCUMENT_MISSING = "document-missing"


@dataclass
class RemoteTask:
    """Normalized Todoist task, independent of which endpoint produced it."""

    id: str
    content: str
    completed: bool
    due_date: Optional[str] = None
    project_id: Optional[str] = None
    legacy_id: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class TrackedTask:
    """Reconciliation state for one Todoist task linked from the vault."""

    task_id: str
    document_path: str
    line_index: int
    document_uid: Optional[str] = None
    anchor: Optional[str] = None
    local_completed: bool = False
    remote_completed: bool = False
    completion_category: CompletionCategory = CompletionCategory.BOTH_OPEN
    local_content_hash: Optional[str] = None
    remote_content_hash: Optional[str] = None
    discovered_at: datetime = field(default_factory=utc_now)
    last_local_check_at: Optional[datetime] = None
    last_remote_check_at: Optional[datetime] = None
    last_remote_seen_at: Optional[datetime] = None
    remote_missing_since: Optional[datetime] = None
    last_anchor_validation_at: Optional[datetime] = None
    last_sync_operation_at: Optional[datetime] = None
    remote_due_date: Optional[str] = None
    project_id: Optional[str] = None
    is_orphaned: bool = False
    orphaned_at: Optional[datetime] = None
    orphan_reason: Optional[OrphanReason] = None
    document_missing_since: Optional[datetime] = None
    has_achieved_dual_completion: bool = False

    _DATETIME_FIELDS = (
        "discovered_at",
        "last_local_check_at",
        "last_remote_check_at",
        "last_remote_seen_at",
        "remote_missing_since",
        "last_anchor_validation_at",
        "last_sync_operation_at",
        "orphaned_at",
        "document_missing_since",
    )

    def __post_init__(self) -> None:
        self.refresh_category()

    def refresh_category(self) -> None:
        """Recompute the derived category and latch dual-completion finality."""
        self.completion_category = CompletionCategory.from_states(
            self.local_completed, self.remote_completed
        )
        if self.completion_category == CompletionCategory.BOTH_COMPLETE:
            self.has_achieved_dual_completion = True

    def copy_with(self, **changes: Any) -> TrackedTask:
        task = replace(self, **changes)
        task.refresh_category()
        return task

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in self._DATETIME_FIELDS:
                value = to_iso(value)
            elif isinstance(value, Enum):
                value = value.value
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TrackedTask:
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        for name in cls._DATETIME_FIELDS:
            if name in kwargs:
                kwargs[name] = from_iso(kwargs[name])
        if kwargs.get("discovered_at") is None:
            kwargs["discovered_at"] = utc_now()
        kwargs.pop("completion_category", None)
        reason = kwargs.get("orphan_reason")
        kwargs["orphan_reason"] = OrphanReason(reason) if reason else None
        kwargs["line_index"] = int(kwargs.get("line_index", 0) or 0)
        return cls(**kwargs)


@dataclass
class Tombstone:
    """Permanent record that a task ID must never be re-fetched."""

    task_id: str
    reason: TombstoneReason
    deleted_at: datetime = field(default_factory=utc_now)
    last_document_path: Optional[str] = None
    http_status: Optional[int] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "reason": self.reason.value,
            "deleted_at": to_iso(self.deleted_at),
            "last_document_path": self.last_document_path,
            "http_status": self.http_status,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Tombstone:
        return cls(
            task_id=data["task_id"],
            reason=TombstoneReason(data.get("reason", TombstoneReason.REMOTE_DELETED.value)),
            deleted_at=from_iso(data.get("deleted_at")) or utc_now(),
            last_document_path=data.get("last_document_path"),
            http_status=data.get("http_status"),
            note=data.get("note"),
        )


@dataclass
class SyncInstruction:
    """Directional completion change for an external applier to carry out."""

    task_id: str
    direction: SyncDirection
    new_completed: bool
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    status: InstructionStatus = InstructionStatus.PENDING
    last_error: Optional[str] = None

    def same_change_as(self, other: SyncInstruction) -> bool:
        return (
            self.task_id == other.task_id
            and self.direction == other.direction
            and self.new_completed == other.new_completed
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "direction": self.direction.value,
            "new_completed": self.new_completed,
            "created_at": to_iso(self.created_at),
            "retry_count": self.retry_count,
            "status": self.status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncInstruction:
        return cls(
            id=data.get("id") or uuid4().hex,
            task_id=data["task_id"],
            direction=SyncDirection(data["direction"]),
            new_completed=bool(data["new_completed"]),
            created_at=from_iso(data.get("created_at")) or utc_now(),
            retry_count=int(data.get("retry_count", 0)),
            status=InstructionStatus(data.get("status", InstructionStatus.PENDING.value)),
            last_error=data.get("last_error"),
        )


@dataclass
class LocatedTask:
    """Result of locating a tracked task inside the vault."""

    document_path: str
    line_index: int
    line: str
    completed: bool
    content_hash: str
    anchor: Optional[str]
    method: LocateMethod
    document_method: DocumentMethod
    document_uid: Optional[str] = None
    needs_journal_update: bool = False


@dataclass
class DiscoveredTask:
    """A task line in the vault that links to a Todoist task."""

    task_id: str
    document_path: str
    line_index: int
    line: str
    completed: bool
    document_uid: Optional[str] = None
    anchor: Optional[str] = None


@dataclass
class ChangeSet:
    """Outcome of one reconciliation cycle."""

    new_tasks: List[TrackedTask] = field(default_factory=list)
    modified_tasks: List[TrackedTask] = field(default_factory=list)
    instructions: List[SyncInstruction] = field(default_factory=list)
    api_calls: int = 0
    duration_seconds: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.new_tasks or self.modified_tasks or self.instructions)


@dataclass
class HealResult:
    """Outcome of a bulk journal heal."""

    healed_count: int = 0
    failed_count: int = 0
    tombstoned_count: int = 0
    skipped: bool = False
    rate_limited: bool = False
    reason: Optional[str] = None
    missing_count: int = 0
    api_calls: int = 0


@dataclass(frozen=True)
class SyncPolicy:
    """Timing knobs consumed by the eligibility policy."""

    sync_interval: timedelta = timedelta(minutes=15)
    track_completed_tasks: bool = True
    completed_check_cooldown: timedelta = timedelta(hours=24)
    not_found_grace: timedelta = timedelta(hours=24)
    orphan_retry_interval: timedelta = timedelta(hours=24)
    orphan_tombstone_after: timedelta = timedelta(days=30)
    missing_document_grace: timedelta = timedelta(days=7)


DEFAULT_BACKUP_RETENTION: Dict[str, Dict[str, Any]] = {
    "routine": {"max_count": 5, "auto_cleanup": True},
    "load": {"max_count": 3, "auto_cleanup": True},
    "pre_restore": {"max_count": 5, "auto_cleanup": True},
    "pre_heal": {"max_count": 3, "auto_cleanup": True},
    "reset": {"max_count": 10, "auto_cleanup": False},
    "migration": {"max_count": 10, "auto_cleanup": False},
    "manual": {"max_count": None, "auto_cleanup": False},
    "corrupt": {"max_count": None, "auto_cleanup": False},
}


@dataclass
class SyncConfig:
    """Configuration for sync operations."""

    vault_path: Optional[str] = None
    api_token: Optional[str] = None
    journal_path: Optional[str] = None
    id_cache_path: Optional[str] = None
    uid_field: str = "uuid"
    # Eligibility policy
    sync_interval_minutes: int = 15
    track_completed_tasks: bool = True
    completed_check_cooldown_hours: float = 24
    not_found_grace_hours: float = 24
    orphan_retry_hours: float = 24
    orphan_tombstone_days: float = 30
    missing_document_grace_days: float = 7
    # Discovery
    full_scan_max_age_hours: float = 24
    min_task_baseline: int = 5
    bulk_fetch_threshold: int = 10
    discovery_retry_max_attempts: int = 3
    discovery_retry_delay_minutes: float = 5
    # Journal persistence
    auto_save_delay_seconds: float = 2.0
    routine_backup_min_interval_minutes: float = 10
    suspicious_empty_journal_bytes: int = 4096
    backup_retention: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: json.loads(json.dumps(DEFAULT_BACKUP_RETENTION))
    )
    # Healing
    heal_min_interval_minutes: float = 5
    heal_batch_size: int = 5
    heal_batch_delay_seconds: float = 1.0
    heal_max_batch_delay_seconds: float = 30.0
    # Remote client
    api_base_url: str = "https://api.todoist.com/api/v1"
    sync_api_base_url: str = "https://api.todoist.com/sync/v9"
    request_timeout_seconds: float = 30.0
    rate_limit_max_retries: int = 3
    rate_limit_backoff_base_seconds: float = 1.0
    rate_limit_backoff_max_seconds: float = 5.0
    id_cache_ttl_hours: float = 24 * 30

    def __post_init__(self) -> None:
        manager = get_path_manager()
        if self.journal_path is None:
            self.journal_path = str(manager.journal_path)
        if self.id_cache_path is None:
            self.id_cache_path = str(manager.id_cache_path)
        env_token = os.environ.get("TODOIST_API_TOKEN")
        if env_token:
            self.api_token = env_token

    @property
    def policy(self) -> SyncPolicy:
        return SyncPolicy(
            sync_interval=timedelta(minutes=self.sync_interval_minutes),
            track_completed_tasks=self.track_completed_tasks,
            completed_check_cooldown=timedelta(hours=self.completed_check_cooldown_hours),
            not_found_grace=timedelta(hours=self.not_found_grace_hours),
            orphan_retry_interval=timedelta(hours=self.orphan_retry_hours),
            orphan_tombstone_after=timedelta(days=self.orphan_tombstone_days),
            missing_document_grace=timedelta(days=self.missing_document_grace_days),
        )

    @classmethod
    def load_from_file(cls, config_path: str) -> SyncConfig:
        config_path = _normalize_path(config_path)
        if not os.path.exists(config_path):
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError:
            return cls()

        known = {f.name for f in fields(cls)}
        sync_settings = data.get("sync", {})
        paths = data.get("paths", {})

        kwargs: Dict[str, Any] = {
            "vault_path": data.get("vault_path"),
            "api_token": data.get("api_token"),
            "uid_field": data.get("uid_field", "uuid"),
            "journal_path": paths.get("journal"),
            "id_cache_path": paths.get("id_cache"),
        }
        for key, value in sync_settings.items():
            if key in known:
                kwargs[key] = value

        retention = json.loads(json.dumps(DEFAULT_BACKUP_RETENTION))
        for category, settings in data.get("backup_retention", {}).items():
            retention.setdefault(category, {}).update(settings)
        kwargs["backup_retention"] = retention

        return cls(**kwargs)

    def save_to_file(self, config_path: str) -> None:
        config_path = _normalize_path(config_path)
        os.makedirs(os.path.dirname(config_path), exist_ok=True)

        skip = {"vault_path", "api_token", "uid_field", "journal_path", "id_cache_path", "backup_retention"}
        data = {
            "vault_path": self.vault_path,
            "uid_field": self.uid_field,
            "sync": {
                f.name: getattr(self, f.name)
                for f in fields(self)
                if f.name not in skip
            },
            "paths": {
                "journal": self.journal_path,
                "id_cache": self.id_cache_path,
            },
            "backup_retention": self.backup_retention,
        }
        # The token stays in the environment when it came from there
        if self.api_token and not os.environ.get("TODOIST_API_TOKEN"):
            data["api_token"] = self.api_token

        with open(config_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
