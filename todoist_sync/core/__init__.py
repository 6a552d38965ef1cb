"""
Core module for todoist-sync - contains domain models, configuration, and exceptions.
"""

from .models import (
    ChangeSet,
    CompletionCategory,
    HealResult,
    ReconcileClass,
    RemoteTask,
    SyncConfig,
    SyncDirection,
    SyncInstruction,
    SyncPolicy,
    Tombstone,
    TombstoneReason,
    TrackedTask,
)

from .exceptions import (
    TodoistSyncError,
    ConfigurationError,
    RemoteAPIError,
    JournalError,
    SyncError,
)

__all__ = [
    # Models
    'ChangeSet',
    'CompletionCategory',
    'HealResult',
    'ReconcileClass',
    'RemoteTask',
    'SyncConfig',
    'SyncDirection',
    'SyncInstruction',
    'SyncPolicy',
    'Tombstone',
    'TombstoneReason',
    'TrackedTask',
    # Exceptions
    'TodoistSyncError',
    'ConfigurationError',
    'RemoteAPIError',
    'JournalError',
    'SyncError',
]
