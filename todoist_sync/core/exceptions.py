"""
Exception classes for todoist-sync.
"""

from typing import Optional


class TodoistSyncError(Exception):
    """Base exception for all todoist-sync errors."""
    pass


class ConfigurationError(TodoistSyncError):
    """Raised when configuration is invalid or missing."""
    pass


class VaultNotFoundError(TodoistSyncError):
    """Raised when an Obsidian vault cannot be found."""
    pass


class RemoteAPIError(TodoistSyncError):
    """Raised when the Todoist API returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_permanent(self) -> bool:
        """404 and 403 mean the task will never be readable again."""
        return self.status_code in (403, 404)

    @property
    def is_transient(self) -> bool:
        return not self.is_permanent


class RateLimitError(RemoteAPIError):
    """Raised when retries for a 429 response are exhausted."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class TaskNotFoundError(RemoteAPIError):
    """Raised when a task does not exist remotely (404)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class TaskAccessDeniedError(RemoteAPIError):
    """Raised when a task exists but is not readable with our token (403)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=403)


class RemoteUnavailableError(RemoteAPIError):
    """Raised for network failures and 5xx responses."""
    pass


class JournalError(TodoistSyncError):
    """Base exception for sync journal errors."""
    pass


class JournalLoadError(JournalError):
    """Raised when the journal cannot be loaded or recovered."""
    pass


class JournalSaveError(JournalError):
    """Raised when any step of the atomic save chain fails."""
    pass


class JournalMigrationError(JournalError):
    """Raised when an ID migration would lose tasks."""
    pass


class BackupError(JournalError):
    """Raised when a journal backup cannot be created or restored."""
    pass


class SyncError(TodoistSyncError):
    """Raised when a sync cycle fails."""
    pass
