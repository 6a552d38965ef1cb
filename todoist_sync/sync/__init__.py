"""Reconciliation between vault task lines and Todoist."""

from .hashing import ContentHasher
from .locator import TaskLocator
from .factory import EntryFactory
from .detector import ChangeDetector, TaskComparison
from .healer import JournalHealer

__all__ = [
    'ContentHasher',
    'TaskLocator',
    'EntryFactory',
    'ChangeDetector',
    'TaskComparison',
    'JournalHealer',
]
