"""Todoist API access: HTTP client, payload adapters and ID canonicalization."""

from .client import TodoistClient
from .ids import IdNormalizer
from .adapters import (
    from_rest_task,
    from_completed_item,
    is_canonical_id,
    is_legacy_id,
)

__all__ = [
    'TodoistClient',
    'IdNormalizer',
    'from_rest_task',
    'from_completed_item',
    'is_canonical_id',
    'is_legacy_id',
]
