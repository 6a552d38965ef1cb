"""Utility functions for todoist-sync."""

from .io import safe_read_json, safe_write_json, atomic_write_verified
from .date import utc_now, to_iso, from_iso

__all__ = [
    'safe_read_json',
    'safe_write_json',
    'atomic_write_verified',
    'utc_now',
    'to_iso',
    'from_iso',
]
