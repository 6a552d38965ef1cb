"""
Command implementations for todoist-sync.
"""

from .context import SyncContext
from .sync import SyncCommand
from .heal import HealCommand
from .journal import (
    StatsCommand,
    ValidateCommand,
    BackupsCommand,
    TombstonesCommand,
    ResetCommand,
)

__all__ = [
    'SyncContext',
    'SyncCommand',
    'HealCommand',
    'StatsCommand',
    'ValidateCommand',
    'BackupsCommand',
    'TombstonesCommand',
    'ResetCommand',
]
