"""
Configuration management for todoist-sync.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from .models import SyncConfig
from .paths import get_path_manager

logger = logging.getLogger(__name__)

# Knobs that must be strictly positive for the scheduler to make progress
_POSITIVE_KNOBS = (
    "sync_interval_minutes",
    "not_found_grace_hours",
    "orphan_retry_hours",
    "heal_batch_size",
    "discovery_retry_max_attempts",
    "request_timeout_seconds",
)


def get_default_config_path() -> Path:
    return get_path_manager().config_path


def load_config(config_path: Optional[str] = None) -> SyncConfig:
    """Load the config file, falling back to defaults when it is absent."""
    if config_path is None:
        config_path = str(get_default_config_path())

    config = SyncConfig.load_from_file(config_path)
    for problem in validate_config(config):
        logger.warning(f"{config_path}: {problem}")
    return config


def validate_config(config: SyncConfig) -> List[str]:
    """
    Return human-readable problems with a loaded configuration.

    Nothing here is fatal: commands still run, but a zero interval or a
    vault that does not exist almost always means a typo in the file.
    """
    problems = []

    if config.vault_path and not os.path.isdir(os.path.expanduser(config.vault_path)):
        problems.append(f"vault_path does not exist: {config.vault_path}")

    for name in _POSITIVE_KNOBS:
        value = getattr(config, name)
        if not isinstance(value, (int, float)) or value <= 0:
            problems.append(f"sync.{name} must be a positive number (got {value!r})")

    if config.heal_max_batch_delay_seconds < config.heal_batch_delay_seconds:
        problems.append("sync.heal_max_batch_delay_seconds is below heal_batch_delay_seconds")
    if config.rate_limit_backoff_max_seconds < config.rate_limit_backoff_base_seconds:
        problems.append("sync.rate_limit_backoff_max_seconds is below rate_limit_backoff_base_seconds")

    return problems


def save_config(config: SyncConfig, config_path: Optional[str] = None):
    """
    Save configuration to file.

    Args:
        config: SyncConfig object to save
        config_path: Optional path to save to. Uses default if not provided.
    """
    if config_path is None:
        manager = get_path_manager()
        manager.ensure_directories()
        config_path = str(manager.config_path)

    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)
    config.save_to_file(config_path)
