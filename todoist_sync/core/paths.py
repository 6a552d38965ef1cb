"""
Centralized path management for todoist-sync.

All directory resolution goes through PathManager so that tests and
scheduled runs can relocate every file with a single environment variable.
"""

import os
import sys
from pathlib import Path
from typing import Optional
import logging


class PathManager:
    """Resolves todoist-sync working and data directories."""

    # Directory names
    APP_DIR_NAME = "todoist-sync"
    HOME_ENV_VAR = "TODOIST_SYNC_HOME"

    # File names
    CONFIG_FILE = "config.json"
    JOURNAL_FILE = "sync-journal.json"
    ID_CACHE_FILE = "id-cache.json"

    def __init__(self, working_dir: Optional[Path] = None, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._working_dir: Optional[Path] = Path(working_dir) if working_dir else None

    def _default_user_dir(self) -> Path:
        """Platform-appropriate per-user data directory."""
        if sys.platform == "darwin":
            return Path.home() / "Library" / "Application Support" / self.APP_DIR_NAME
        if sys.platform.startswith("win"):
            appdata = os.environ.get("APPDATA")
            if appdata:
                return Path(appdata) / self.APP_DIR_NAME
            return Path.home() / "AppData" / "Roaming" / self.APP_DIR_NAME
        xdg = os.environ.get("XDG_CONFIG_HOME")
        if xdg:
            return Path(xdg) / self.APP_DIR_NAME
        return Path.home() / ".config" / self.APP_DIR_NAME

    @property
    def working_dir(self) -> Path:
        """
        Get the working directory for todoist-sync data.

        Priority order:
        1. Explicit directory passed to the constructor
        2. TODOIST_SYNC_HOME environment variable
        3. Platform user directory (~/.config/todoist-sync on Linux)
        """
        if self._working_dir is not None:
            return self._working_dir

        env_override = os.environ.get(self.HOME_ENV_VAR)
        if env_override:
            env_path = Path(env_override).expanduser().resolve()
            self.logger.debug(f"Using {self.HOME_ENV_VAR} override: {env_path}")
            self._working_dir = env_path
        else:
            self._working_dir = self._default_user_dir()
        return self._working_dir

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in (self.working_dir, self.data_dir):
            directory.mkdir(parents=True, exist_ok=True)
            self.logger.debug(f"Ensured directory exists: {directory}")

    @property
    def data_dir(self) -> Path:
        """Directory holding the journal, its backups and the ID cache."""
        return self.working_dir / "data"

    @property
    def config_path(self) -> Path:
        return self.working_dir / self.CONFIG_FILE

    @property
    def journal_path(self) -> Path:
        return self.data_dir / self.JOURNAL_FILE

    @property
    def id_cache_path(self) -> Path:
        return self.data_dir / self.ID_CACHE_FILE


_path_manager = None


def get_path_manager() -> PathManager:
    """Get or create the global PathManager instance."""
    global _path_manager
    if _path_manager is None:
        _path_manager = PathManager()
    return _path_manager


def reset_path_manager() -> None:
    """Forget the cached PathManager (used when TODOIST_SYNC_HOME changes)."""
    global _path_manager
    _path_manager = None

