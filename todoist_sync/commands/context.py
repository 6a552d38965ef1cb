"""Wiring of the components a command needs, built from SyncConfig."""

import logging
from datetime import timedelta
from typing import Optional

from ..core.exceptions import ConfigurationError
from ..core.models import SyncConfig
from ..journal import Journal
from ..obsidian import VaultDocumentStore
from ..sync import ChangeDetector
from ..todoist import IdNormalizer, TodoistClient


class SyncContext:
    """
    Lazily built journal, vault store, client and detector.

    Commands that only inspect the journal never need an API token;
    anything that reaches the network raises ConfigurationError when the
    token or vault path is missing.
    """

    def __init__(self, config: SyncConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._client: Optional[TodoistClient] = None
        self._normalizer: Optional[IdNormalizer] = None
        self._journal: Optional[Journal] = None
        self._store: Optional[VaultDocumentStore] = None
        self._detector: Optional[ChangeDetector] = None

    @property
    def has_token(self) -> bool:
        return bool(self.config.api_token)

    @property
    def client(self) -> TodoistClient:
        if self._client is None:
            if not self.has_token:
                raise ConfigurationError(
                    "No Todoist API token. Set TODOIST_API_TOKEN or add api_token to the config file."
                )
            self._client = TodoistClient.from_config(self.config, logger=self.logger)
        return self._client

    @property
    def normalizer(self) -> IdNormalizer:
        if self._normalizer is None:
            self._normalizer = IdNormalizer(
                client=self.client if self.has_token else None,
                cache_path=self.config.id_cache_path,
                ttl=timedelta(hours=self.config.id_cache_ttl_hours),
                logger=self.logger,
            )
        return self._normalizer

    @property
    def journal(self) -> Journal:
        if self._journal is None:
            journal = Journal.from_config(self.config, normalizer=self.normalizer, logger=self.logger)
            journal.load()
            self._journal = journal
        return self._journal

    @property
    def store(self) -> VaultDocumentStore:
        if self._store is None:
            if not self.config.vault_path:
                raise ConfigurationError("No vault_path configured")
            self._store = VaultDocumentStore(self.config.vault_path, uid_field=self.config.uid_field, logger=self.logger)
        return self._store

    @property
    def detector(self) -> ChangeDetector:
        if self._detector is None:
            self._detector = ChangeDetector(
                self.journal,
                self.store,
                self.client,
                self.normalizer,
                config=self.config,
                logger=self.logger,
            )
        return self._detector

    @property
    def scanner(self) -> ChangeDetector:
        """Detector for vault scans only; works without an API token."""
        if self.has_token:
            return self.detector
        return ChangeDetector(self.journal, self.store, None, self.normalizer, config=self.config, logger=self.logger)

    def close(self) -> None:
        if self._journal is not None:
            self._journal.close()
        if self._normalizer is not None:
            self._normalizer.save_cache()
        if self._client is not None:
            self._client.close()
