#!/usr/bin/env python3
"""
Global pytest configuration and fixtures.

This module provides:
- Isolation of the todoist-sync home directory and API token
- A controllable clock and a manual scheduler for debounced saves
- A vault builder writing markdown notes into a temporary directory
- Journal, client and detector fixtures wired to the in-memory fake
"""

import os
import shutil
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Generator, List

import pytest

from todoist_sync.core.models import SyncConfig
from todoist_sync.core.paths import reset_path_manager
from todoist_sync.journal import Journal
from todoist_sync.obsidian import VaultDocumentStore
from todoist_sync.sync import ChangeDetector
from todoist_sync.todoist import IdNormalizer
from todoist_sync.utils.date import utc_now
from tests.fakes import FakeTodoistClient


def pytest_configure(config):
    """Configure pytest environment."""
    config.addinivalue_line("markers", "integration: test drives several components together")
    config.addinivalue_line("markers", "slow: test sleeps or runs real timers")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        # A minute behind real time: files written by a test always look newer
        self.now = start or utc_now() - timedelta(minutes=1)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class _Handle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Stand-in for threading.Timer; callbacks run only when fired."""

    def __init__(self):
        self.handles: List[_Handle] = []

    def __call__(self, delay, callback):
        handle = _Handle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> List[_Handle]:
        return [h for h in self.handles if not h.cancelled]

    def fire(self) -> int:
        fired = 0
        for handle in self.active:
            handle.cancelled = True
            handle.callback()
            fired += 1
        return fired


class VaultBuilder:
    """Writes notes into a temporary vault."""

    def __init__(self, root: Path):
        self.root = root

    def write(self, relative_path: str, text: str) -> Path:
        path = self.root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def read(self, relative_path: str) -> str:
        return (self.root / relative_path).read_text(encoding="utf-8")

    def remove(self, relative_path: str) -> None:
        (self.root / relative_path).unlink()

    def rename(self, old: str, new: str) -> None:
        target = self.root / new
        target.parent.mkdir(parents=True, exist_ok=True)
        (self.root / old).rename(target)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real user directory and token."""
    monkeypatch.setenv("TODOIST_SYNC_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("TODOIST_API_TOKEN", raising=False)
    reset_path_manager()
    yield
    reset_path_manager()


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test isolation."""
    temp_path = tempfile.mkdtemp(prefix="todoist_sync_test_")
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def vault(temp_dir) -> VaultBuilder:
    root = Path(temp_dir) / "vault"
    root.mkdir()
    (root / ".obsidian").mkdir()
    return VaultBuilder(root)


@pytest.fixture
def store(vault) -> VaultDocumentStore:
    return VaultDocumentStore(str(vault.root))


@pytest.fixture
def config(temp_dir, vault) -> SyncConfig:
    data_dir = Path(temp_dir) / "data"
    return SyncConfig(
        vault_path=str(vault.root),
        api_token="test-token",
        journal_path=str(data_dir / "sync-journal.json"),
        id_cache_path=str(data_dir / "id-cache.json"),
        heal_batch_delay_seconds=0,
    )


@pytest.fixture
def fake_client() -> FakeTodoistClient:
    return FakeTodoistClient()


@pytest.fixture
def normalizer(fake_client, config, clock) -> IdNormalizer:
    return IdNormalizer(client=fake_client, cache_path=config.id_cache_path, clock=clock)


@pytest.fixture
def journal(config, clock, scheduler) -> Journal:
    journal = Journal.from_config(config, clock=clock, scheduler=scheduler)
    journal.load()
    return journal


@pytest.fixture
def detector(journal, store, fake_client, normalizer, config, clock) -> ChangeDetector:
    return ChangeDetector(
        journal,
        store,
        fake_client,
        normalizer,
        config=config,
        clock=clock,
        sleep=lambda seconds: None,
    )
