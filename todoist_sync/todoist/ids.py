"""
Canonicalization of Todoist task IDs.

Old notes link tasks by their legacy numeric ID; the current API only
speaks alphanumeric IDs. Lookups go through the network once and are
memoized on disk.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Optional

from todoist_sync.core.exceptions import RemoteAPIError
from todoist_sync.utils.date import from_iso, to_iso, utc_now
from todoist_sync.utils.io import safe_read_json, safe_write_json
from .adapters import is_canonical_id, is_legacy_id


class IdNormalizer:
    """Maps legacy task IDs to canonical ones with a persistent memo cache."""

    def __init__(
        self,
        client=None,
        cache_path: Optional[str] = None,
        ttl: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.cache_path = cache_path
        self.ttl = ttl
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[str, Dict[str, str]] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.cache_path:
            return
        data = safe_read_json(self.cache_path, default={})
        mappings = data.get("mappings", {})
        if isinstance(mappings, dict):
            self._cache = {
                str(k): v for k, v in mappings.items()
                if isinstance(v, dict) and "canonical" in v
            }
        self.logger.debug(f"Loaded {len(self._cache)} cached ID mappings")

    def _cached(self, legacy_id: str) -> Optional[Dict[str, Optional[str]]]:
        """Unexpired cache entry; ``canonical`` is None for IDs the API could not resolve."""
        entry = self._cache.get(legacy_id)
        if not entry:
            return None
        cached_at = from_iso(entry.get("cached_at"))
        if cached_at is not None and self.clock() - cached_at > self.ttl:
            return None
        return entry

    def remember(self, legacy_id: str, canonical_id: str, persist: bool = True) -> None:
        """Record a mapping learned elsewhere, e.g. from a payload carrying both IDs."""
        self._ensure_loaded()
        if not (is_legacy_id(legacy_id) and is_canonical_id(canonical_id)):
            return
        self._cache[str(legacy_id)] = {"canonical": str(canonical_id), "cached_at": to_iso(self.clock())}
        if persist:
            self.save_cache()

    def save_cache(self) -> bool:
        if not self.cache_path:
            return True
        return safe_write_json(self.cache_path, {"version": 1, "mappings": self._cache})

    def to_canonical(self, task_id: str) -> Optional[str]:
        """Canonical form of ``task_id``, or None when it cannot be resolved."""
        if not task_id:
            return None
        task_id = str(task_id)
        if is_canonical_id(task_id):
            return task_id
        if not is_legacy_id(task_id):
            self.logger.debug(f"Unrecognised task ID format: {task_id!r}")
            return None
        return self.to_canonical_many([task_id]).get(task_id)

    def to_canonical_many(self, task_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        """
        Resolve many IDs with at most one network round per uncached batch.

        Legacy IDs the API does not know are cached as unresolved for the
        same TTL, so a dead link in a note costs one lookup, not one per scan.
        """
        self._ensure_loaded()
        result: Dict[str, Optional[str]] = {}
        pending = []
        for task_id in task_ids:
            task_id = str(task_id)
            if is_canonical_id(task_id):
                result[task_id] = task_id
            elif not is_legacy_id(task_id):
                result[task_id] = None
            else:
                cached = self._cached(task_id)
                if cached is not None:
                    result[task_id] = cached["canonical"]
                else:
                    pending.append(task_id)

        if not pending:
            return result
        if self.client is None:
            result.update({legacy_id: None for legacy_id in pending})
            return result

        try:
            mapping = self.client.get_id_mappings(pending)
        except RemoteAPIError as e:
            self.logger.warning(f"ID lookup failed for {len(pending)} legacy IDs: {e}")
            result.update({legacy_id: None for legacy_id in pending})
            return result

        now = to_iso(self.clock())
        for legacy_id in pending:
            canonical_id = mapping.get(legacy_id)
            self._cache[legacy_id] = {"canonical": canonical_id, "cached_at": now}
            result[legacy_id] = canonical_id
        unresolved = sum(1 for legacy_id in pending if legacy_id not in mapping)
        if unresolved:
            self.logger.debug(f"{unresolved} legacy IDs have no canonical mapping")
        self.save_cache()
        return result

    def canonical_or_self(self, task_id: str) -> str:
        """Canonical ID when resolvable, else the ID as given."""
        return self.to_canonical(task_id) or str(task_id)

    def legacy_for(self, canonical_id: str) -> Optional[str]:
        self._ensure_loaded()
        for legacy_id, entry in self._cache.items():
            if entry.get("canonical") == canonical_id:
                return legacy_id
        return None
