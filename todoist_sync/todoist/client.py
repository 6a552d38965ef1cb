"""
HTTP client for the Todoist API.

Only 429 responses are retried, with exponential backoff capped at
``backoff_max`` (or the server's Retry-After). Everything else is mapped
onto the ``RemoteAPIError`` hierarchy and raised immediately so callers
can decide between tombstoning, orphaning and deferring.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import httpx

from todoist_sync.core.exceptions import (
    RateLimitError,
    RemoteAPIError,
    RemoteUnavailableError,
    TaskAccessDeniedError,
    TaskNotFoundError,
)
from todoist_sync.core.models import RemoteTask, SyncConfig
from .adapters import from_completed_item, from_rest_task

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
RETRY_BACKOFF_MAX = 5.0  # seconds
RETRY_AFTER_CAP = 60.0  # seconds
PAGE_LIMIT = 200
ID_MAPPING_BATCH = 100


class TodoistClient:
    """Thin, call-counting wrapper over the Todoist REST and Sync endpoints."""

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = "https://api.todoist.com/api/v1",
        sync_url: str = "https://api.todoist.com/sync/v9",
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = RETRY_BACKOFF_BASE,
        backoff_max: float = RETRY_BACKOFF_MAX,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if not api_token:
            raise ValueError("A Todoist API token is required")

        self.base_url = base_url.rstrip("/")
        self.sync_url = sync_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self._client = httpx.Client(
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
            transport=transport,
        )
        # Heal fetches run on worker threads
        self._counter_lock = threading.Lock()
        self.api_calls = 0
        self.calls_by_endpoint: Counter = Counter()

    @classmethod
    def from_config(cls, config: SyncConfig, **kwargs: Any) -> TodoistClient:
        return cls(
            config.api_token or "",
            base_url=config.api_base_url,
            sync_url=config.sync_api_base_url,
            timeout=config.request_timeout_seconds,
            max_retries=config.rate_limit_max_retries,
            backoff_base=config.rate_limit_backoff_base_seconds,
            backoff_max=config.rate_limit_backoff_max_seconds,
            **kwargs,
        )

    def _backoff_delay(self, attempt: int, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), RETRY_AFTER_CAP)
            except ValueError:
                pass
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    def _request(self, endpoint: str, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``url`` and return decoded JSON, retrying 429s only."""
        for attempt in range(self.max_retries + 1):
            self._count(endpoint)
            try:
                resp = self._client.get(url, params=params)
            except httpx.HTTPError as e:
                raise RemoteUnavailableError(f"{endpoint} request failed: {e}") from e

            if resp.status_code == 429:
                if attempt >= self.max_retries:
                    raise RateLimitError(
                        f"{endpoint} rate limited after {self.max_retries} retries",
                        retry_after=self._backoff_delay(attempt, resp),
                    )
                delay = self._backoff_delay(attempt, resp)
                self.logger.info("Rate limited on %s, retrying in %.1fs", endpoint, delay)
                self._sleep(delay)
                continue

            if resp.status_code == 404:
                raise TaskNotFoundError(f"{endpoint}: not found ({url})")
            if resp.status_code == 403:
                raise TaskAccessDeniedError(f"{endpoint}: access denied ({url})")
            if resp.status_code >= 500:
                raise RemoteUnavailableError(
                    f"{endpoint} failed: {resp.status_code}", status_code=resp.status_code
                )
            if resp.status_code >= 400:
                raise RemoteAPIError(
                    f"{endpoint} rejected: {resp.status_code} {resp.text[:200]}",
                    status_code=resp.status_code,
                )

            try:
                return resp.json()
            except ValueError as e:
                raise RemoteUnavailableError(f"{endpoint} returned invalid JSON") from e

        raise RateLimitError(f"{endpoint} rate limited")  # pragma: no cover

    def _paginate(self, endpoint: str, url: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Follow ``next_cursor`` pages; plain list responses are a single page."""
        params = dict(params or {})
        params.setdefault("limit", PAGE_LIMIT)
        while True:
            data = self._request(endpoint, url, params)
            if isinstance(data, list):
                yield from data
                return
            yield from data.get("results", [])
            cursor = data.get("next_cursor")
            if not cursor:
                return
            params["cursor"] = cursor

    def get_task(self, task_id: str) -> RemoteTask:
        """GET /tasks/{id}. Raises TaskNotFoundError / TaskAccessDeniedError."""
        data = self._request("get_task", f"{self.base_url}/tasks/{task_id}")
        return from_rest_task(data)

    def get_tasks(self) -> List[RemoteTask]:
        """All active tasks in one logical bulk call."""
        return [from_rest_task(raw) for raw in self._paginate("get_tasks", f"{self.base_url}/tasks")]

    def get_projects(self) -> List[Dict[str, Any]]:
        return list(self._paginate("get_projects", f"{self.base_url}/projects"))

    def get_completed_items(
        self, project_id: str, *, offset: int = 0, limit: int = PAGE_LIMIT
    ) -> Tuple[List[RemoteTask], bool]:
        """One page of the completed-items archive for a project; returns (tasks, has_more)."""
        data = self._request(
            "get_completed_items",
            f"{self.sync_url}/completed/get_all",
            {"project_id": project_id, "offset": offset, "limit": limit},
        )
        items = data.get("items", []) if isinstance(data, dict) else []
        return [from_completed_item(raw) for raw in items], len(items) >= limit

    def iter_completed_for_project(self, project_id: str, *, limit: int = PAGE_LIMIT) -> Iterator[RemoteTask]:
        offset = 0
        while True:
            tasks, has_more = self.get_completed_items(project_id, offset=offset, limit=limit)
            yield from tasks
            if not has_more:
                return
            offset += limit

    def get_id_mappings(self, legacy_ids: Iterable[str]) -> Dict[str, str]:
        """Map legacy numeric task IDs to current IDs; unknown IDs are omitted."""
        ids = [str(i) for i in legacy_ids]
        mapping: Dict[str, str] = {}
        for start in range(0, len(ids), ID_MAPPING_BATCH):
            batch = ids[start:start + ID_MAPPING_BATCH]
            try:
                data = self._request(
                    "id_mappings", f"{self.base_url}/id_mappings/tasks/{','.join(batch)}"
                )
            except TaskNotFoundError:
                continue
            rows = data if isinstance(data, list) else data.get("results", [])
            for row in rows:
                old_id, new_id = row.get("old_id"), row.get("new_id")
                if old_id and new_id:
                    mapping[str(old_id)] = str(new_id)
        return mapping

    def _count(self, endpoint: str) -> None:
        with self._counter_lock:
            self.api_calls += 1
            self.calls_by_endpoint[endpoint] += 1

    def reset_counters(self) -> None:
        with self._counter_lock:
            self.api_calls = 0
            self.calls_by_endpoint.clear()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> TodoistClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
