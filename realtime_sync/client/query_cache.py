"""
MODULE OVERVIEW:
A small query cache that implements the `Invalidator` capability.

WHAT IS HAPPENING HERE:
Each registered query key has an async fetcher. `invalidate(prefix)` marks every
entry under the prefix stale and schedules a refetch on the running event loop,
then returns straight away. The cache owns everything after that: retrying
transient failures with backoff, collapsing a burst of invalidations for the
same key into one follow-up fetch, and recording the final error on the entry
when every retry fails.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Sequence

import httpx
from loguru import logger

from realtime_sync.shared.client_utils import with_retry
from realtime_sync.shared.config import settings
from realtime_sync.shared.query_keys import QueryKey, matches_prefix, normalize_query_key, query_key_hash

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class QueryEntry:
    query_key: QueryKey
    fetcher: Fetcher
    data: Any = None
    status: str = "idle"  # idle, fetching, success, error
    is_stale: bool = True
    error: Exception | None = None
    fetch_count: int = 0
    updated_at: datetime | None = None
    refetch_pending: bool = False


class QueryCache:
    def __init__(self, max_retries: int | None = None, base_backoff_s: float | None = None):
        self.max_retries = settings.REFETCH_MAX_RETRIES if max_retries is None else max_retries
        self.base_backoff_s = settings.REFETCH_BASE_BACKOFF_S if base_backoff_s is None else base_backoff_s
        self._entries: Dict[str, QueryEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self.invalidation_count = 0

    def register(self, query_key: Sequence, fetcher: Fetcher) -> QueryEntry:
        query_key = normalize_query_key(query_key)
        entry = QueryEntry(query_key=query_key, fetcher=fetcher)
        self._entries[query_key_hash(query_key)] = entry
        return entry

    def get(self, query_key: Sequence) -> QueryEntry | None:
        return self._entries.get(query_key_hash(query_key))

    def entries(self) -> list[QueryEntry]:
        return list(self._entries.values())

    async def fetch(self, query_key: Sequence) -> Any:
        """Fetch (or join the in-flight fetch of) one exact key and return its data."""
        entry = self.get(query_key)
        if entry is None:
            raise KeyError(f"No query registered for key {tuple(query_key)!r}")
        await self._schedule(entry)
        if entry.status == "error":
            raise entry.error
        return entry.data

    def invalidate(self, query_key: QueryKey) -> None:
        prefix = normalize_query_key(query_key)
        self.invalidation_count += 1
        matched = [entry for entry in self._entries.values() if matches_prefix(entry.query_key, prefix)]
        logger.debug(f"query={query_key_hash(prefix)} event=invalidate matched={len(matched)}")

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop: stale entries are refetched on their next fetch()
            for entry in matched:
                entry.is_stale = True
            return

        for entry in matched:
            entry.is_stale = True
            task = self._in_flight.get(query_key_hash(entry.query_key))
            if task is not None and not task.done():
                # The running fetch may predate the change; go again once it lands
                entry.refetch_pending = True
            else:
                self._schedule(entry)

    async def wait_idle(self) -> None:
        while True:
            pending = [task for task in self._in_flight.values() if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        for task in self._in_flight.values():
            task.cancel()
        await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
        self._in_flight.clear()

    def _schedule(self, entry: QueryEntry) -> asyncio.Task:
        key_hash = query_key_hash(entry.query_key)
        task = self._in_flight.get(key_hash)
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refetch(entry, key_hash))
            self._in_flight[key_hash] = task
        return task

    async def _refetch(self, entry: QueryEntry, key_hash: str) -> None:
        try:
            while True:
                entry.refetch_pending = False
                entry.status = "fetching"
                try:
                    data = await with_retry(
                        entry.fetcher,
                        max_retries=self.max_retries,
                        base_delay_s=self.base_backoff_s,
                        label=key_hash,
                    )
                except Exception as e:
                    entry.status = "error"
                    entry.error = e
                    logger.error(f"query={key_hash} event=refetch_failed error='{e}'")
                else:
                    entry.data = data
                    entry.status = "success"
                    entry.error = None
                    entry.is_stale = False
                    entry.updated_at = datetime.now(timezone.utc)
                finally:
                    entry.fetch_count += 1

                if not entry.refetch_pending:
                    break
        finally:
            if self._in_flight.get(key_hash) is asyncio.current_task():
                del self._in_flight[key_hash]


def http_fetcher(path: str, params: dict | None = None, client: httpx.AsyncClient | None = None) -> Fetcher:
    """Fetcher that GETs `path` from the API and returns the decoded JSON body."""
    async def fetch() -> Any:
        if client is not None:
            response = await client.get(path, params=params)
        else:
            async with httpx.AsyncClient(base_url=settings.API_BASE_URL, timeout=settings.HTTP_TIMEOUT_S) as c:
                response = await c.get(path, params=params)
        response.raise_for_status()
        return response.json()

    return fetch
