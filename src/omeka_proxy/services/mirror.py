"""Bulk mirror of the full upstream item collection.

Facet counts and creator cross-referencing need a global view of the
collection that no single paginated call provides, so the whole collection is
paged into one cached value (``allItems``).

Single-flight:
    Mirroring can take hundreds of requests, so at most one fetch runs per
    process. The running fetch is held as an ``asyncio.Task``; concurrent
    callers await that task and share its result instead of starting their
    own. The task is shielded, so a caller that goes away never cancels the
    fetch for everyone else.

    A fetch older than ``mirror_lock_timeout`` stops blocking newcomers: they
    drop the stale slot and start a fresh fetch, so a stalled upstream cannot
    lock the mirror out for good.

A failed page aborts the whole fetch and nothing is cached. A truncated
mirror would silently skew every facet count until its TTL ran out.
"""

import asyncio
from typing import Any

import structlog

from omeka_proxy.config import Settings, get_settings
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.omeka import OmekaClient, UpstreamError

logger = structlog.get_logger(__name__)

MirrorResult = list[dict[str, Any]] | UpstreamError


class MirrorFetcher:
    """Cache-backed, single-flight fetch of every upstream item.

    Usage:
        ```python
        mirror = MirrorFetcher(cache, client)
        items = await mirror.get_all_items()
        if isinstance(items, UpstreamError):
            return items
        ```
    """

    def __init__(
        self,
        cache: CacheStore,
        client: OmekaClient,
        settings: Settings | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self._settings = settings or get_settings()
        self._inflight: asyncio.Task[MirrorResult] | None = None
        self._started_at = 0.0

    @property
    def is_fetching(self) -> bool:
        """True while a mirror fetch is in flight."""
        return self._inflight is not None and not self._inflight.done()

    async def get_all_items(self, force: bool = False) -> MirrorResult:
        """Return the mirrored collection, fetching it on a miss.

        Args:
            force: Skip the cache and re-mirror (joins a fetch already running)

        Returns:
            Every raw upstream item, or the UpstreamError that aborted the fetch.
        """
        if not force:
            cached = await self.cache.get(CacheStore.ALL_ITEMS)
            if cached is not None:
                return cached

        loop = asyncio.get_running_loop()
        task = self._inflight

        if task is not None and not task.done():
            remaining = self._started_at + self._settings.mirror_lock_timeout - loop.time()
            if remaining > 0:
                logger.debug("mirror_fetch_joined", wait_limit=round(remaining, 2))
                try:
                    return await asyncio.wait_for(asyncio.shield(task), timeout=remaining)
                except TimeoutError:
                    pass
            logger.warning(
                "mirror_fetch_stalled",
                timeout=self._settings.mirror_lock_timeout,
            )
            if self._inflight is task:
                self._inflight = None

        return await asyncio.shield(self._start_fetch())

    def _start_fetch(self) -> asyncio.Task[MirrorResult]:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._fetch_all())
        self._inflight = task
        self._started_at = loop.time()
        task.add_done_callback(self._release)
        return task

    def _release(self, task: asyncio.Task[MirrorResult]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch_all(self) -> MirrorResult:
        limit = self._settings.page_limit
        items: list[dict[str, Any]] = []
        page = 1

        logger.info("mirror_fetch_started", page_limit=limit)
        while True:
            batch = await self.client.fetch_items(f"page={page}&per_page={limit}")
            if isinstance(batch, UpstreamError):
                logger.error(
                    "mirror_fetch_failed",
                    page=page,
                    status_code=batch.status_code,
                    fetched=len(items),
                )
                return batch

            items.extend(batch)
            logger.debug("mirror_page_fetched", page=page, total=len(items))

            # A short page is the end of the collection; its size is unknown upfront
            if len(batch) < limit:
                break

            page += 1
            await asyncio.sleep(self._settings.mirror_page_delay)

        logger.info("mirror_fetch_completed", pages=page, total=len(items))
        return await self.cache.set(CacheStore.ALL_ITEMS, CacheStore.TTL_ALL_ITEMS, items)
