"""Background invalidation of per-item caches.

Each tick asks Omeka-S for the most recently modified items:

    - When every item of the batch changed since the previous tick, more
      changes may lie beyond it, so everything is flushed and the mirror,
      facets, creators and counts are rebuilt.
    - Otherwise every item modified since the previous tick loses its
      ``item:{id}`` and ``item:details:{id}`` entries, and the unfiltered
      first page is evicted since new items reorder it.
    - A missing facet cache is preloaded. A facet cache that would expire
      before the next tick is rebuilt ahead of time.

Cadence:
    The next tick is scheduled at ``min(interval, ttl("filters") * 0.95)``,
    so the tick that rebuilds an expiring facet cache lands shortly before
    it expires. When the facet cache has no positive TTL the configured
    interval is used.
"""

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from omeka_proxy.config import Settings, get_settings
from omeka_proxy.core.logging import log_context
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.facets import FacetEngine
from omeka_proxy.services.omeka import OmekaClient, UpstreamError

logger = structlog.get_logger(__name__)

RESCHEDULE_FACTOR = 0.95


def parse_modified(item: dict[str, Any]) -> datetime | None:
    """``o:modified`` of a raw item as an aware datetime, or None."""
    raw = (item.get("o:modified") or {}).get("@value")
    if not isinstance(raw, str):
        return None
    try:
        modified = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if modified.tzinfo is None:
        modified = modified.replace(tzinfo=UTC)
    return modified


async def flush_and_preload(cache: CacheStore, facets: FacetEngine) -> UpstreamError | None:
    """Drop every cache entry, then rebuild mirror, facets, creators and counts."""
    await cache.flush_all()
    return await facets.preload(force=True)


class InvalidationLoop:
    """Periodic eviction of cache entries for modified items.

    Usage:
        ```python
        loop = InvalidationLoop(cache, client, facets)
        loop.start()
        ...
        await loop.stop()
        ```
    """

    def __init__(
        self,
        cache: CacheStore,
        client: OmekaClient,
        facets: FacetEngine,
        settings: Settings | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self.facets = facets
        self._settings = settings or get_settings()
        self._task: asyncio.Task[None] | None = None
        self._last_poll: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop (idempotent)."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("invalidation_loop_started", interval=self._settings.invalidation_interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("invalidation_loop_stopped")

    async def next_delay(self) -> float:
        """Seconds until the next tick."""
        interval = float(self._settings.invalidation_interval)
        remaining = await self.cache.ttl(CacheStore.FILTERS)
        if remaining <= 0:
            return interval
        return min(interval, remaining * RESCHEDULE_FACTOR)

    async def run_once(self) -> str:
        """Run a single invalidation tick.

        Returns:
            ``"flushed"``, ``"evicted"``, ``"unchanged"`` or ``"failed"``.
        """
        now = datetime.now(UTC)
        since = self._last_poll or now - timedelta(seconds=self._settings.invalidation_interval)
        batch = self._settings.invalidation_batch

        recent = await self.client.fetch_items(
            f"sort_by=modified&sort_order=desc&per_page={batch}"
        )
        if isinstance(recent, UpstreamError):
            logger.warning("invalidation_poll_failed", status_code=recent.status_code)
            return "failed"
        self._last_poll = now

        changed = [
            item
            for item in recent
            if (modified := parse_modified(item)) is not None and modified >= since
        ]

        if len(changed) >= batch:
            logger.info("invalidation_batch_full", batch=batch)
            await flush_and_preload(self.cache, self.facets)
            return "flushed"

        for item in changed:
            item_id = item.get("o:id")
            await self.cache.delete(CacheStore.item_key(item_id))
            await self.cache.delete(CacheStore.item_details_key(item_id))
            logger.debug("item_evicted", item_id=item_id)

        if changed:
            await self._evict_first_page()

        remaining = await self.cache.ttl(CacheStore.FILTERS)
        if remaining == -2:
            logger.info("facet_cache_missing")
            await self.facets.preload(force=False)
        elif 0 <= remaining <= self._settings.invalidation_interval:
            logger.info("facet_cache_expiring", ttl=remaining)
            await self.facets.preload(force=True)

        return "evicted" if changed else "unchanged"

    async def _evict_first_page(self) -> None:
        key = CacheStore.query_key(f"page=1&per_page={self._settings.query_limit}")
        await self.cache.delete(key)
        # Language and options variants of the same listing
        await self.cache.delete_pattern(f"{key}&*")

    async def _run(self) -> None:
        tick = 0
        while True:
            tick += 1
            with log_context(invalidation_tick=tick):
                try:
                    outcome = await self.run_once()
                    logger.debug("invalidation_tick_completed", outcome=outcome)
                except Exception as e:
                    logger.exception("invalidation_tick_failed", error=str(e))
                delay = await self.next_delay()
            await asyncio.sleep(delay)
