"""Tests for the background invalidation loop."""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from mocks.omeka_responses import make_item, sample_collection
from omeka_proxy.dependencies import ProxyServices
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.invalidation import RESCHEDULE_FACTOR, parse_modified

LONG_AGO = "2020-01-01T00:00:00+00:00"


def modified_ago(seconds: float) -> str:
    return (datetime.now(UTC) - timedelta(seconds=seconds)).isoformat()


class RecentlyModified:
    """``/items`` route answering change polls with ``recent``."""

    def __init__(self) -> None:
        self.recent: list[dict] = []
        self.status_code = 200
        self.polls = 0
        self.mirror_requests = 0

    def __call__(self, request: httpx.Request):
        if request.url.params.get("sort_by") == "modified":
            self.polls += 1
            if self.status_code != 200:
                return httpx.Response(self.status_code, json={"errors": "down"})
            return self.recent
        self.mirror_requests += 1
        return sample_collection()


@pytest.fixture
def upstream(fake_omeka) -> RecentlyModified:
    route = RecentlyModified()
    fake_omeka.add_handler("/items", route)
    return route


def batch(changed: int, size: int = 20) -> list[dict]:
    """``size`` items of which the first ``changed`` were modified a minute ago."""
    return [
        make_item(item_id, modified=modified_ago(60) if item_id < changed else LONG_AGO)
        for item_id in range(size)
    ]


# =============================================================================
# Ticks
# =============================================================================


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_full_batch_flushes_and_preloads(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        upstream.recent = batch(changed=20)
        await services.cache.set(CacheStore.item_key(5), 60, {"id": 5})

        outcome = await services.invalidation.run_once()

        assert outcome == "flushed"
        assert fake_redis.value(CacheStore.item_key(5)) is None
        assert fake_redis.value(CacheStore.FILTERS) is not None
        assert fake_redis.value(CacheStore.COUNTS) == {"creators": 3, "objects": 3}

    @pytest.mark.asyncio
    async def test_poll_requests_most_recent_batch(
        self, services: ProxyServices, fake_omeka, upstream: RecentlyModified
    ) -> None:
        await services.invalidation.run_once()

        params = fake_omeka.calls("/items")[0].url.params
        assert params["sort_by"] == "modified"
        assert params["sort_order"] == "desc"
        assert params["per_page"] == "20"

    @pytest.mark.asyncio
    async def test_partial_change_evicts_items_and_first_page(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        upstream.recent = batch(changed=2)
        cache = services.cache
        await cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, {"year": []})
        for key in (
            "item:1",
            "item:details:1",
            "item:7",
            "query:page=1&per_page=20",
            "query:page=1&per_page=20&lang=zh",
            "query:page=2&per_page=20",
        ):
            await cache.set(key, 60, {})

        outcome = await services.invalidation.run_once()

        assert outcome == "evicted"
        assert fake_redis.value("item:1") is None
        assert fake_redis.value("item:details:1") is None
        assert fake_redis.value("query:page=1&per_page=20") is None
        assert fake_redis.value("query:page=1&per_page=20&lang=zh") is None
        assert fake_redis.value("item:7") == {}
        assert fake_redis.value("query:page=2&per_page=20") == {}
        assert upstream.mirror_requests == 0

    @pytest.mark.asyncio
    async def test_nothing_changed(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        upstream.recent = batch(changed=0)
        await services.cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, {"year": []})
        await services.cache.set("query:page=1&per_page=20", 60, {})

        assert await services.invalidation.run_once() == "unchanged"
        assert fake_redis.value("query:page=1&per_page=20") == {}

    @pytest.mark.asyncio
    async def test_missing_facets_are_preloaded(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        upstream.recent = batch(changed=0)

        await services.invalidation.run_once()

        assert upstream.mirror_requests == 1
        assert fake_redis.value(CacheStore.FILTERS) is not None
        assert fake_redis.value(CacheStore.CREATORS) is not None

    @pytest.mark.asyncio
    async def test_expiring_facets_are_rebuilt(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        """Facets that would expire before the next tick are rebuilt now."""
        upstream.recent = batch(changed=0)
        await services.cache.set(CacheStore.FILTERS, 100, {"year": []})

        assert await services.invalidation.run_once() == "unchanged"

        assert upstream.mirror_requests == 1
        assert fake_redis.value(CacheStore.FILTERS) != {"year": []}
        assert await services.cache.ttl(CacheStore.FILTERS) > 300

    @pytest.mark.asyncio
    async def test_fresh_facets_are_left_alone(
        self, services: ProxyServices, upstream: RecentlyModified, fake_redis
    ) -> None:
        upstream.recent = batch(changed=0)
        await services.cache.set(CacheStore.FILTERS, 301, {"year": []})

        await services.invalidation.run_once()

        assert upstream.mirror_requests == 0
        assert fake_redis.value(CacheStore.FILTERS) == {"year": []}

    @pytest.mark.asyncio
    async def test_failed_poll(
        self, services: ProxyServices, upstream: RecentlyModified
    ) -> None:
        upstream.status_code = 503

        assert await services.invalidation.run_once() == "failed"

    @pytest.mark.asyncio
    async def test_window_starts_at_previous_poll(
        self, services: ProxyServices, upstream: RecentlyModified
    ) -> None:
        upstream.recent = batch(changed=2)
        await services.cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, {"year": []})

        assert await services.invalidation.run_once() == "evicted"
        assert await services.invalidation.run_once() == "unchanged"

    @pytest.mark.asyncio
    async def test_changes_older_than_first_window_are_ignored(
        self, services: ProxyServices, upstream: RecentlyModified
    ) -> None:
        upstream.recent = [make_item(1, modified=modified_ago(3600))]
        await services.cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, {"year": []})

        assert await services.invalidation.run_once() == "unchanged"


# =============================================================================
# Scheduling
# =============================================================================


class TestScheduling:
    @pytest.mark.asyncio
    async def test_interval_without_facet_cache(self, services: ProxyServices) -> None:
        assert await services.invalidation.next_delay() == 300.0

    @pytest.mark.asyncio
    async def test_interval_caps_delay(self, services: ProxyServices) -> None:
        await services.cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, {})
        assert await services.invalidation.next_delay() == 300.0

    @pytest.mark.asyncio
    async def test_delay_tracks_facet_ttl(
        self, services: ProxyServices, test_settings
    ) -> None:
        test_settings.invalidation_interval = 10_000
        await services.cache.set(CacheStore.FILTERS, 1000, {})

        delay = await services.invalidation.next_delay()

        assert delay == pytest.approx(1000 * RESCHEDULE_FACTOR)

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self, services: ProxyServices, upstream: RecentlyModified
    ) -> None:
        loop = services.invalidation

        loop.start()
        loop.start()
        assert loop.is_running
        await asyncio.sleep(0.05)

        await loop.stop()

        assert not loop.is_running
        assert upstream.polls == 1


class TestParseModified:
    def test_aware_timestamp(self) -> None:
        parsed = parse_modified({"o:modified": {"@value": "2024-05-01T10:00:00+02:00"}})
        assert parsed == datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

    def test_naive_timestamp_is_utc(self) -> None:
        parsed = parse_modified({"o:modified": {"@value": "2024-05-01T10:00:00"}})
        assert parsed == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)

    @pytest.mark.parametrize("item", [{}, {"o:modified": {"@value": "yesterday"}}])
    def test_missing_or_invalid(self, item: dict) -> None:
        assert parse_modified(item) is None
