"""Tests for QueryEngine item listings."""

import httpx
import pytest

from mocks.omeka_responses import make_creator, make_item, sample_collection
from omeka_proxy.dependencies import ProxyServices
from omeka_proxy.schemas.query import ItemQuery, QueryOptions
from omeka_proxy.services.omeka import UpstreamError
from omeka_proxy.services.query import cross_referenced_creators, empty_result

SAMPLE = {item["o:id"]: item for item in sample_collection()}
OBJECTS = [SAMPLE[100], SAMPLE[101], SAMPLE[102], SAMPLE[103]]


class Listing:
    """``/items`` route: the mirror gets the sample collection, listings get ``items``."""

    def __init__(self, items: list[dict] | None = None, status_code: int = 200) -> None:
        self.items = OBJECTS if items is None else items
        self.status_code = status_code
        self.queries: list[httpx.QueryParams] = []
        self.collection = sample_collection()

    def __call__(self, request: httpx.Request):
        if request.url.params.get("sort_by") != "created":
            return self.collection
        self.queries.append(request.url.params)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"errors": "boom"})
        return self.items


@pytest.fixture
def listing(fake_omeka) -> Listing:
    route = Listing()
    fake_omeka.add_handler("/items", route)
    return route


def ids(result: dict) -> list[int]:
    return [item["id"] for item in result["items"]]


# =============================================================================
# Base listings
# =============================================================================


class TestBaseListing:
    @pytest.mark.asyncio
    async def test_objects_then_referenced_creators(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        result = await services.queries.query_items()

        # Ba Jin sorts before Lu Xun
        assert ids(result) == [100, 101, 102, 103, 2, 1]
        assert result["filters"] is None
        assert result["hasNextPage"] is False
        assert result["counts"] == {"creators": 2, "objects": 3}

    @pytest.mark.asyncio
    async def test_newest_first_with_default_page_size(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        await services.queries.query_items()

        [params] = listing.queries
        assert params["sort_order"] == "desc"
        assert params["per_page"] == "20"

    @pytest.mark.asyncio
    async def test_staged_fields_are_removed(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        listing.items = [make_item(100, "New Youth", description="Monthly", text="Full")]

        result = await services.queries.query_items()

        assert "description" not in result["items"][0]
        assert "text" not in result["items"][0]

    @pytest.mark.asyncio
    async def test_parts_counted_when_not_excluded(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        result = await services.queries.query_items(
            options=QueryOptions(exclude_parts=False)
        )
        assert result["counts"]["objects"] == 4

    @pytest.mark.asyncio
    async def test_without_creators(self, services: ProxyServices, listing: Listing) -> None:
        result = await services.queries.query_items(
            options=QueryOptions(retrieve_creators=False)
        )

        assert ids(result) == [100, 101, 102, 103]
        assert result["counts"]["creators"] == 0

    @pytest.mark.asyncio
    async def test_chinese_creators_in_pinyin_order(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        # 张 precedes 老 by code point, zhang follows lao in pinyin
        rickshaw_boy = make_item(200, "Rickshaw Boy", creators=[4, 5])
        listing.collection += [
            make_creator(4, {"en": "Zhang Ailing", "zh": "张爱玲"}),
            make_creator(5, {"en": "Lao She", "zh": "老舍"}),
            rickshaw_boy,
        ]
        listing.items = [rickshaw_boy]

        result = await services.queries.query_items(query=ItemQuery(lang="zh"))

        assert ids(result) == [200, 5, 4]
        assert [item["title"]["zh"] for item in result["items"][1:]] == ["老舍", "张爱玲"]


class TestPaging:
    @pytest.mark.asyncio
    async def test_full_page_uses_global_counts(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        listing.items = OBJECTS[:2]

        result = await services.queries.query_items(query=ItemQuery(limit=2))

        assert result["hasNextPage"] is True
        assert result["counts"] == {"creators": 3, "objects": 3}

    @pytest.mark.asyncio
    async def test_short_page_has_no_next(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        result = await services.queries.query_items(query=ItemQuery(limit=5))
        assert result["hasNextPage"] is False


# =============================================================================
# Caching
# =============================================================================


class TestCaching:
    @pytest.mark.asyncio
    async def test_equivalent_filters_share_one_entry(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        first = await services.queries.query_items(query=ItemQuery(creator="2,1"))
        second = await services.queries.query_items(query=ItemQuery(creator="1,2,1"))

        assert first == second
        assert len(listing.queries) == 1

    @pytest.mark.asyncio
    async def test_language_is_part_of_key(
        self, services: ProxyServices, listing: Listing, fake_redis
    ) -> None:
        await services.queries.query_items(query=ItemQuery(lang="zh"))
        await services.queries.query_items(query=ItemQuery(lang="en"))

        assert len(listing.queries) == 2
        assert fake_redis.value("query:page=1&per_page=20&lang=zh") is not None

    @pytest.mark.asyncio
    async def test_cache_hit_is_returned_verbatim(
        self, services: ProxyServices, listing: Listing, fake_redis
    ) -> None:
        await services.cache.set("query:page=1&per_page=20", 60, {"items": ["cached"]})

        assert await services.queries.query_items() == {"items": ["cached"]}
        assert listing.queries == []

    @pytest.mark.asyncio
    async def test_upstream_error_is_not_cached(
        self, services: ProxyServices, listing: Listing, fake_redis
    ) -> None:
        listing.status_code = 502

        result = await services.queries.query_items()

        assert isinstance(result, UpstreamError)
        assert result.status_code == 502
        assert fake_redis.value("query:page=1&per_page=20") is None


# =============================================================================
# Filters, search & parent scope
# =============================================================================


class TestFilteredQueries:
    @pytest.mark.asyncio
    async def test_scoped_filters_and_filtered_page_size(
        self, services: ProxyServices, listing: Listing
    ) -> None:
        listing.items = [SAMPLE[101]]

        result = await services.queries.query_items(query=ItemQuery(creator="2"))

        assert listing.queries[0]["per_page"] == "1000"
        assert result["filters"]["creator"] == [
            {"id": 2, "title": {"en": "Ba Jin", "zh": "巴金"}, "count": 1}
        ]
        assert result["filters"]["year"] == [{"value": "1931", "count": 1}]

    @pytest.mark.asyncio
    async def test_search_adds_snippets(self, services: ProxyServices, listing: Listing) -> None:
        listing.items = [make_item(200, "Ink", description="A magazine for youth")]

        result = await services.queries.query_items(query=ItemQuery(search="youth"))

        assert listing.queries[0]["fulltext_search"] == "youth"
        assert result["items"][0]["snippets"] == [
            {"term": "youth", "snippet": "A magazine for youth"}
        ]


class TestParentScope:
    @pytest.mark.asyncio
    async def test_items_linking_to_parent(
        self, services: ProxyServices, fake_omeka, listing: Listing
    ) -> None:
        fake_omeka.add("/items/1", make_creator(1, "Lu Xun", reverse=[103, 100, 102]))
        listing.items = [SAMPLE[100], SAMPLE[102], SAMPLE[103]]

        result = await services.queries.query_items(1)

        assert listing.queries[0]["id"] == "100,102,103"
        # Sorted by title; the parent itself is not appended as a creator
        assert ids(result) == [102, 100, 103]
        assert result["counts"] == {"creators": 0, "objects": 3}
        assert result["filters"] is not None

    @pytest.mark.asyncio
    async def test_parent_without_links_is_empty(
        self, services: ProxyServices, fake_omeka, listing: Listing
    ) -> None:
        fake_omeka.add("/items/102", SAMPLE[102])

        result = await services.queries.query_items(102)

        assert result == empty_result()
        assert listing.queries == []

    @pytest.mark.asyncio
    async def test_missing_parent(self, services: ProxyServices, listing: Listing) -> None:
        result = await services.queries.query_items(999)

        assert isinstance(result, UpstreamError)
        assert result.status_code == 404


# =============================================================================
# Creator cross-referencing
# =============================================================================


class TestCrossReferencedCreators:
    CREATORS = [
        {"id": 1, "title": "Lu Xun", "type": "creator"},
        {"id": 2, "title": "Ba Jin", "type": "creator"},
    ]

    def test_each_creator_once_in_reference_order(self) -> None:
        items = [
            {"id": 100, "creator": [{"id": 2}, {"id": 1}]},
            {"id": 101, "creator": [{"id": 1}]},
        ]
        found = cross_referenced_creators(items, self.CREATORS)
        assert [creator["id"] for creator in found] == [2, 1]

    def test_skips_parent_excluded_and_present(self) -> None:
        items = [
            {"id": 2, "type": "creator"},
            {"id": 100, "creator": [{"id": 1}, {"id": 2}, {"id": 9}]},
        ]
        assert cross_referenced_creators(items, self.CREATORS, parent_id=1) == []

    def test_unknown_creator_is_skipped(self) -> None:
        items = [{"id": 100, "creator": [{"id": 9}]}]
        assert cross_referenced_creators(items, self.CREATORS) == []
