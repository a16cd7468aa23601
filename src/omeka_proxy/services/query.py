"""Item listings: filtered, searched, paginated and cached.

Resolution order of ``QueryEngine.query_items``:
    1. Parent scope: a parent id restricts results to the items linking to it
       (its cached ``items`` list). A parent without linked items yields the
       empty result without any upstream call.
    2. Canonical query string, which is also the cache key.
    3. Cache hit: returned verbatim.
    4. Upstream listing, newest first.
    5. Normalization, plus snippets when the search has qualifying terms.
    6. ``hasNextPage``: a full page is taken as evidence of a next one.
    7. Creators referenced by the results are appended.
    8. Split into objects and creators.
    9. Counts; replaced by the global totals when the page is full.
    10. Facets scoped to the results, for filtered queries only.
    11. Creators sorted by localized title; objects too when parent-scoped.
    12. Cached and returned.

Counts of a full page are only an approximation: the global totals stand in
for the true number of matches, which would otherwise require walking every
matching page.
"""

from typing import Any

import structlog

from omeka_proxy import vocabulary
from omeka_proxy.config import Settings, get_settings
from omeka_proxy.schemas.query import ItemQuery, ParsedQuery, QueryOptions, parse_query
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.catalog import CatalogService
from omeka_proxy.services.collation import sort_by_title
from omeka_proxy.services.facets import FacetEngine, scoped_filters
from omeka_proxy.services.normalize import FacetIndex, normalize_item
from omeka_proxy.services.omeka import OmekaClient, UpstreamError
from omeka_proxy.services.snippets import extract_snippets

logger = structlog.get_logger(__name__)

QueryResult = dict[str, Any]


def empty_result() -> QueryResult:
    """Result of a parent-scoped query whose parent links to nothing."""
    return {
        "items": [],
        "filters": None,
        "hasNextPage": False,
        "counts": {"creators": 0, "objects": 0},
    }


def cross_referenced_creators(
    items: list[dict[str, Any]],
    creators: list[dict[str, Any]],
    parent_id: int | None = None,
    exclude_ids: list[int] | None = None,
) -> list[dict[str, Any]]:
    """Creator records referenced by ``items`` that are not in the result yet.

    Skips the parent itself, ids already present in ``items`` or in
    ``exclude_ids``, and ids without a known creator record. Each creator is
    returned once, in order of first reference.
    """
    by_id = {creator["id"]: creator for creator in creators}
    skip = {item.get("id") for item in items} | set(exclude_ids or [])
    if parent_id is not None:
        skip.add(parent_id)

    found: list[dict[str, Any]] = []
    for item in items:
        for ref in item.get("creator") or []:
            creator_id = ref["id"]
            if creator_id in skip:
                continue
            skip.add(creator_id)
            creator = by_id.get(creator_id)
            if creator is None:
                logger.debug("creator_not_found", creator_id=creator_id)
                continue
            found.append(creator)
    return found


class QueryEngine:
    """The central read path for item listings.

    Usage:
        ```python
        engine = QueryEngine(cache, client, facets, catalog)
        result = await engine.query_items(None, ItemQuery(creator="12,7"))
        if isinstance(result, UpstreamError):
            raise result.to_exception()
        ```
    """

    def __init__(
        self,
        cache: CacheStore,
        client: OmekaClient,
        facets: FacetEngine,
        catalog: CatalogService,
        settings: Settings | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self.facets = facets
        self.catalog = catalog
        self._settings = settings or get_settings()

    async def query_items(
        self,
        item_id: int | None = None,
        query: ItemQuery | None = None,
        options: QueryOptions | None = None,
    ) -> QueryResult | UpstreamError:
        """Resolve one page of items.

        Args:
            item_id: Parent item scoping the query, or None for the whole
                collection
            query: Filters, search, paging and language
            options: Result shaping switches

        Returns:
            ``{items, filters, hasNextPage, counts}`` or the UpstreamError of
            any upstream call made on the way.
        """
        query = query or ItemQuery()
        options = options or QueryOptions()

        linked: list[int] = []
        if item_id is not None:
            parent = await self.catalog.get_item(item_id)
            if isinstance(parent, UpstreamError):
                return parent
            linked = parent.get("items") or []
            if not linked:
                logger.debug("query_scope_empty", item_id=item_id)
                return empty_result()

        parsed = parse_query(query, self._settings, ids=linked)
        key = CacheStore.query_key(parsed.cache_key(query.lang, options))

        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("query_cache_hit", key=key)
            return cached

        result = await self._resolve(item_id, query, options, parsed, linked)
        if isinstance(result, UpstreamError):
            return result

        logger.info(
            "query_resolved",
            key=key,
            items=len(result["items"]),
            has_next_page=result["hasNextPage"],
        )
        return await self.cache.set(key, CacheStore.TTL_QUERY, result)

    async def _resolve(
        self,
        item_id: int | None,
        query: ItemQuery,
        options: QueryOptions,
        parsed: ParsedQuery,
        linked: list[int],
    ) -> QueryResult | UpstreamError:
        raw_items = await self.client.fetch_items(
            f"sort_by=created&sort_order=desc&{parsed.query_string}"
        )
        if isinstance(raw_items, UpstreamError):
            return raw_items

        filters = await self.facets.get_filters()
        if isinstance(filters, UpstreamError):
            return filters

        index = FacetIndex(filters)
        search = query.search if parsed.terms else None
        items = [self._present(raw, index, search) for raw in raw_items]
        has_next_page = len(items) >= parsed.limit

        if options.retrieve_creators:
            creators = await self.facets.get_creators()
            if isinstance(creators, UpstreamError):
                return creators
            items += cross_referenced_creators(items, creators, item_id, linked)

        creators = [item for item in items if item["type"] == vocabulary.CREATOR_TYPE]
        objects = [item for item in items if item["type"] == vocabulary.OBJECT_TYPE]

        counted = objects
        if options.exclude_parts and item_id is None and not parsed.is_filtered:
            counted = [item for item in objects if not item.get("isPart")]

        if has_next_page:
            counts = await self.facets.get_counts()
            if isinstance(counts, UpstreamError):
                return counts
        else:
            counts = {"creators": len(creators), "objects": len(counted)}

        scoped = (
            scoped_filters(items, self._settings.part_category_id)
            if parsed.is_filtered
            else None
        )

        creators = sort_by_title(creators, query.lang)
        if item_id is not None:
            objects = sort_by_title(objects, query.lang)

        return {
            "items": objects + creators,
            "filters": scoped,
            "hasNextPage": has_next_page,
            "counts": dict(counts),
        }

    def _present(
        self, raw: dict[str, Any], index: FacetIndex, search: str | None
    ) -> dict[str, Any]:
        item = normalize_item(
            raw,
            index,
            part_category_id=self._settings.part_category_id,
            description=True,
            text=True,
        )
        if search:
            item["snippets"] = extract_snippets(item, search)
        # Staged only for snippet extraction
        item.pop("description", None)
        item.pop("text", None)
        return item
