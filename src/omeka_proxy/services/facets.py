"""Facet (filter) and count derivation from the mirrored collection.

Facets:
    - ``year``: histogram of the first ``dcterms:date`` value's year
    - ``creator`` / ``objectType`` / ``theme`` / ``era``: for every item of
      the facet's RDF class, the number of items referencing it

Each facet is a list sorted by descending count. Python's sort is stable, so
entries with equal counts keep the order in which the mirror listed them.

Part exclusion:
    Issues of a serialized publication would otherwise count as independent
    works. Part items are therefore left out of the year, creator, theme and
    era facets and out of the global totals. ``objectType`` is computed over
    every item and the part category itself is then pinned to a count of 0,
    keeping its position so clients can still offer it as a filter.
"""

from collections import Counter
from collections.abc import Iterable
from typing import Any

import structlog

from omeka_proxy import vocabulary
from omeka_proxy.config import Settings, get_settings
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.mirror import MirrorFetcher
from omeka_proxy.services.normalize import (
    FacetIndex,
    item_types,
    is_part,
    linked_ids,
    normalize_item,
    normalize_type,
    normalize_value,
    resolve_localizable,
)
from omeka_proxy.services.omeka import UpstreamError
from omeka_proxy.vocabulary import TYPES

logger = structlog.get_logger(__name__)

FacetSet = dict[str, list[dict[str, Any]]]


# =============================================================================
# Pure facet computation
# =============================================================================


def _year(value: Any) -> str | None:
    value = resolve_localizable(value, None)
    if not isinstance(value, str) or not value:
        return None
    return value.split("-")[0] or None


def _by_count(entries: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(entries, key=lambda entry: entry["count"], reverse=True)


def _first_date(item: dict[str, Any]) -> Any:
    dates = item.get(vocabulary.DATE) or [{}]
    return dates[0].get("@value")


def filter_years(items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Year histogram of raw items as ``[{value, count}]``.

    Only the first ``dcterms:date`` value of an item is counted.
    """
    years: Counter[str] = Counter()
    for item in items:
        year = _year(_first_date(item))
        if year:
            years[year] += 1
    return _by_count({"value": year, "count": count} for year, count in years.items())


def filter_by_type(name: str, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """``[{id, title, count}]`` for every item of facet ``name``'s class.

    ``count`` is the number of items referencing the id through the facet's
    property; an item referencing the same id twice counts once. Entries
    nobody references are left out.
    """
    linked = TYPES[name]

    referencing: Counter[int] = Counter()
    for item in items:
        referencing.update(set(linked_ids(item, linked.property)))

    entries = (
        {
            "id": item["o:id"],
            "title": normalize_value(item.get(vocabulary.TITLE)),
            "count": referencing[item["o:id"]],
        }
        for item in items
        if linked.term in item_types(item)
    )
    return _by_count(entry for entry in entries if entry["count"] > 0)


def _pin_part_category(
    entries: list[dict[str, Any]], part_category_id: int
) -> list[dict[str, Any]]:
    return [
        {**entry, "count": 0} if entry["id"] == part_category_id else entry
        for entry in entries
    ]


def build_filters(items: list[dict[str, Any]], part_category_id: int) -> FacetSet:
    """Global facet set of the mirrored collection."""
    whole_works = [item for item in items if not is_part(item, part_category_id)]
    return {
        "year": filter_years(whole_works),
        "creator": filter_by_type("creator", whole_works),
        "objectType": _pin_part_category(
            filter_by_type("objectType", items), part_category_id
        ),
        "theme": filter_by_type("theme", whole_works),
        "era": filter_by_type("era", whole_works),
    }


def build_counts(items: list[dict[str, Any]], part_category_id: int) -> dict[str, int]:
    """Totals of creator and object records, parts excluded."""
    types = Counter(
        normalize_type(item) for item in items if not is_part(item, part_category_id)
    )
    return {
        "creators": types[vocabulary.CREATOR_TYPE],
        "objects": types[vocabulary.OBJECT_TYPE],
    }


def scoped_filters(items: list[dict[str, Any]], part_category_id: int) -> FacetSet:
    """Facet set over normalized query results.

    Same policy as ``build_filters`` but counted over the linked ``{id,
    title}`` lists already resolved onto each normalized item.
    """
    whole_works = [item for item in items if not item.get("isPart")]

    years: Counter[str] = Counter()
    for item in whole_works:
        year = _year(item.get("published"))
        if year:
            years[year] += 1

    filters: FacetSet = {
        "year": _by_count({"value": year, "count": count} for year, count in years.items())
    }
    for name in TYPES:
        source = items if name == "objectType" else whole_works
        counts: Counter[int] = Counter()
        titles: dict[int, Any] = {}
        for item in source:
            for ref in item.get(name) or []:
                counts[ref["id"]] += 1
                titles.setdefault(ref["id"], ref.get("title"))
        filters[name] = _by_count(
            {"id": ref_id, "title": titles[ref_id], "count": count}
            for ref_id, count in counts.items()
        )

    filters["objectType"] = _pin_part_category(filters["objectType"], part_category_id)
    return {key: filters[key] for key in vocabulary.FACET_KEYS}


# =============================================================================
# Cached facet service
# =============================================================================


class FacetEngine:
    """Cached facets, totals and creator records derived from the mirror.

    Usage:
        ```python
        facets = FacetEngine(cache, mirror)
        filters = await facets.get_filters()
        ```
    """

    def __init__(
        self,
        cache: CacheStore,
        mirror: MirrorFetcher,
        settings: Settings | None = None,
    ) -> None:
        self.cache = cache
        self.mirror = mirror
        self._settings = settings or get_settings()

    @property
    def part_category_id(self) -> int:
        return self._settings.part_category_id

    async def get_filters(self, force: bool = False) -> FacetSet | UpstreamError:
        """Global facet set (cached 24h)."""
        if not force:
            cached = await self.cache.get(CacheStore.FILTERS)
            if cached is not None:
                return cached

        items = await self.mirror.get_all_items()
        if isinstance(items, UpstreamError):
            return items

        filters = build_filters(items, self.part_category_id)
        logger.info(
            "filters_built",
            **{key: len(entries) for key, entries in filters.items()},
        )
        return await self.cache.set(CacheStore.FILTERS, CacheStore.TTL_FILTERS, filters)

    async def get_counts(self, force: bool = False) -> dict[str, int] | UpstreamError:
        """Global creator/object totals (cached 24h)."""
        if not force:
            cached = await self.cache.get(CacheStore.COUNTS)
            if cached is not None:
                return cached

        items = await self.mirror.get_all_items()
        if isinstance(items, UpstreamError):
            return items

        counts = build_counts(items, self.part_category_id)
        return await self.cache.set(CacheStore.COUNTS, CacheStore.TTL_COUNTS, counts)

    async def get_creators(self, force: bool = False) -> list[dict[str, Any]] | UpstreamError:
        """Every creator record, normalized (cached 24h).

        Used to append creators referenced by query results.
        """
        if not force:
            cached = await self.cache.get(CacheStore.CREATORS)
            if cached is not None:
                return cached

        items = await self.mirror.get_all_items()
        if isinstance(items, UpstreamError):
            return items
        filters = await self.get_filters()
        if isinstance(filters, UpstreamError):
            return filters

        index = FacetIndex(filters)
        creators = [
            normalize_item(item, index, part_category_id=self.part_category_id)
            for item in items
            if TYPES["creator"].term in item_types(item)
        ]
        return await self.cache.set(CacheStore.CREATORS, CacheStore.TTL_CREATORS, creators)

    async def preload(self, force: bool = True) -> UpstreamError | None:
        """Rebuild mirror, filters, creators and counts, in that order.

        Returns:
            The first UpstreamError encountered, or None on success.
        """
        steps = (
            lambda: self.mirror.get_all_items(force=force),
            lambda: self.get_filters(force=force),
            lambda: self.get_creators(force=force),
            lambda: self.get_counts(force=force),
        )
        for step in steps:
            result = await step()
            if isinstance(result, UpstreamError):
                logger.error("preload_failed", status_code=result.status_code)
                return result
        logger.info("preload_completed")
        return None
