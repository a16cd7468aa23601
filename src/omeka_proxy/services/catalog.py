"""Single-resource reads: items, item media, featured/hero sets and site pages.

Every read is cache-first. On a miss the raw Omeka-S response is normalized
and the normalized form is what gets cached, so a cache hit and a fresh read
return the same structure.
"""

from typing import Any

import structlog

from omeka_proxy.config import Settings, get_settings
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.facets import FacetEngine
from omeka_proxy.services.normalize import (
    FacetIndex,
    normalize_hero,
    normalize_html,
    normalize_item,
    normalize_media,
    normalize_page,
)
from omeka_proxy.services.omeka import OmekaClient, UpstreamError

logger = structlog.get_logger(__name__)


class CatalogService:
    """Cached access to individual Omeka-S resources.

    Usage:
        ```python
        catalog = CatalogService(cache, client, facets)
        item = await catalog.get_item(42)
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

    async def get_item(self, item_id: int) -> dict[str, Any] | UpstreamError:
        """Normalized item with its description and linking item ids.

        Args:
            item_id: Omeka item id

        Returns:
            Normalized item (``items`` lists the ids of items linking to it),
            or the UpstreamError of the item or facet fetch.
        """
        key = CacheStore.item_key(item_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        filters = await self.facets.get_filters()
        if isinstance(filters, UpstreamError):
            return filters

        raw = await self.client.fetch_item(item_id)
        if isinstance(raw, UpstreamError):
            return raw

        item = normalize_item(
            raw,
            FacetIndex(filters),
            part_category_id=self._settings.part_category_id,
            description=True,
            items=True,
        )
        return await self.cache.set(key, CacheStore.TTL_ITEM, item)

    async def get_item_details(self, item_id: int) -> dict[str, Any] | list | UpstreamError:
        """Media files and html media of an item.

        Returns:
            ``{"media": [...] | None, "html": Localizable | None}``, an empty
            list when the item has no media, or an UpstreamError.
        """
        key = CacheStore.item_details_key(item_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        item = await self.get_item(item_id)
        if isinstance(item, UpstreamError):
            return item

        media_ids = item.get("media") or []
        if not media_ids:
            return []

        media_items = await self.client.fetch_media(media_ids)
        if isinstance(media_items, UpstreamError):
            return media_items

        details = {
            "media": normalize_media(media_items),
            "html": normalize_html(media_items),
        }
        return await self.cache.set(key, CacheStore.TTL_ITEM, details)

    async def get_featured(self) -> list[dict[str, Any]] | UpstreamError:
        """Normalized items of the featured item set."""
        item_set = self._settings.featured_item_set
        if item_set is None:
            logger.debug("featured_item_set_not_configured")
            return []

        cached = await self.cache.get(CacheStore.FEATURED)
        if cached is not None:
            return cached

        raw_items = await self.client.fetch_items(f"item_set_id={item_set}")
        if isinstance(raw_items, UpstreamError):
            return raw_items

        filters = await self.facets.get_filters()
        if isinstance(filters, UpstreamError):
            return filters

        index = FacetIndex(filters)
        featured = [
            normalize_item(raw, index, part_category_id=self._settings.part_category_id)
            for raw in raw_items
        ]
        return await self.cache.set(CacheStore.FEATURED, CacheStore.TTL_FEATURED, featured)

    async def get_heroes(self) -> list[str] | UpstreamError:
        """Large thumbnail URLs of the hero item set."""
        item_set = self._settings.heroes_item_set
        if item_set is None:
            logger.debug("heroes_item_set_not_configured")
            return []

        cached = await self.cache.get(CacheStore.HEROES)
        if cached is not None:
            return cached

        raw_items = await self.client.fetch_items(f"item_set_id={item_set}")
        if isinstance(raw_items, UpstreamError):
            return raw_items

        heroes = [url for url in map(normalize_hero, raw_items) if url]
        return await self.cache.set(CacheStore.HEROES, CacheStore.TTL_HEROES, heroes)

    async def get_page(self, slug: str, lang: str) -> dict[str, Any] | UpstreamError | None:
        """Site page ``{slug}-{lang}``.

        Returns:
            Normalized page, None when no page has that slug, or an
            UpstreamError.
        """
        key = CacheStore.page_key(slug, lang)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        pages = await self.client.fetch_site_pages(f"{slug}-{lang}")
        if isinstance(pages, UpstreamError):
            return pages

        page = normalize_page(pages)
        if page is None:
            logger.info("page_not_found", slug=slug, lang=lang)
            return None
        return await self.cache.set(key, CacheStore.TTL_PAGE, page)
