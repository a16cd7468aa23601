"""HTTP routes of the proxy.

Every data route accepts ``lang`` and resolves language maps in its response
to that language. Services return an ``UpstreamError`` value for non-OK
Omeka-S responses; it is raised here as ``UpstreamServiceError`` so the
client receives the upstream status code.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.responses import JSONResponse

from omeka_proxy.core.exceptions import PageNotFoundError
from omeka_proxy.core.logging import get_logger
from omeka_proxy.dependencies import (
    get_cache_store,
    get_catalog,
    get_facet_engine,
    get_omeka_client,
    get_query_engine,
)
from omeka_proxy.schemas.query import ItemQuery
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.catalog import CatalogService
from omeka_proxy.services.facets import FacetEngine
from omeka_proxy.services.invalidation import flush_and_preload
from omeka_proxy.services.normalize import localize_object
from omeka_proxy.services.omeka import OmekaClient, UpstreamError
from omeka_proxy.services.query import QueryEngine

logger = get_logger(__name__)

router = APIRouter()

LangQuery = Annotated[
    str | None,
    Query(min_length=2, max_length=10, description="Language code (e.g., 'en', 'zh')"),
]
ItemId = Annotated[int, Path(ge=1, description="Omeka item id")]


# =============================================================================
# Helpers
# =============================================================================


def unwrap(result: Any) -> Any:
    """Raise an UpstreamError as UpstreamServiceError, pass anything else through."""
    if isinstance(result, UpstreamError):
        raise result.to_exception()
    return result


def item_query(
    object_type: Annotated[
        str | None, Query(alias="objectType", description="Object type ids, comma-separated")
    ] = None,
    creator: Annotated[str | None, Query(description="Creator ids, comma-separated")] = None,
    theme: Annotated[str | None, Query(description="Theme ids, comma-separated")] = None,
    era: Annotated[str | None, Query(description="Era ids, comma-separated")] = None,
    year: Annotated[str | None, Query(description="Years, comma-separated")] = None,
    search: Annotated[str | None, Query(max_length=500, description="Free-text search")] = None,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    limit: Annotated[int | None, Query(ge=1, description="Page size override")] = None,
    lang: LangQuery = None,
) -> ItemQuery:
    """Collect listing query parameters into an ItemQuery."""
    return ItemQuery(
        objectType=object_type,
        creator=creator,
        theme=theme,
        era=era,
        year=year,
        search=search,
        page=page,
        limit=limit,
        lang=lang,
    )


# =============================================================================
# Items
# =============================================================================


@router.get("/items", tags=["Items"], summary="List items")
async def list_items(
    query: Annotated[ItemQuery, Depends(item_query)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
) -> Any:
    """Filtered, searched and paginated item listing, newest first."""
    result = unwrap(await engine.query_items(None, query))
    return localize_object(result, query.lang)


@router.get("/items/{item_id}", tags=["Items"], summary="Get an item")
async def get_item(
    item_id: ItemId,
    catalog: Annotated[CatalogService, Depends(get_catalog)],
    lang: LangQuery = None,
) -> Any:
    """Single item with description and the ids of items linking to it."""
    item = unwrap(await catalog.get_item(item_id))
    return localize_object(item, lang)


@router.get("/items/{item_id}/details", tags=["Items"], summary="Get item media")
async def get_item_details(
    item_id: ItemId,
    catalog: Annotated[CatalogService, Depends(get_catalog)],
    lang: LangQuery = None,
) -> Any:
    """Media files and html content of an item."""
    details = unwrap(await catalog.get_item_details(item_id))
    return localize_object(details, lang)


@router.get("/items/{item_id}/items", tags=["Items"], summary="List linked items")
async def list_linked_items(
    item_id: ItemId,
    query: Annotated[ItemQuery, Depends(item_query)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
) -> Any:
    """Items linking to ``item_id``, with the same filters as ``/items``."""
    result = unwrap(await engine.query_items(item_id, query))
    return localize_object(result, query.lang)


# =============================================================================
# Facets & collections
# =============================================================================


@router.get("/filters", tags=["Facets"], summary="Global facets")
async def get_filters(
    facets: Annotated[FacetEngine, Depends(get_facet_engine)],
    lang: LangQuery = None,
) -> Any:
    filters = unwrap(await facets.get_filters())
    return localize_object(filters, lang)


@router.get("/counts", tags=["Facets"], summary="Global totals")
async def get_counts(
    facets: Annotated[FacetEngine, Depends(get_facet_engine)],
) -> Any:
    return unwrap(await facets.get_counts())


@router.get("/featured", tags=["Collections"], summary="Featured items")
async def get_featured(
    catalog: Annotated[CatalogService, Depends(get_catalog)],
    lang: LangQuery = None,
) -> Any:
    featured = unwrap(await catalog.get_featured())
    return localize_object(featured, lang)


@router.get("/heroes", tags=["Collections"], summary="Hero images")
async def get_heroes(
    catalog: Annotated[CatalogService, Depends(get_catalog)],
) -> Any:
    return unwrap(await catalog.get_heroes())


@router.get("/pages/{slug}", tags=["Pages"], summary="Get a site page")
async def get_page(
    slug: Annotated[str, Path(min_length=1, max_length=200)],
    lang: Annotated[str, Query(min_length=2, max_length=10, description="Page language")],
    catalog: Annotated[CatalogService, Depends(get_catalog)],
) -> Any:
    page = unwrap(await catalog.get_page(slug, lang))
    if page is None:
        raise PageNotFoundError(slug=slug, lang=lang)
    return page


# =============================================================================
# Admin & pass-through
# =============================================================================


@router.api_route("/flush", methods=["GET", "POST"], tags=["Admin"], summary="Flush the cache")
async def flush(
    cache: Annotated[CacheStore, Depends(get_cache_store)],
    facets: Annotated[FacetEngine, Depends(get_facet_engine)],
) -> dict[str, Any]:
    """Drop every cache entry and rebuild mirror, facets, creators and counts."""
    logger.info("flush_requested")
    error = await flush_and_preload(cache, facets)
    return {"status": "Cache flushed", "preloaded": error is None}


@router.get("/omeka/{path:path}", tags=["Pass-through"], summary="Raw Omeka-S request")
async def omeka_passthrough(
    path: str,
    request: Request,
    cache: Annotated[CacheStore, Depends(get_cache_store)],
    client: Annotated[OmekaClient, Depends(get_omeka_client)],
) -> JSONResponse:
    """Forward a GET to the Omeka-S API unchanged; successful bodies are cached."""
    query = str(request.query_params)
    key = CacheStore.passthrough_key(path, query)

    cached = await cache.get(key)
    if cached is not None:
        return JSONResponse(content=cached)

    status_code, body = await client.passthrough(path, query)
    if 200 <= status_code < 300:
        await cache.set(key, CacheStore.TTL_PASSTHROUGH, body)
    return JSONResponse(status_code=status_code, content=body)
