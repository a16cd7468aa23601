"""FastAPI dependency injection container.

The lifespan builds one ``ProxyServices`` bundle and stores it on
``app.state.services``; the functions below hand its members to routes
through FastAPI's ``Depends()``. Tests override the bundle directly.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from redis.asyncio import Redis

from omeka_proxy.config import Settings
from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.catalog import CatalogService
from omeka_proxy.services.facets import FacetEngine
from omeka_proxy.services.invalidation import InvalidationLoop
from omeka_proxy.services.mirror import MirrorFetcher
from omeka_proxy.services.omeka import OmekaClient
from omeka_proxy.services.query import QueryEngine


@dataclass
class ProxyServices:
    """Every long-lived service of one application instance."""

    settings: Settings
    cache: CacheStore
    client: OmekaClient
    mirror: MirrorFetcher
    facets: FacetEngine
    catalog: CatalogService
    queries: QueryEngine
    invalidation: InvalidationLoop

    async def aclose(self) -> None:
        """Stop the background loop and close the upstream client."""
        await self.invalidation.stop()
        await self.client.close()


def build_services(
    settings: Settings, redis: Redis, client: OmekaClient | None = None
) -> ProxyServices:
    """Wire the services together around one Redis connection."""
    cache = CacheStore(redis)
    client = client or OmekaClient(settings)
    mirror = MirrorFetcher(cache, client, settings)
    facets = FacetEngine(cache, mirror, settings)
    catalog = CatalogService(cache, client, facets, settings)
    return ProxyServices(
        settings=settings,
        cache=cache,
        client=client,
        mirror=mirror,
        facets=facets,
        catalog=catalog,
        queries=QueryEngine(cache, client, facets, catalog, settings),
        invalidation=InvalidationLoop(cache, client, facets, settings),
    )


# ========================================
# Service Dependencies
# ========================================
def get_services(request: Request) -> ProxyServices:
    """Service bundle from app state (set during lifespan)."""
    return request.app.state.services


ServicesDep = Annotated[ProxyServices, Depends(get_services)]


def get_cache_store(services: ServicesDep) -> CacheStore:
    return services.cache


def get_omeka_client(services: ServicesDep) -> OmekaClient:
    return services.client


def get_facet_engine(services: ServicesDep) -> FacetEngine:
    return services.facets


def get_catalog(services: ServicesDep) -> CatalogService:
    return services.catalog


def get_query_engine(services: ServicesDep) -> QueryEngine:
    return services.queries
