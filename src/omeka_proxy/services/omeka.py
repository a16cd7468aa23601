"""Omeka-S REST API client.

Thin async wrapper over ``httpx`` for the handful of endpoints the proxy
reads. It never caches and never normalizes; that is the job of the services
built on top of it.

Error contract:
    - A non-OK response is returned as an ``UpstreamError`` value. Every
      caller checks ``isinstance(result, UpstreamError)`` and forwards it
      unchanged, so the route layer can mirror Omeka's status code.
    - A transport failure (DNS, refused connection, transport timeout) raises
      ``UpstreamConnectionError``.

See: https://omeka.org/s/docs/developer/api/rest_api/
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from omeka_proxy.config import Settings, get_settings
from omeka_proxy.core.exceptions import UpstreamConnectionError, UpstreamServiceError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UpstreamError:
    """A non-OK Omeka-S response carried as a value."""

    status_code: int
    url: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        """The ``{"error": ...}`` shape handed to route-layer consumers."""
        return {
            "error": {
                "status_code": self.status_code,
                "url": self.url,
                "payload": self.payload,
            }
        }

    def to_exception(self) -> UpstreamServiceError:
        """Convert into the exception raised at the HTTP boundary."""
        return UpstreamServiceError(
            status_code=self.status_code,
            url=self.url,
            payload=self.payload,
        )


class OmekaClient:
    """Async client for the Omeka-S API.

    Usage:
        ```python
        client = OmekaClient(settings)
        items = await client.fetch_items("page=1&per_page=100")
        if isinstance(items, UpstreamError):
            return items
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def _user_agent(self) -> str:
        """User-Agent header sent upstream."""
        return f"{self._settings.app_name}/{self._settings.app_version}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.omeka_api,
                timeout=self._settings.omeka_timeout,
                follow_redirects=True,
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, query: str = "") -> Any | UpstreamError:
        """GET ``path?query`` and decode the JSON body.

        Args:
            path: API path relative to the configured base (e.g., "/items")
            query: Pre-encoded query string without the leading "?"

        Returns:
            Decoded JSON, or an UpstreamError for a non-OK response.

        Raises:
            UpstreamConnectionError: When the request cannot be sent.
        """
        url = f"{path}?{query}" if query else path
        response = await self._send(url)

        if not response.is_success:
            logger.warning(
                "omeka_request_failed",
                status_code=response.status_code,
                url=url,
            )
            return UpstreamError(
                status_code=response.status_code,
                url=url,
                payload=_safe_body(response),
            )

        return response.json()

    async def passthrough(self, path: str, query: str = "") -> tuple[int, Any]:
        """Forward a raw GET and return ``(status_code, body)`` unchanged."""
        url = f"/{path.lstrip('/')}"
        if query:
            url = f"{url}?{query}"
        response = await self._send(url)
        return response.status_code, _safe_body(response)

    # -------------------------------------------------------------------------
    # Endpoint helpers
    # -------------------------------------------------------------------------

    async def fetch_items(self, query: str = "") -> list[dict[str, Any]] | UpstreamError:
        """``GET /items``; an empty list marks the end of pagination."""
        return await self.get_json("/items", query)

    async def fetch_item(self, item_id: int) -> dict[str, Any] | UpstreamError:
        """``GET /items/{id}``."""
        return await self.get_json(f"/items/{item_id}")

    async def fetch_media(self, media_ids: list[int]) -> list[dict[str, Any]] | UpstreamError:
        """``GET /media?id=a,b,c``."""
        return await self.get_json("/media", f"id={','.join(map(str, media_ids))}")

    async def fetch_site_pages(self, slug: str) -> list[dict[str, Any]] | UpstreamError:
        """``GET /site_pages?site=&slug=``."""
        query = str(httpx.QueryParams({"site": self._settings.omeka_site, "slug": slug}))
        return await self.get_json("/site_pages", query)

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    async def _send(self, url: str) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.get(url)
        except httpx.RequestError as e:
            logger.error("omeka_request_error", url=url, error=str(e))
            raise UpstreamConnectionError(
                message=f"Request to Omeka-S failed: {e}",
                details={"url": url},
            ) from e


def _safe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
