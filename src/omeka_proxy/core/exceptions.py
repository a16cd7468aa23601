"""Exceptions raised at the HTTP boundary.

Inside the services a non-OK Omeka-S response is an ``UpstreamError`` value
(see ``omeka_proxy.services.omeka``), not an exception. The route layer turns
it into ``UpstreamServiceError``; the only exception the services raise
themselves is ``UpstreamConnectionError``, when Omeka-S cannot be reached.

Every ``ProxyError`` is rendered by the application's exception handler as::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}
"""

from typing import Any


class ProxyError(Exception):
    """Base class of every error the API reports to clients.

    Attributes:
        code: Machine-readable error code (e.g., "PAGE_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status of the response
        details: Extra context for the client
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Error body, with empty fields left out."""
        error = {
            "code": self.code,
            "message": self.message,
            "request_id": request_id,
            "details": self.details or None,
        }
        return {"error": {key: value for key, value in error.items() if value is not None}}


class NotFoundError(ProxyError):
    code: str = "NOT_FOUND"
    message: str = "Resource not found"
    status_code: int = 404


class PageNotFoundError(NotFoundError):
    """No site page exists for a slug in the requested language."""

    code: str = "PAGE_NOT_FOUND"

    def __init__(self, slug: str, lang: str) -> None:
        super().__init__(
            message=f"Page '{slug}' not found for language '{lang}'",
            details={"slug": slug, "lang": lang},
        )


class ExternalServiceError(ProxyError):
    """Omeka-S failed to answer a request."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class UpstreamServiceError(ExternalServiceError):
    """Omeka-S answered with a non-OK status.

    The proxy responds with the same status so clients see the 404 or 500
    Omeka-S produced.
    """

    code: str = "UPSTREAM_ERROR"
    message: str = "Omeka-S request failed"

    def __init__(self, status_code: int, url: str | None = None, payload: Any = None) -> None:
        self.status_code = status_code
        details: dict[str, Any] = {"upstream_status": status_code, "url": url, "payload": payload}
        super().__init__(details={k: v for k, v in details.items() if v is not None})


class UpstreamConnectionError(ExternalServiceError):
    """Omeka-S could not be reached at all."""

    code: str = "UPSTREAM_UNREACHABLE"
    message: str = "Could not reach Omeka-S"
