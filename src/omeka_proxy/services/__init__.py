"""Services package for the Omeka proxy.

Re-exports the upstream client and cache store every other service is
built on.
"""

from omeka_proxy.services.cache import CacheStore
from omeka_proxy.services.omeka import OmekaClient, UpstreamError

__all__ = [
    "CacheStore",
    "OmekaClient",
    "UpstreamError",
]
