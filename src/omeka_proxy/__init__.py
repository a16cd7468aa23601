"""Read-through caching proxy for an Omeka-S collection API."""
