"""Item query schemas and canonical query-string building.

The canonical query string doubles as the query cache key, so two filter
sets that differ only in value order or duplicates must render identically.
"""

from dataclasses import dataclass
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from omeka_proxy.config import Settings
from omeka_proxy.services.snippets import search_terms
from omeka_proxy.vocabulary import FILTER_CONFIG

# =============================================================================
# Request Schemas
# =============================================================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,  # Allow both alias and field name
        str_strip_whitespace=True,  # Strip whitespace from strings
    )


class ItemQuery(BaseSchema):
    """Filters, search and paging of an item listing.

    Facet fields hold comma-separated values as they arrive in the query
    string (e.g. ``creator=12,7``).
    """

    object_type: str | None = Field(None, alias="objectType", description="Object type ids")
    creator: str | None = Field(None, description="Creator ids")
    theme: str | None = Field(None, description="Theme ids")
    era: str | None = Field(None, description="Era ids")
    year: str | None = Field(None, description="Year prefixes")
    search: str | None = Field(None, max_length=500, description="Free-text search")
    page: int = Field(1, ge=1, description="Page number (1-indexed)")
    limit: int | None = Field(None, ge=1, description="Page size override")
    lang: str | None = Field(None, min_length=2, max_length=10, description="Language code")

    def facet_values(self, name: str) -> list[str]:
        """Stripped, de-duplicated and sorted values of one facet."""
        raw = self.object_type if name == "objectType" else getattr(self, name)
        if not raw:
            return []
        return sorted({value.strip() for value in raw.split(",") if value.strip()})


class QueryOptions(BaseModel):
    """Result shaping switches of ``QueryEngine.query_items``.

    Attributes:
        retrieve_creators: Append creators referenced by the results
        exclude_parts: Leave part items out of the objects total of an
            unfiltered base listing
    """

    model_config = ConfigDict(frozen=True)

    retrieve_creators: bool = True
    exclude_parts: bool = True

    @property
    def is_default(self) -> bool:
        return self.retrieve_creators and self.exclude_parts

    def marker(self) -> str:
        """Short cache-key marker, e.g. ``c0p1``."""
        return f"c{int(self.retrieve_creators)}p{int(self.exclude_parts)}"


# =============================================================================
# Canonical query string
# =============================================================================


@dataclass(frozen=True)
class ParsedQuery:
    """Result of ``parse_query``.

    Attributes:
        query_string: Canonical Omeka query string (without sorting)
        is_filtered: Any facet value, qualifying search term or id present
        limit: Page size sent upstream
        terms: Qualifying search terms
    """

    query_string: str
    is_filtered: bool
    limit: int
    terms: tuple[str, ...] = ()

    def cache_key(self, lang: str | None = None, options: QueryOptions | None = None) -> str:
        """Cache key suffix: the query string plus language and options markers."""
        key = self.query_string
        if lang:
            key += f"&lang={lang}"
        if options is not None and not options.is_default:
            key += f"&options={options.marker()}"
        return key


def filter_block(property_term: str, value: str, index: int, search_type: str = "res") -> str:
    """One ``property[i]`` block of an Omeka item query.

    Example:
        ``property[0][property]=dcterms:creator&property[0][type]=res&property[0][text]=12``
    """
    prefix = f"property[{index}]"
    return (
        f"{prefix}[property]={property_term}"
        f"&{prefix}[type]={search_type}"
        f"&{prefix}[text]={quote(value, safe='')}"
    )


def fulltext_search(terms: list[str]) -> str:
    """Upstream full-text expression; multi-word terms stay quoted phrases."""
    return " ".join(f'"{term}"' if any(ch.isspace() for ch in term) else term for term in terms)


def parse_query(
    query: ItemQuery,
    settings: Settings,
    ids: list[int] | None = None,
) -> ParsedQuery:
    """Build the canonical query string of ``query``.

    Args:
        query: Requested filters, search and paging
        settings: Supplies the unfiltered and filtered page sizes
        ids: Restrict results to these item ids (parent-scoped queries)

    Returns:
        ParsedQuery whose ``query_string`` is identical for equivalent queries.
    """
    parts: list[str] = []
    index = 0
    for name, spec in FILTER_CONFIG.items():
        for value in query.facet_values(name):
            parts.append(filter_block(spec.property, value, index, spec.search_type))
            index += 1

    scoped_ids = sorted(set(ids or []))
    if scoped_ids:
        parts.append("id=" + ",".join(str(item_id) for item_id in scoped_ids))

    terms = search_terms(query.search)
    if terms:
        parts.append("fulltext_search=" + quote(fulltext_search(terms), safe=""))

    is_filtered = index > 0 or bool(scoped_ids) or bool(terms)
    if query.limit is not None:
        limit = query.limit
    elif is_filtered:
        limit = settings.filtered_query_limit
    else:
        limit = settings.query_limit

    parts.append(f"page={query.page}")
    parts.append(f"per_page={limit}")

    return ParsedQuery(
        query_string="&".join(parts),
        is_filtered=is_filtered,
        limit=limit,
        terms=tuple(terms),
    )
