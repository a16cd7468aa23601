"""Omeka-S vocabulary used by the proxy.

Maps each facet key to the RDF class marking items of that kind and to the
property through which other items link to them.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class LinkedType:
    """A linked facet: items typed ``term`` referenced through ``property``."""

    term: str
    property: str


@dataclass(frozen=True)
class FilterSpec:
    """How a facet value becomes an Omeka ``property[i]`` query block."""

    property: str
    search_type: str = "res"


TYPES: dict[str, LinkedType] = {
    "creator": LinkedType(term="foaf:Person", property="dcterms:creator"),
    "objectType": LinkedType(term="skos:Concept", property="curation:category"),
    "theme": LinkedType(term="dctype:Collection", property="curation:theme"),
    "era": LinkedType(term="dctype:Event", property="dcterms:coverage"),
}

# Block order in canonical query strings follows this dict's order.
FILTER_CONFIG: dict[str, FilterSpec] = {
    "objectType": FilterSpec(property=TYPES["objectType"].property),
    "creator": FilterSpec(property=TYPES["creator"].property),
    "theme": FilterSpec(property=TYPES["theme"].property),
    "era": FilterSpec(property=TYPES["era"].property),
    "year": FilterSpec(property="dcterms:date", search_type="sw"),
}

FACET_KEYS: tuple[str, ...] = ("year", "creator", "objectType", "theme", "era")

OBJECT_TYPE = "object"
CREATOR_TYPE = "creator"

TITLE = "dcterms:title"
DESCRIPTION = "dcterms:description"
ALTERNATIVE = "dcterms:alternative"
DATE = "dcterms:date"
IS_PART_OF = "dcterms:isPartOf"
EXTRACTED_TEXT = "extracttext:extracted_text"
