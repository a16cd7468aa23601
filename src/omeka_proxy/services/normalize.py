"""Normalization of raw Omeka-S JSON-LD into the client-facing shape.

Everything in this module is a pure function of its input. Raw items are
never modified; each function builds a new structure.

Localizable values:
    A JSON-LD value array with more than one entry becomes a language map
    (``{"en": "Ink", "zh": "墨"}``); a single entry collapses to its trimmed
    ``@value``. ``resolve_localizable`` is the one place that picks a
    language: the requested one, else the first available, else the value
    as stored.
"""

import html
import re
from collections.abc import Iterable
from typing import Any, TypeAlias

from omeka_proxy import vocabulary
from omeka_proxy.vocabulary import TYPES

Localizable: TypeAlias = str | dict[str, str]

_LANGUAGE_TAG = re.compile(r"^(?:[a-z]{2}(?:[-_][A-Za-z]{2,4})?|und)$")
_UNDETERMINED = "und"


# =============================================================================
# Values
# =============================================================================


def safe_trim(value: Any) -> Any:
    """Trim strings, leave anything else untouched."""
    if isinstance(value, str):
        return value.strip()
    return value


def normalize_value(prop: Any) -> Any:
    """Flatten a JSON-LD value array into a Localizable.

    - more than one entry: ``{language: value}``
    - one entry: its ``@value``
    - anything else: returned as is
    """
    if isinstance(prop, list) and len(prop) > 1:
        return {
            (entry.get("@language") or _UNDETERMINED): safe_trim(entry.get("@value"))
            for entry in prop
            if isinstance(entry, dict)
        }

    if isinstance(prop, list):
        prop = prop[0] if prop else None

    if isinstance(prop, dict):
        return safe_trim(prop.get("@value", prop))
    return safe_trim(prop)


def is_language_map(value: Any) -> bool:
    """True for a non-empty dict of language tag -> string."""
    return (
        isinstance(value, dict)
        and bool(value)
        and all(
            isinstance(key, str) and _LANGUAGE_TAG.match(key) and isinstance(text, str)
            for key, text in value.items()
        )
    )


def resolve_localizable(value: Any, lang: str | None) -> Any:
    """Pick one language out of a Localizable.

    Falls back from the requested language to the first available entry and
    finally to the value itself when it is not a language map.
    """
    if not is_language_map(value):
        return value
    if lang and value.get(lang):
        return value[lang]
    return next((text for text in value.values() if text), value)


def localize_object(obj: Any, lang: str | None) -> Any:
    """Recursively resolve every language map inside ``obj``."""
    if lang is None:
        return obj
    if is_language_map(obj):
        return resolve_localizable(obj, lang)
    if isinstance(obj, dict):
        return {key: localize_object(value, lang) for key, value in obj.items()}
    if isinstance(obj, list):
        return [localize_object(value, lang) for value in obj]
    return obj


def text_of(value: Any) -> str:
    """All text inside a value, space-joined (every language of a map)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        value = list(value.values())
    if isinstance(value, list):
        return " ".join(part for part in map(text_of, value) if part)
    return str(value)


def omit_nullish(obj: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``obj`` without None values."""
    return {key: value for key, value in obj.items() if value is not None}


# =============================================================================
# HTML
# =============================================================================


def decode_html(raw: str) -> str:
    """Decode HTML entities (``&amp;`` -> ``&``)."""
    return html.unescape(raw)


def html_to_text(markup: str) -> str:
    """Plain-text rendition of an HTML fragment."""
    text = re.sub(r"<\s*br\s*/?>", "\n", markup, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


# =============================================================================
# Item structure
# =============================================================================


def item_types(item: dict[str, Any]) -> list[str]:
    raw = item.get("@type")
    if raw is None:
        return []
    return raw if isinstance(raw, list) else [raw]


def normalize_type(item: dict[str, Any]) -> str:
    """Facet key matching the item's RDF class, or ``"object"``."""
    terms = item_types(item)
    for name, linked in TYPES.items():
        if linked.term in terms:
            return name
    return vocabulary.OBJECT_TYPE


def linked_ids(item: dict[str, Any], prop: str) -> list[int]:
    """Resource ids referenced through ``prop``, in document order."""
    return [
        ref["value_resource_id"]
        for ref in item.get(prop) or []
        if isinstance(ref, dict) and ref.get("value_resource_id") is not None
    ]


def is_part(item: dict[str, Any], part_category_id: int) -> bool:
    """True for items that are an issue/part of a larger serialized work.

    An item is a part when it links to a parent through ``dcterms:isPartOf``
    or carries the dedicated part category.
    """
    if linked_ids(item, vocabulary.IS_PART_OF):
        return True
    return part_category_id in linked_ids(item, TYPES["objectType"].property)


def reverse_item_ids(item: dict[str, Any]) -> list[int]:
    """Ids of the items that link to ``item`` (its ``@reverse`` listing)."""
    ids: list[int] = []
    for refs in (item.get("@reverse") or {}).values():
        for ref in refs if isinstance(refs, list) else [refs]:
            if not isinstance(ref, dict):
                continue
            ref_id = ref.get("o:id", ref.get("value_resource_id"))
            if ref_id is not None and ref_id not in ids:
                ids.append(ref_id)
    return ids


class FacetIndex:
    """Lookup of facet entries by id, built once per facet set."""

    def __init__(self, filters: dict[str, Any] | None) -> None:
        self._index: dict[str, dict[int, dict[str, Any]]] = {
            name: {entry["id"]: entry for entry in (filters or {}).get(name) or []}
            for name in TYPES
        }

    def lookup(self, name: str, resource_id: int) -> dict[str, Any] | None:
        return self._index.get(name, {}).get(resource_id)


def resolve_linked_properties(
    item: dict[str, Any], index: FacetIndex
) -> dict[str, list[dict[str, Any]]]:
    """Map each linked property to ``[{id, title}]``.

    References whose target is not in the current facet set are dropped and
    each list is de-duplicated by id. Properties with nothing left are
    omitted.
    """
    resolved: dict[str, list[dict[str, Any]]] = {}
    for name, linked in TYPES.items():
        values: list[dict[str, Any]] = []
        seen: set[int] = set()
        for resource_id in linked_ids(item, linked.property):
            entry = index.lookup(name, resource_id)
            if entry is None or resource_id in seen:
                continue
            seen.add(resource_id)
            values.append({"id": resource_id, "title": entry.get("title")})
        if values:
            resolved[name] = values
    return resolved


def normalize_item(
    item: dict[str, Any],
    index: FacetIndex,
    *,
    part_category_id: int,
    description: bool = False,
    text: bool = False,
    items: bool = False,
) -> dict[str, Any]:
    """Client-facing shape of a raw item.

    Args:
        item: Raw Omeka-S item
        index: Facet lookup used to title linked resources
        part_category_id: Category id marking part/issue items
        description: Include ``dcterms:description``
        text: Include extracted full text (staged for snippet search)
        items: Include the ids of items linking to this one
    """
    thumbnails = item.get("thumbnail_display_urls") or {}
    media = item.get("o:media")

    return omit_nullish(
        {
            "id": item.get("o:id"),
            "title": normalize_value(item.get(vocabulary.TITLE)),
            "description": (
                normalize_value(item.get(vocabulary.DESCRIPTION)) if description else None
            ),
            "type": normalize_type(item),
            "titleAlt": normalize_value(item.get(vocabulary.ALTERNATIVE)),
            "published": normalize_value(item.get(vocabulary.DATE)),
            "text": normalize_value(item.get(vocabulary.EXTRACTED_TEXT)) if text else None,
            "media": [m["o:id"] for m in media] if media else None,
            "thumbnail": thumbnails.get("medium"),
            "isPart": is_part(item, part_category_id),
            "items": reverse_item_ids(item) if items else None,
            **resolve_linked_properties(item, index),
        }
    )


def normalize_hero(item: dict[str, Any]) -> str | None:
    """Large thumbnail URL of a hero item."""
    return (item.get("thumbnail_display_urls") or {}).get("large")


# =============================================================================
# Media & pages
# =============================================================================


def normalize_media(media_items: Iterable[dict[str, Any]]) -> list[dict[str, Any]] | None:
    """File media as ``{filename, url, type}``; html media are skipped."""
    files = [
        {
            "filename": media.get("o:source"),
            "url": media.get("o:original_url"),
            "type": media.get("o:media_type"),
        }
        for media in media_items
        if media.get("o:renderer") != "html"
    ]
    return files or None


def normalize_html(media_items: Iterable[dict[str, Any]]) -> Any:
    """Decoded html media as a Localizable keyed by ``o:lang``."""
    entries = [
        {
            "@language": media.get("o:lang"),
            "@value": decode_html((media.get("data") or {}).get("html") or ""),
        }
        for media in media_items
        if media.get("o:renderer") == "html"
    ]
    if not entries:
        return None
    return normalize_value(entries)


def normalize_page(pages: list[dict[str, Any]]) -> dict[str, Any] | None:
    """First site page of an Omeka ``/site_pages`` response, or None."""
    if not pages:
        return None

    page = pages[0]
    blocks = []
    for block in page.get("o:block") or []:
        markup = (block.get("o:data") or {}).get("html")
        decoded = decode_html(markup) if markup else None
        blocks.append(
            omit_nullish(
                {
                    "layout": block.get("o:layout"),
                    "html": decoded,
                    "text": html_to_text(decoded) if decoded else None,
                }
            )
        )

    return omit_nullish(
        {
            "id": page.get("o:id"),
            "title": safe_trim(page.get("o:title")),
            "slug": page.get("o:slug"),
            "blocks": blocks,
        }
    )
