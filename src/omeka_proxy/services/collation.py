"""Locale-aware title ordering.

Collation is a strategy looked up by language tag. A strategy turns a title
into a sort key:

    - ``en``: accent-insensitive, case-insensitive ordering
    - ``zh``: Hanyu Pinyin ordering (syllable, then tone) via ``pypinyin``

Tags are matched on their primary subtag, so ``zh-Hant`` and ``zh_TW`` use
the ``zh`` strategy. An unknown or missing language falls back to ordinal
comparison of the resolved title instead of failing.
"""

import unicodedata
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from pypinyin import Style, lazy_pinyin

from omeka_proxy.services.normalize import resolve_localizable

logger = structlog.get_logger(__name__)

SortKey = Callable[[str], Any]


def ordinal_key(title: str) -> str:
    """Code point order; the fallback for unsupported languages."""
    return title


def latin_key(title: str) -> tuple[str, str]:
    folded = unicodedata.normalize("NFKD", title)
    base = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return base.casefold(), title


def pinyin_key(title: str) -> tuple[tuple[str, ...], str]:
    syllables = lazy_pinyin(title, style=Style.TONE3, errors="default")
    return tuple(part.casefold() for part in syllables), title


_STRATEGIES: dict[str, SortKey] = {
    "en": latin_key,
    "zh": pinyin_key,
}


def register_collation(lang: str, key: SortKey) -> None:
    """Add or replace the strategy for a primary language subtag."""
    _STRATEGIES[lang.lower()] = key


def collation_for(lang: str | None) -> SortKey:
    """Strategy for ``lang``, falling back to ordinal comparison."""
    if not lang:
        return ordinal_key

    primary = lang.replace("_", "-").split("-", 1)[0].lower()
    strategy = _STRATEGIES.get(primary)
    if strategy is None:
        logger.debug("collation_fallback", lang=lang)
        return ordinal_key
    return strategy


def title_text(item: dict[str, Any], lang: str | None) -> str:
    title = resolve_localizable(item.get("title"), lang)
    return title if isinstance(title, str) else ""


def sort_by_title(items: Iterable[dict[str, Any]], lang: str | None) -> list[dict[str, Any]]:
    """Items ordered by their title in ``lang``; stable for equal keys."""
    key = collation_for(lang)
    return sorted(items, key=lambda item: key(title_text(item, lang)))
