"""Search term handling and display snippets.

Full-text matching itself happens upstream (``fulltext_search``). This module
only decides which terms are worth searching for and cuts short excerpts
around local matches so the client can show why an item was returned.
"""

import re
from typing import Any

from omeka_proxy.services.normalize import text_of

MAX_SNIPPETS = 3
CONTEXT_CHARS = 60
MIN_TERM_LENGTH = 3

# Quoted phrase, or a run of characters up to whitespace or a comma.
_TOKEN = re.compile(r'"([^"]*)"|([^\s,"]+)')
_CJK = re.compile(
    "["
    "぀-ヿ"  # kana
    "㐀-䶿"  # CJK extension A
    "一-鿿"  # CJK unified ideographs
    "가-힯"  # hangul syllables
    "豈-﫿"  # compatibility ideographs
    "\U00020000-\U0002fa1f"  # extensions B-F
    "]"
)


def has_cjk(term: str) -> bool:
    """True when ``term`` contains a Chinese, Japanese or Korean character."""
    return _CJK.search(term) is not None


def search_terms(search: str | None) -> list[str]:
    """Qualifying terms of a free-text search, de-duplicated in order.

    Terms shorter than three characters are dropped unless they contain a
    CJK character, where a single character is already meaningful:
    ``"a, 中, abc"`` -> ``["中", "abc"]``.
    """
    if not search:
        return []

    terms: list[str] = []
    for quoted, bare in _TOKEN.findall(search):
        term = (quoted or bare).strip()
        if not term or term in terms:
            continue
        if len(term) >= MIN_TERM_LENGTH or has_cjk(term):
            terms.append(term)
    return terms


def terms_to_regex(terms: list[str]) -> re.Pattern[str] | None:
    """Case-insensitive alternation of the escaped terms, longest first."""
    if not terms:
        return None
    ordered = sorted(terms, key=len, reverse=True)
    return re.compile("|".join(re.escape(term) for term in ordered), re.IGNORECASE)


def match_with_context(
    text: str, pattern: re.Pattern[str], context: int = CONTEXT_CHARS
) -> list[dict[str, str]]:
    """Every match in ``text`` with ``context`` characters on either side.

    Returns:
        ``[{"term": matched text, "snippet": excerpt}]``; an excerpt starts
        or ends with an ellipsis where it was cut.
    """
    results = []
    for match in pattern.finditer(text):
        start = max(0, match.start() - context)
        stop = min(len(text), match.end() + context)
        sliced = text[start:stop].strip()
        prefix = "…" if start > 0 else ""
        suffix = "…" if stop < len(text) else ""
        results.append({"term": match.group(0), "snippet": f"{prefix}{sliced}{suffix}"})
    return results


def extract_snippets(
    item: dict[str, Any], search: str | None, limit: int = MAX_SNIPPETS
) -> list[dict[str, str]]:
    """Up to ``limit`` snippets from an item's description, then its full text."""
    pattern = terms_to_regex(search_terms(search))
    if pattern is None:
        return []

    snippets: list[dict[str, str]] = []
    for field in ("description", "text"):
        snippets.extend(match_with_context(text_of(item.get(field)), pattern))
        if len(snippets) >= limit:
            break
    return snippets[:limit]
