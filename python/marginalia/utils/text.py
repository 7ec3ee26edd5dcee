"""
Pure text helpers shared by the identity, matching and reconciliation layers.
"""

import re
from typing import List, Tuple

from rapidfuzz.distance import Levenshtein

_WHITESPACE = re.compile(r"\s+")

# Glyph variants folded onto their ASCII form by normalize_text().
_GLYPHS = {
    "‘": "'",
    "’": "'",
    "‚": "'",
    "′": "'",
    "`": "'",
    "´": "'",
    "“": '"',
    "”": '"',
    "„": '"',
    "″": '"',
    "–": "-",
    "—": "-",
    "‒": "-",
    "―": "-",
    "…": "...",
}


def replace_smart_quotes(text: str) -> str:
    """Normalizes smart quotes to ASCII equivalents."""
    return text.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")


def normalize_text(text: str) -> str:
    """
    Canonical form used for content hashing and text comparison:
    whitespace runs folded to one space, quote/dash/ellipsis glyphs unified,
    trimmed and lower-cased.
    """
    if not text or not isinstance(text, str):
        return ""
    text = "".join(_GLYPHS.get(ch, ch) for ch in text)
    return _WHITESPACE.sub(" ", text).strip().lower()


def normalize_with_map(text: str) -> Tuple[str, List[int]]:
    """
    Same transformation as normalize_text(), but also returns index_map where
    index_map[i] is the offset in `text` that produced normalized character i.
    Used to project a hit in normalized space back onto the raw text.
    """
    out: List[str] = []
    index_map: List[int] = []
    pending_space = -1

    for i, ch in enumerate(text or ""):
        if ch.isspace():
            if pending_space == -1:
                pending_space = i
            continue

        if pending_space != -1:
            if out:
                out.append(" ")
                index_map.append(pending_space)
            pending_space = -1

        for folded in _GLYPHS.get(ch, ch).lower():
            out.append(folded)
            index_map.append(i)

    return "".join(out), index_map


def make_fuzzy_regex(target_text: str) -> str:
    """
    Constructs a regex pattern from target text that permits:
    - Variable whitespace (\\s+)
    - Variable underscores (_+)
    - Smart quote variation
    """
    target_text = replace_smart_quotes(target_text)

    parts = []
    token_pattern = re.compile(r"(_+)|(\s+)|(['\"])")

    last_idx = 0
    for match in token_pattern.finditer(target_text):
        literal = target_text[last_idx : match.start()]
        if literal:
            parts.append(re.escape(literal))

        g_underscore, g_space, g_quote = match.groups()

        if g_underscore:
            parts.append(r"_+")
        elif g_space:
            parts.append(r"\s+")
        elif g_quote:
            if g_quote == "'":
                parts.append(r"['‘’]")
            else:
                parts.append(r"[\"“”]")

        last_idx = match.end()

    remaining = target_text[last_idx:]
    if remaining:
        parts.append(re.escape(remaining))

    return "".join(parts)


def levenshtein(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute distance between a and b."""
    return Levenshtein.distance(a or "", b or "")


def text_similarity(a: str, b: str) -> float:
    """
    (maxLen - levenshtein(a, b)) / maxLen over the normalized strings.
    Two empty strings are identical; one empty string shares nothing.
    """
    a = normalize_text(a)
    b = normalize_text(b)
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return (longest - levenshtein(a, b)) / longest


def positional_similarity(a: str, b: str) -> float:
    """Share of positions holding the same character, over the longer length."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / max(len(a), len(b))


def word_count(text: str) -> int:
    return len(text.split()) if text else 0


def significant_words(text: str, min_length: int = 3) -> List[str]:
    """Normalized words longer than min_length characters."""
    return [w for w in normalize_text(text).split(" ") if len(w) > min_length]
