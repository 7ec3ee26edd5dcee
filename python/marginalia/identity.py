"""
Content-addressable suggestion identity.

An id is `sug_<content>_<context>_<suffix>`:
- content: hash of the normalized original and replacement (the fingerprint)
- context: hash of the edit type and confidence bucket
- suffix:  time-based, plus a process-local counter, for global uniqueness

Two independently generated suggestions for the same change share a
fingerprint even though their ids differ.
"""

import hashlib
import itertools
import time
from datetime import datetime, timezone
from typing import Optional

from marginalia.models import DEFAULT_EDIT_TYPE, ParsedSuggestionId, SuggestionMetadata
from marginalia.utils.text import normalize_text

ID_PREFIX = "sug"

_counter = itertools.count()
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _mk_hash(seed: str, length: int) -> str:
    return hashlib.sha1(seed.encode("utf-8")).hexdigest()[:length]


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def confidence_bucket(confidence: Optional[float]) -> int:
    """Confidence in tenths, so 0.93 and 0.88 hash alike."""
    if confidence is None:
        confidence = 1.0
    return int(round(max(0.0, min(1.0, confidence)) * 10))


def generate_fingerprint(original: str, replacement: str) -> str:
    content = normalize_text(original) + "→" + normalize_text(replacement)
    return _mk_hash(content, 12)


def generate_suggestion_id(
    original: str,
    replacement: str,
    edit_type: Optional[str] = None,
    confidence: Optional[float] = None,
) -> str:
    content_hash = generate_fingerprint(original, replacement)
    context_hash = _mk_hash(f"{edit_type or DEFAULT_EDIT_TYPE}|{confidence_bucket(confidence)}", 4)
    millis = int(time.time() * 1000)
    suffix = f"{_to_base36(millis)}{_to_base36(next(_counter))}"
    return f"{ID_PREFIX}_{content_hash}_{context_hash}_{suffix}"


def parse_suggestion_id(suggestion_id: str) -> ParsedSuggestionId:
    parts = suggestion_id.split("_") if isinstance(suggestion_id, str) else []
    if len(parts) != 4 or parts[0] != ID_PREFIX or not all(parts[1:]):
        return ParsedSuggestionId(valid=False)
    return ParsedSuggestionId(valid=True, content_hash=parts[1], context_hash=parts[2], suffix=parts[3])


def is_valid_suggestion_id(suggestion_id) -> bool:
    return parse_suggestion_id(suggestion_id).valid


def are_similar_suggestions(id1: str, id2: str) -> bool:
    """True when two generated ids carry the same content hash."""
    meta1 = parse_suggestion_id(id1)
    meta2 = parse_suggestion_id(id2)
    if not meta1.valid or not meta2.valid:
        return False
    return meta1.content_hash == meta2.content_hash


def classify_change(original: str, replacement: str) -> str:
    if not original or not replacement:
        return "unknown"
    if len(original.split()) == len(replacement.split()):
        return "substitution"
    if len(replacement) > len(original):
        return "expansion"
    return "reduction"


def text_complexity(text: str) -> float:
    """Rough 0..1 score from character diversity and length."""
    if not text:
        return 0.0
    unique_chars = len(set(text.lower()))
    words = len(text.split())
    return min(1.0, (unique_chars / 26) * 0.5 + min(words / 10, 0.5))


def create_suggestion_metadata(
    original: str,
    replacement: str,
    edit_type: Optional[str] = None,
    confidence: Optional[float] = None,
) -> SuggestionMetadata:
    return SuggestionMetadata(
        fingerprint=generate_fingerprint(original, replacement),
        normalized_original=normalize_text(original),
        original_length=len(original or ""),
        replacement_length=len(replacement or ""),
        edit_type=edit_type or DEFAULT_EDIT_TYPE,
        confidence=1.0 if confidence is None else confidence,
        created=datetime.now(timezone.utc),
        text_complexity=text_complexity(original),
        change_type=classify_change(original, replacement),
    )
