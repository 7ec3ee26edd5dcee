"""
CriticMarkup preview of live suggestions.
"""

from typing import List, Optional, Tuple

import structlog

from marginalia.document import Document, to_text
from marginalia.models import ConflictGroup, LiveItem
from marginalia.suggest.state import SuggestionState

logger = structlog.get_logger(__name__)


def _text_offset(doc: Document, pos: int) -> Optional[int]:
    """Offset of a tree position in to_text(doc), where blocks are joined by a blank line."""
    resolved = doc.resolve(pos)
    if resolved is None:
        return None
    block_index, offset = resolved
    return sum(len(b.text) for b in doc.blocks[:block_index]) + 2 * block_index + offset


def _build_critic_markup(target_text: str, new_text: str, meta: Optional[str], highlight_only: bool) -> str:
    """
    Generates CriticMarkup string for a single suggestion.
    """
    parts = []

    if highlight_only:
        parts.append(f"{{=={target_text}==}}")
    elif new_text:
        parts.append(f"{{--{target_text}--}}{{++{new_text}++}}")
    else:
        parts.append(f"{{--{target_text}--}}")

    if meta:
        parts.append(f"{{>>{meta}<<}}")

    return "".join(parts)


def _markup_for(item: LiveItem, target_text: str, include_ids: bool, highlight_only: bool) -> str:
    if isinstance(item, ConflictGroup):
        ids = ", ".join(m.id for m in item.members)
        return _build_critic_markup(target_text, "", f"conflict: {ids}", highlight_only=True)

    meta_parts = []
    if item.rationale:
        meta_parts.append(item.rationale)
    if include_ids:
        meta_parts.append(item.id)
    return _build_critic_markup(target_text, item.replacement, " ".join(meta_parts), highlight_only)


def render_markup(state: SuggestionState, include_ids: bool = True, highlight_only: bool = False) -> str:
    """
    Renders the document with every live suggestion inlined as CriticMarkup.

    Args:
        include_ids: If True, append each suggestion id as a {>>comment<<}.
        highlight_only: If True, mark targets with {==...==} without showing
                        the replacement.

    Conflict groups are always rendered as a highlight over their union span
    followed by the ids of the competing suggestions. Collapsed spans are
    omitted.
    """
    text = to_text(state.doc)
    spans: List[Tuple[int, int, LiveItem]] = []

    for item in state.items:
        if item.is_degenerate:
            continue
        start = _text_offset(state.doc, item.from_pos)
        end = _text_offset(state.doc, item.to_pos)
        if start is None or end is None:
            logger.warning(f"Skipping {item.id}: span does not resolve")
            continue
        spans.append((start, end, item))

    # Apply from end to start so earlier offsets stay valid
    spans.sort(key=lambda x: x[0], reverse=True)

    result = text
    for start, end, item in spans:
        markup = _markup_for(item, text[start:end], include_ids, highlight_only)
        result = result[:start] + markup + result[end:]

    return result
