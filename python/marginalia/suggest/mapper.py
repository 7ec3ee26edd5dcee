import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple

import structlog

from marginalia.document import ENTRY_COST, Document
from marginalia.utils.text import make_fuzzy_regex, replace_smart_quotes

logger = structlog.get_logger(__name__)

_WORD_CHAR = re.compile(r"[\w'’-]")


@dataclass
class TextSpan:
    start: int
    end: int
    text: str
    block_index: int
    position: int  # tree position of the first character


class RangeValidation(NamedTuple):
    is_valid: bool
    start_pos: Optional[int]
    end_pos: Optional[int]


class PositionSpan(NamedTuple):
    from_pos: int
    to_pos: int
    start: int
    end: int


def _check_int(value, name: str):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")


class PositionMapper:
    """
    Converts between flattened character offsets and tree positions of a
    Document. The flattened text is the blocks joined by one phantom
    character, so block i covers offsets [span.start, span.end] and the
    next block starts at span.end + 1.
    """

    def __init__(self, doc: Document, entry_cost: int = ENTRY_COST):
        self.doc = doc
        self.entry_cost = entry_cost
        self.full_text = ""
        self.spans: List[TextSpan] = []
        self._starts: List[int] = []
        self._build_map()

    def _build_map(self):
        offset = 0
        self.spans = []
        for index, block in enumerate(self.doc.blocks):
            self.spans.append(
                TextSpan(
                    start=offset,
                    end=offset + len(block.text),
                    text=block.text,
                    block_index=index,
                    position=self.doc.block_start(index) + self.entry_cost,
                )
            )
            offset += len(block.text) + 1
        self._starts = [s.start for s in self.spans]
        self.full_text = self.doc.flatten()

    def _span_at_offset(self, offset: int) -> TextSpan:
        return self.spans[bisect_right(self._starts, offset) - 1]

    def offset_to_position(self, offset: int, clamp: bool = False) -> Optional[int]:
        _check_int(offset, "offset")
        if offset < 0 or offset > len(self.full_text):
            if not clamp:
                return None
            offset = max(0, min(offset, len(self.full_text)))

        span = self._span_at_offset(offset)
        return span.position + (offset - span.start)

    def position_to_offset(self, pos: int) -> Optional[int]:
        _check_int(pos, "pos")
        for span in self.spans:
            if span.position <= pos <= span.position + len(span.text):
                return span.start + (pos - span.position)
        return None

    def validate_range(self, start: int, end: int) -> RangeValidation:
        start_pos = self.offset_to_position(start)
        end_pos = self.offset_to_position(end)
        is_valid = start_pos is not None and end_pos is not None and start_pos < end_pos
        return RangeValidation(is_valid, start_pos, end_pos)

    def find_all_occurrences(self, text: str) -> List[PositionSpan]:
        """Left-to-right, non-overlapping literal hits of `text`."""
        if not text:
            return []

        hits = []
        idx = self.full_text.find(text)
        while idx != -1:
            hits.append(
                PositionSpan(
                    self.offset_to_position(idx),
                    self.offset_to_position(idx + len(text)),
                    idx,
                    idx + len(text),
                )
            )
            idx = self.full_text.find(text, idx + len(text))
        return hits

    def find_match_index(self, target_text: str) -> Tuple[int, int]:
        """
        Returns (start_index, match_length).
        Returns (-1, 0) if not found.
        """
        if not target_text:
            return -1, 0

        # 1. Exact Match
        start_idx = self.full_text.find(target_text)
        if start_idx != -1:
            return start_idx, len(target_text)

        # 2. Smart Quote Normalization
        norm_full = replace_smart_quotes(self.full_text)
        norm_target = replace_smart_quotes(target_text)
        start_idx = norm_full.find(norm_target)
        if start_idx != -1:
            # Quote replacement is 1:1, length matches target_text
            return start_idx, len(target_text)

        # 3. Fuzzy Regex Match
        try:
            match = re.search(make_fuzzy_regex(target_text), self.full_text)
        except re.error:
            logger.debug(f"Fuzzy pattern rejected for '{target_text[:20]}...'")
            return -1, 0
        if match and match.end() > match.start():
            return match.start(), match.end() - match.start()

        return -1, 0

    def get_word_boundaries(self, pos: int) -> Optional[PositionSpan]:
        """Expands a position to the word around it. None if pos is not inside text."""
        offset = self.position_to_offset(pos)
        if offset is None:
            return None

        span = self._span_at_offset(offset)
        local = offset - span.start
        left = local
        while left > 0 and _WORD_CHAR.match(span.text[left - 1]):
            left -= 1
        right = local
        while right < len(span.text) and _WORD_CHAR.match(span.text[right]):
            right += 1

        return PositionSpan(
            span.position + left,
            span.position + right,
            span.start + left,
            span.start + right,
        )

    def get_paragraph_boundaries(self, pos: int) -> Optional[PositionSpan]:
        offset = self.position_to_offset(pos)
        if offset is None:
            return None

        span = self._span_at_offset(offset)
        return PositionSpan(span.position, span.position + len(span.text), span.start, span.end)

    def text_at(self, from_pos: int, to_pos: int) -> str:
        start = self.position_to_offset(from_pos)
        end = self.position_to_offset(to_pos)
        if start is None or end is None or start >= end:
            return ""
        return self.full_text[start:end]
