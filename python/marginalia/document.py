"""
Minimal block/inline document model.

A Document is an ordered tuple of blocks, each holding one run of inline text.
Tree positions follow the usual block/inline convention: every block occupies
len(text) + 2 positions (an opening token, its text, a closing token), so the
content of block i starts at block_start(i) + ENTRY_COST.

The flattened character view joins blocks with exactly one phantom character,
which is what external proposals count their offsets against.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

# Positions consumed by entering a block node before its first character.
ENTRY_COST = 1
# Positions consumed by a block node besides its text (open + close tokens).
NODE_OVERHEAD = 2

FLAT_SEPARATOR = "\n"
TEXT_SEPARATOR = "\n\n"

_BLANK_LINE = re.compile(r"\n[ \t]*\n\s*")


@dataclass(frozen=True)
class Block:
    text: str = ""
    kind: str = "paragraph"  # paragraph | heading

    @property
    def node_size(self) -> int:
        return len(self.text) + NODE_OVERHEAD


@dataclass(frozen=True)
class StepMap:
    """
    Position map for one replace step: the range [start, start + old_size)
    was replaced by new_size positions.
    """

    start: int
    old_size: int
    new_size: int

    def map(self, pos: int, assoc: int = 1) -> int:
        end = self.start + self.old_size
        if pos < self.start:
            return pos
        if pos > end:
            return pos + self.new_size - self.old_size
        if not self.old_size:
            side = assoc
        elif pos == self.start:
            side = -1
        elif pos == end:
            side = 1
        else:
            side = assoc
        return self.start + (0 if side < 0 else self.new_size)


@dataclass
class Mapping:
    """Composition of step maps, applied in order."""

    maps: List[StepMap] = field(default_factory=list)

    def append(self, step_map: StepMap):
        self.maps.append(step_map)

    def map(self, pos: int, assoc: int = 1) -> int:
        for step_map in self.maps:
            pos = step_map.map(pos, assoc)
        return pos

    def __len__(self) -> int:
        return len(self.maps)


@dataclass(frozen=True)
class Document:
    blocks: Tuple[Block, ...] = (Block(),)

    def __post_init__(self):
        if not self.blocks:
            object.__setattr__(self, "blocks", (Block(),))

    @property
    def content_size(self) -> int:
        return sum(b.node_size for b in self.blocks)

    def block_start(self, index: int) -> int:
        """Position of the opening token of block `index`."""
        return sum(b.node_size for b in self.blocks[:index])

    def flatten(self) -> str:
        return FLAT_SEPARATOR.join(b.text for b in self.blocks)

    def resolve(self, pos: int) -> Optional[Tuple[int, int]]:
        """
        Returns (block_index, offset_in_block) for a position inside block
        content, or None if pos sits on a node boundary or outside the doc.
        """
        if pos < 0:
            return None
        start = 0
        for index, block in enumerate(self.blocks):
            content_start = start + ENTRY_COST
            content_end = content_start + len(block.text)
            if content_start <= pos <= content_end:
                return index, pos - content_start
            start += block.node_size
        return None

    def text_between(self, from_pos: int, to_pos: int, block_separator: str = FLAT_SEPARATOR) -> str:
        """
        Text covered by [from_pos, to_pos). Block boundaries inside the range
        contribute one block_separator each. Unresolvable ends yield "".
        """
        start = self.resolve(from_pos)
        end = self.resolve(to_pos)
        if start is None or end is None or from_pos >= to_pos:
            return ""

        (b_from, o_from), (b_to, o_to) = start, end
        if b_from == b_to:
            return self.blocks[b_from].text[o_from:o_to]

        parts = [self.blocks[b_from].text[o_from:]]
        parts.extend(b.text for b in self.blocks[b_from + 1 : b_to])
        parts.append(self.blocks[b_to].text[:o_to])
        return block_separator.join(parts)

    def replace(self, from_pos: int, to_pos: int, text: str = "") -> Tuple["Document", StepMap]:
        """
        Replaces [from_pos, to_pos) with inline text. A range spanning several
        blocks merges them into the first one. Raises ValueError when an end
        does not resolve to block content; callers validate first.
        """
        start = self.resolve(from_pos)
        end = self.resolve(to_pos)
        if start is None or end is None or from_pos > to_pos:
            raise ValueError(f"Cannot replace unresolvable range [{from_pos}, {to_pos})")

        (b_from, o_from), (b_to, o_to) = start, end
        first = self.blocks[b_from]
        last = self.blocks[b_to]
        merged = Block(text=first.text[:o_from] + text + last.text[o_to:], kind=first.kind)

        blocks = self.blocks[:b_from] + (merged,) + self.blocks[b_to + 1 :]
        return Document(blocks=blocks), StepMap(from_pos, to_pos - from_pos, len(text))

    def __len__(self) -> int:
        return len(self.blocks)


def from_text(text) -> Document:
    """
    Parses plain text into blocks split on blank lines. Never throws:
    empty or non-textual input yields a document with one empty block.
    """
    if not isinstance(text, str) or not text.strip():
        return Document()

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    chunks = [c.strip("\n") for c in _BLANK_LINE.split(normalized)]
    blocks = tuple(Block(text=c) for c in chunks if c.strip())
    return Document(blocks=blocks or (Block(),))


def to_text(doc: Document) -> str:
    return TEXT_SEPARATOR.join(b.text for b in doc.blocks)
