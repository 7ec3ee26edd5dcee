import re
from typing import Dict, List, Tuple

import structlog
from diff_match_patch import diff_match_patch

from marginalia.models import Proposal

logger = structlog.get_logger(__name__)

_TRAILING_WORD = re.compile(r"\S+\s*$")
_LEADING_WORD = re.compile(r"^\s*\S+")


def proposals_from_revision(original_text: str, revised_text: str, edit_type: str = "Line") -> List[Proposal]:
    """
    Compares a manuscript with a revised copy and returns one Proposal per
    change, with start/end offsets into original_text.
    Uses word-level diffing so proposals cover whole words.

    Pure insertions have no span of their own, so they are anchored on the
    neighbouring word: "the cat" -> "the black cat" becomes
    "the " -> "the black ".
    """
    dmp = diff_match_patch()

    # 1. Word-Level Tokenization & Encoding
    chars1, chars2, token_array = _words_to_chars(original_text, revised_text)

    # 2. Compute Diff on the Encoded Strings
    diffs = dmp.diff_main(chars1, chars2, False)

    # 3. Semantic Cleanup
    dmp.diff_cleanupSemantic(diffs)

    # 4. Decode back to Text
    dmp.diff_charsToLines(diffs, token_array)

    proposals = []
    index = 0
    pending_delete = None  # (index, text)

    def emit(start: int, original: str, replacement: str, why: str):
        proposals.append(
            Proposal(
                original=original,
                replacement=replacement,
                edit_type=edit_type,
                start=start,
                end=start + len(original),
                rationale=why,
            )
        )

    for op, text in diffs:
        if op == 0:  # Equal
            if pending_delete:
                emit(pending_delete[0], pending_delete[1], "", "Text deleted")
                pending_delete = None
            index += len(text)

        elif op == -1:  # Delete
            # Defer deletion to check for immediate insertion (Modification)
            pending_delete = (index, text)
            index += len(text)

        elif op == 1:  # Insert
            if pending_delete:
                emit(pending_delete[0], pending_delete[1], text, "Replacement")
                pending_delete = None
                continue

            anchor = _TRAILING_WORD.search(original_text[:index])
            if anchor:
                emit(anchor.start(), anchor.group(), anchor.group() + text, "Text inserted")
                continue

            # Start of document: anchor on the following word instead
            following = _LEADING_WORD.match(original_text[index:])
            if following:
                logger.info(f"Converting start-of-doc insert to modification of '{following.group()}'")
                emit(index, following.group(), text + following.group(), "Text inserted")
            else:
                logger.warning("Skipping insertion into an empty document: nothing to anchor on.")

    # Flush trailing delete
    if pending_delete:
        emit(pending_delete[0], pending_delete[1], "", "Text deleted")

    return proposals


def _words_to_chars(text1: str, text2: str) -> Tuple[str, str, List[str]]:
    """
    Splits text into words/tokens and encodes them as unique Unicode characters.
    """
    token_array: List[str] = []
    token_hash: Dict[str, int] = {}
    split_pattern = r"(\s+|\w+|[^\w\s])"

    def encode_text(text: str) -> str:
        tokens = [t for t in re.split(split_pattern, text) if t]
        encoded_chars = []
        for token in tokens:
            if token not in token_hash:
                token_hash[token] = len(token_array)
                token_array.append(token)
            encoded_chars.append(chr(token_hash[token]))
        return "".join(encoded_chars)

    chars1 = encode_text(text1)
    chars2 = encode_text(text2)
    return chars1, chars2, token_array
