import re
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from pydantic import ValidationError

from marginalia.config import MatchSettings
from marginalia.diagnostics import Diagnostics
from marginalia.identity import generate_fingerprint, generate_suggestion_id
from marginalia.models import (
    EngineIssue,
    IssueKind,
    Proposal,
    ReconcileMatch,
    ReconcileResult,
    Suggestion,
)
from marginalia.suggest.mapper import PositionMapper
from marginalia.suggest.matcher import ExternalSuggestion, SuggestionMatcher
from marginalia.suggest.state import SuggestionState
from marginalia.utils.text import normalize_text, normalize_with_map, positional_similarity

logger = structlog.get_logger(__name__)

_WORD = re.compile(r"\w[\w'-]*")

External = Union[Proposal, Suggestion, Dict[str, Any]]


class SuggestionReconciler:
    """
    Bulk resynchronization of an external suggestion list with live state.

    Each external item is first offered to the matcher. When no live
    suggestion is close enough, the item is recreated by locating its
    original text in the document. Live suggestions that no external item
    claims are reported as orphans and left in place.
    """

    def __init__(
        self,
        settings: Optional[MatchSettings] = None,
        diagnostics: Optional[Diagnostics] = None,
        matcher: Optional[SuggestionMatcher] = None,
    ):
        self.settings = settings or MatchSettings()
        self.diagnostics = diagnostics
        self.matcher = matcher or SuggestionMatcher(self.settings, diagnostics)

    def reconcile(self, state: SuggestionState, externals: Sequence[External]) -> ReconcileResult:
        live = state.suggestions
        mapper = PositionMapper(state.doc)
        result = ReconcileResult(external_total=len(externals), live_total=len(live))
        claimed = set()

        logger.info(f"Reconciling {len(externals)} external suggestions against {len(live)} live ones.")

        for index, item in enumerate(externals):
            try:
                ext = ExternalSuggestion.of(item)
            except ValidationError as e:
                result.errors.append(self._error(index, None, f"Invalid suggestion payload: {e.error_count()} errors"))
                continue

            match = self.matcher.find_match(ext, live)
            if match is not None:
                claimed.add(match.suggestion.id)
                result.matched.append(
                    ReconcileMatch(
                        external_index=index,
                        suggestion_id=match.suggestion.id,
                        confidence=match.confidence,
                        strategy=match.strategy,
                    )
                )
                continue

            result.unmatched.append(
                EngineIssue(
                    kind=IssueKind.MATCH_NOT_FOUND,
                    message="No live suggestion above the confidence threshold",
                    index=index,
                    suggestion_id=ext.id,
                )
            )
            recreated, reason = self.recreate(mapper, ext)
            if recreated is None:
                result.errors.append(self._error(index, ext.id, reason))
                continue

            result.recreated.append(recreated)
            self._emit("reconciler.recreated", index=index, suggestion_id=recreated.id)

        result.orphaned = [s for s in live if s.id not in claimed]
        if result.orphaned:
            logger.warning(f"Found {len(result.orphaned)} orphaned live suggestions.")

        logger.info("Reconciliation complete.", **result.stats())
        return result

    def _error(self, index: int, suggestion_id: Optional[str], reason: str) -> EngineIssue:
        logger.warning(f"Could not recreate suggestion #{index}: {reason}")
        self._emit("reconciler.recreation_failed", index=index, reason=reason)
        return EngineIssue(kind=IssueKind.RECREATION_FAILURE, message=reason, index=index, suggestion_id=suggestion_id)

    def _emit(self, event: str, **fields):
        if self.diagnostics is not None:
            self.diagnostics.on_event(event, **fields)

    # --- Recreation ---

    def recreate(self, mapper: PositionMapper, ext: ExternalSuggestion) -> Tuple[Optional[Suggestion], str]:
        """Returns (suggestion, "") on success or (None, reason)."""
        if not ext.original:
            return None, "Missing original text"

        span = self.locate(mapper.full_text, ext.original)
        if span is None:
            return None, f"Text not found in document: '{ext.original[:30]}...'"

        check = mapper.validate_range(*span)
        if not check.is_valid:
            return None, f"Located text at [{span[0]}, {span[1]}) does not map to the document"

        original = mapper.full_text[span[0] : span[1]]
        confidence = self.settings.recreated_confidence
        suggestion = Suggestion(
            id=generate_suggestion_id(original, ext.replacement, ext.edit_type, confidence),
            from_pos=check.start_pos,
            to_pos=check.end_pos,
            original=original,
            replacement=ext.replacement,
            edit_type=ext.edit_type,
            confidence=confidence,
            fingerprint=generate_fingerprint(original, ext.replacement),
            source_start=span[0],
            source_end=span[1],
        )
        logger.info(f"Recreated suggestion: '{original[:30]}' -> '{ext.replacement[:30]}'")
        return suggestion, ""

    def locate(self, text: str, search: str) -> Optional[Tuple[int, int]]:
        """
        Offsets of `search` in `text`, trying progressively looser searches:
        literal, normalized substring, significant-word sequence, then a
        sliding window for short texts.
        """
        idx = text.find(search)
        if idx != -1:
            return idx, idx + len(search)

        norm_text, index_map = normalize_with_map(text)
        norm_search = normalize_text(search)
        if not norm_search:
            return None

        idx = norm_text.find(norm_search)
        if idx != -1:
            return _to_raw(index_map, idx, idx + len(norm_search))

        span = self._word_sequence(norm_text, norm_search)
        if span is not None:
            return _to_raw(index_map, *span)

        if len(search) <= self.settings.sliding_window_limit:
            span = self._sliding_window(norm_text, norm_search)
            if span is not None:
                return _to_raw(index_map, *span)

        return None

    def _word_sequence(self, norm_text: str, norm_search: str) -> Optional[Tuple[int, int]]:
        min_length = self.settings.significant_word_length
        wanted = [w for w in _WORD.findall(norm_search) if len(w) > min_length]
        if len(wanted) < self.settings.min_significant_words:
            return None

        tokens = [m for m in _WORD.finditer(norm_text) if len(m.group()) > min_length]
        for i in range(len(tokens) - len(wanted) + 1):
            window = tokens[i : i + len(wanted)]
            if [m.group() for m in window] == wanted:
                return window[0].start(), window[-1].end()
        return None

    def _sliding_window(self, norm_text: str, norm_search: str) -> Optional[Tuple[int, int]]:
        size = len(norm_search)
        best = None
        best_similarity = 0.0
        for i in range(len(norm_text) - size + 1):
            similarity = positional_similarity(norm_search, norm_text[i : i + size])
            if similarity >= self.settings.recreation_similarity and similarity > best_similarity:
                best = (i, i + size)
                best_similarity = similarity
        return best


def _to_raw(index_map: List[int], start: int, end: int) -> Tuple[int, int]:
    """Projects a normalized [start, end) onto raw offsets."""
    return index_map[start], index_map[end - 1] + 1
