"""
Confidence-scored correlation of an externally described suggestion with a
live one.

Strategies are tried in a fixed order, cheapest and most certain first. Each
is a (predicate, scorer) pair: the predicate decides whether the strategy has
anything to work with for this external item, the scorer rates one live
candidate. Evaluation stops as soon as a strategy reaches the early-stop
confidence; otherwise the best candidate seen wins if it clears the
threshold.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import structlog

from marginalia.config import MatchSettings
from marginalia.diagnostics import Diagnostics
from marginalia.identity import classify_change, generate_fingerprint, text_complexity
from marginalia.models import (
    DEFAULT_EDIT_TYPE,
    MatchingStats,
    MatchResult,
    Proposal,
    Suggestion,
)
from marginalia.suggest.state import iter_members
from marginalia.utils.text import normalize_text, significant_words, text_similarity, word_count

logger = structlog.get_logger(__name__)

Score = Optional[Tuple[float, str, Dict[str, Any]]]


@dataclass(frozen=True)
class ExternalSuggestion:
    """Content-only view of a suggestion held outside the engine."""

    id: Optional[str]
    original: str
    replacement: str
    edit_type: str = DEFAULT_EDIT_TYPE
    normalized_original: str = field(init=False)
    fingerprint: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "normalized_original", normalize_text(self.original))
        object.__setattr__(self, "fingerprint", generate_fingerprint(self.original, self.replacement))

    @classmethod
    def of(cls, item: Union[Proposal, Suggestion, Dict[str, Any]]) -> "ExternalSuggestion":
        if isinstance(item, Suggestion):
            return cls(item.id, item.original, item.replacement, item.edit_type)
        proposal = item if isinstance(item, Proposal) else Proposal.model_validate(item)
        return cls(proposal.id, proposal.original, proposal.replacement, proposal.edit_type)


@dataclass(frozen=True)
class MatchStrategy:
    name: str
    ceiling: float
    applies: Callable[[ExternalSuggestion, MatchSettings], bool]
    score: Callable[[ExternalSuggestion, Suggestion, MatchSettings], Score]


# --- Strategies ---


def _score_exact_id(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    if live.id != ext.id:
        return None
    return 0.99, "exact_id_match", {}


def _score_fingerprint(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    live_fingerprint = generate_fingerprint(live.original, live.replacement)
    if live_fingerprint != ext.fingerprint:
        return None
    return 0.95, "fingerprint_match", {"fingerprint": live_fingerprint}


def _score_normalized(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    if normalize_text(live.original) != ext.normalized_original:
        return None
    replacement_match = text_similarity(ext.replacement, live.replacement)
    confidence = 0.90 * (0.7 + 0.3 * replacement_match)
    return confidence, "normalized_text_match", {"original_match": 1.0, "replacement_match": replacement_match}


def _score_fuzzy(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    if not normalize_text(live.original):
        return None
    similarity = text_similarity(ext.original, live.original)
    if similarity < settings.fuzzy_similarity:
        return None
    replacement_similarity = text_similarity(ext.replacement, live.replacement)
    confidence = 0.85 * (0.8 * similarity + 0.2 * replacement_similarity)
    return (
        confidence,
        "fuzzy_text_match",
        {"original_similarity": similarity, "replacement_similarity": replacement_similarity},
    )


def _ratio(a: int, b: int) -> float:
    longest = max(a, b)
    return 1.0 if longest == 0 else 1 - abs(a - b) / longest


def _score_context(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    length_similarity = _ratio(len(ext.original), len(live.original))
    word_similarity = _ratio(word_count(ext.original), word_count(live.original))
    similarity = text_similarity(ext.original, live.original)

    combined = 0.3 * length_similarity + 0.3 * word_similarity + 0.4 * similarity
    if combined < settings.context_score:
        return None
    return (
        0.70 * combined,
        "position_context_match",
        {
            "length_similarity": length_similarity,
            "word_similarity": word_similarity,
            "text_similarity": similarity,
            "change_type": classify_change(live.original, live.replacement),
            "complexity": text_complexity(live.original),
        },
    )


def _partial_applies(ext: ExternalSuggestion, settings: MatchSettings) -> bool:
    words = significant_words(ext.original, settings.significant_word_length)
    return len(ext.original) >= 10 and len(words) >= settings.min_significant_words


def _score_partial(ext: ExternalSuggestion, live: Suggestion, settings: MatchSettings) -> Score:
    ext_words = significant_words(ext.original, settings.significant_word_length)
    live_words = significant_words(live.original, settings.significant_word_length)
    if len(live_words) < settings.min_significant_words:
        return None

    shared = [w for w in ext_words if w in live_words]
    ratio = len(shared) / min(len(ext_words), len(live_words))
    if ratio < settings.word_overlap_ratio:
        return None
    return 0.60 * min(ratio, 1.0), "partial_word_match", {"overlap_ratio": ratio, "shared_words": shared}


def _has_id(ext: ExternalSuggestion, settings: MatchSettings) -> bool:
    return bool(ext.id)


def _has_original(ext: ExternalSuggestion, settings: MatchSettings) -> bool:
    return bool(ext.normalized_original)


DEFAULT_STRATEGIES: Tuple[MatchStrategy, ...] = (
    MatchStrategy("exact_id", 0.99, _has_id, _score_exact_id),
    MatchStrategy("content_fingerprint", 0.95, _has_original, _score_fingerprint),
    MatchStrategy("normalized_text", 0.90, _has_original, _score_normalized),
    MatchStrategy("fuzzy_text", 0.85, _has_original, _score_fuzzy),
    MatchStrategy("position_context", 0.70, _has_original, _score_context),
    MatchStrategy("partial_match", 0.60, _partial_applies, _score_partial),
)


class SuggestionMatcher:
    def __init__(
        self,
        settings: Optional[MatchSettings] = None,
        diagnostics: Optional[Diagnostics] = None,
        strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
    ):
        self.settings = settings or MatchSettings()
        self.diagnostics = diagnostics
        self.strategies = list(strategies)

    def _best_for(self, strategy: MatchStrategy, ext: ExternalSuggestion, live: Sequence[Suggestion]):
        best = None
        for candidate in live:
            scored = strategy.score(ext, candidate, self.settings)
            if scored is None:
                continue
            confidence = min(scored[0], strategy.ceiling)
            if best is None or confidence > best[0]:
                best = (confidence, candidate, scored[1], scored[2])
        return best

    def find_match(
        self,
        external: Union[Proposal, Suggestion, Dict[str, Any], ExternalSuggestion],
        live: Iterable[Suggestion],
    ) -> Optional[MatchResult]:
        """
        Best live counterpart of `external`, or None when nothing reaches the
        confidence threshold. Conflict groups in `live` are searched member
        by member.
        """
        candidates = list(iter_members(live))
        if not candidates:
            return None
        ext = external if isinstance(external, ExternalSuggestion) else ExternalSuggestion.of(external)

        best = None
        best_strategy = None
        for strategy in self.strategies:
            if not strategy.applies(ext, self.settings):
                continue
            top = self._best_for(strategy, ext, candidates)
            if top is None:
                continue

            logger.debug(f"Strategy '{strategy.name}' best confidence {top[0]:.3f}")
            if best is None or top[0] > best[0]:
                best = top
                best_strategy = strategy.name
            if top[0] >= self.settings.early_stop_confidence:
                break

        if best is None or best[0] < self.settings.confidence_threshold:
            logger.debug(
                f"No reliable match for '{ext.original[:30]}'",
                best_confidence=round(best[0], 3) if best else 0.0,
            )
            self._emit("matcher.no_match", external_id=ext.id, best_confidence=best[0] if best else 0.0)
            return None

        confidence, suggestion, reason, metadata = best
        self._emit("matcher.match", external_id=ext.id, suggestion_id=suggestion.id, strategy=best_strategy)
        return MatchResult(
            suggestion=suggestion,
            confidence=confidence,
            strategy=best_strategy,
            reason=reason,
            metadata=metadata,
        )

    def matching_stats(
        self,
        externals: Sequence[Union[Proposal, Suggestion, Dict[str, Any]]],
        live: Iterable[Suggestion],
    ) -> MatchingStats:
        live = list(iter_members(live))
        stats = MatchingStats(total_external=len(externals), total_live=len(live))
        total_confidence = 0.0

        for external in externals:
            match = self.find_match(external, live)
            if match is None:
                stats.unmatched += 1
                continue
            stats.matched += 1
            stats.strategies[match.strategy] = stats.strategies.get(match.strategy, 0) + 1
            total_confidence += match.confidence
            if match.confidence >= 0.9:
                stats.distribution["high"] += 1
            elif match.confidence >= 0.7:
                stats.distribution["medium"] += 1
            else:
                stats.distribution["low"] += 1

        stats.average_confidence = total_confidence / stats.matched if stats.matched else 0.0
        stats.match_rate = stats.matched / stats.total_external if stats.total_external else 0.0
        return stats

    def _emit(self, event: str, **fields):
        if self.diagnostics is not None:
            self.diagnostics.on_event(event, **fields)
