"""
The suggestion state machine.

A SuggestionState is an immutable value. The only way to get a new one is
state.apply(transaction): the transaction carries the document steps (and
their position mapping) plus at most one SuggestionAction. Every transition
rebuilds the decoration set from scratch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import structlog

from marginalia.config import EngineSettings
from marginalia.diagnostics import Diagnostics
from marginalia.document import Document, Mapping
from marginalia.identity import generate_fingerprint, generate_suggestion_id
from marginalia.models import (
    AcceptedSuggestion,
    ConflictGroup,
    Decoration,
    EngineIssue,
    IssueKind,
    LiveItem,
    Proposal,
    Suggestion,
)
from marginalia.suggest.decorations import build_decorations
from marginalia.suggest.grouper import group_overlaps
from marginalia.suggest.mapper import PositionMapper

logger = structlog.get_logger(__name__)

META_KEY = "suggestions"


class ActionType(str, Enum):
    SET = "set"
    ADD = "add"
    ACCEPT = "accept"
    REVISE = "revise"
    CLEAR = "clear"


@dataclass(frozen=True)
class SuggestionAction:
    type: ActionType
    proposals: Tuple[Union[Proposal, Dict[str, Any]], ...] = ()
    suggestions: Tuple[Suggestion, ...] = ()
    suggestion_id: Optional[str] = None
    replacement: Optional[str] = None

    @classmethod
    def set(cls, proposals: Iterable[Union[Proposal, Dict[str, Any]]]) -> "SuggestionAction":
        return cls(ActionType.SET, proposals=tuple(proposals))

    @classmethod
    def add(cls, suggestions: Iterable[Suggestion]) -> "SuggestionAction":
        return cls(ActionType.ADD, suggestions=tuple(suggestions))

    @classmethod
    def accept(cls, suggestion_id: str) -> "SuggestionAction":
        return cls(ActionType.ACCEPT, suggestion_id=suggestion_id)

    @classmethod
    def revise(cls, suggestion_id: str, replacement: str) -> "SuggestionAction":
        return cls(ActionType.REVISE, suggestion_id=suggestion_id, replacement=replacement)

    @classmethod
    def clear(cls) -> "SuggestionAction":
        return cls(ActionType.CLEAR)


class Transaction:
    """Accumulates replace steps against a document, plus metadata."""

    def __init__(self, doc: Document):
        self.before = doc
        self.doc = doc
        self.mapping = Mapping()
        self._meta: Dict[str, Any] = {}

    def replace(self, from_pos: int, to_pos: int, text: str = "") -> "Transaction":
        self.doc, step_map = self.doc.replace(from_pos, to_pos, text)
        self.mapping.append(step_map)
        return self

    def insert_text(self, pos: int, text: str) -> "Transaction":
        return self.replace(pos, pos, text)

    def delete(self, from_pos: int, to_pos: int) -> "Transaction":
        return self.replace(from_pos, to_pos, "")

    def set_meta(self, key: str, value: Any) -> "Transaction":
        self._meta[key] = value
        return self

    def get_meta(self, key: str, default: Any = None) -> Any:
        return self._meta.get(key, default)

    @property
    def doc_changed(self) -> bool:
        return len(self.mapping) > 0


def iter_members(items: Iterable[LiveItem]) -> Iterable[Suggestion]:
    for item in items:
        if isinstance(item, ConflictGroup):
            yield from item.members
        else:
            yield item


def regroup(suggestions: Sequence[Suggestion]) -> Tuple[LiveItem, ...]:
    """Groups the live spans; collapsed ones stay standalone at the end."""
    live = [s for s in suggestions if not s.is_degenerate]
    collapsed = [s for s in suggestions if s.is_degenerate]
    return tuple(group_overlaps(live)) + tuple(collapsed)


@dataclass(frozen=True)
class SuggestionState:
    doc: Document
    items: Tuple[LiveItem, ...] = ()
    decorations: Tuple[Decoration, ...] = ()
    accepted: Tuple[AcceptedSuggestion, ...] = ()
    issues: Tuple[EngineIssue, ...] = ()
    settings: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def create(cls, doc: Document, settings: Optional[EngineSettings] = None) -> "SuggestionState":
        return cls(doc=doc, settings=settings or EngineSettings())

    # --- Accessors ---

    @property
    def suggestions(self) -> List[Suggestion]:
        return list(iter_members(self.items))

    @property
    def groups(self) -> List[ConflictGroup]:
        return [item for item in self.items if isinstance(item, ConflictGroup)]

    def find(self, suggestion_id: str) -> Optional[Suggestion]:
        return next((s for s in iter_members(self.items) if s.id == suggestion_id), None)

    def group_of(self, suggestion_id: str) -> Optional[ConflictGroup]:
        return next((g for g in self.groups if g.contains(suggestion_id)), None)

    def find_item(self, item_id: str) -> Optional[LiveItem]:
        """Looks up a standalone suggestion, a group member or a group by id."""
        for item in self.items:
            if item.id == item_id:
                return item
        return self.find(item_id)

    def pending(self) -> List[Suggestion]:
        return [s for s in iter_members(self.items) if s.is_pending and not s.is_degenerate]

    def degenerate(self) -> List[Suggestion]:
        """Suggestions whose span collapsed under an edit. They render nothing."""
        return [s for s in iter_members(self.items) if s.is_degenerate]

    def accept_transaction(self, suggestion_id: str) -> Optional[Transaction]:
        """
        Builds the transaction that applies a suggestion: its span replaced by
        the replacement text (a deletion when that is empty) and the accept
        action attached. None if the id is not live or its span collapsed.
        """
        suggestion = self.find(suggestion_id)
        if suggestion is None or suggestion.is_degenerate:
            return None
        tr = Transaction(self.doc)
        tr.replace(suggestion.from_pos, suggestion.to_pos, suggestion.replacement)
        return tr.set_meta(META_KEY, SuggestionAction.accept(suggestion_id))

    # --- Transition ---

    def apply(self, tr: Transaction, diagnostics: Optional[Diagnostics] = None) -> "SuggestionState":
        action: Optional[SuggestionAction] = tr.get_meta(META_KEY)
        doc = tr.doc
        suggestions = self.suggestions
        accepted = self.accepted
        issues: List[EngineIssue] = []

        if action is not None and action.type == ActionType.ACCEPT:
            suggestions, record = self._take_accepted(action.suggestion_id, issues)
            if record is not None:
                accepted = accepted + (record,)

        if tr.doc_changed:
            suggestions = self._map_suggestions(suggestions, tr.mapping, doc)

        if action is not None:
            if action.type == ActionType.SET:
                suggestions = _ingest(doc, action.proposals, issues)
            elif action.type == ActionType.ADD:
                suggestions = _merge(doc, suggestions, action.suggestions)
            elif action.type == ActionType.REVISE:
                suggestions = _revise(suggestions, action.suggestion_id, action.replacement, issues)
            elif action.type == ActionType.CLEAR:
                suggestions = []

        items = regroup(suggestions)
        new_state = SuggestionState(
            doc=doc,
            items=items,
            decorations=tuple(build_decorations(items)),
            accepted=accepted,
            issues=tuple(issues),
            settings=self.settings,
        )

        if diagnostics is not None:
            diagnostics.on_event(
                "state.apply",
                action=action.type.value if action else None,
                doc_changed=tr.doc_changed,
                items=len(new_state.items),
                suggestions=len(suggestions),
                decorations=len(new_state.decorations),
                issues=[i.kind.value for i in issues],
            )
        return new_state

    def _take_accepted(
        self, suggestion_id: Optional[str], issues: List[EngineIssue]
    ) -> Tuple[List[Suggestion], Optional[AcceptedSuggestion]]:
        suggestion = self.find(suggestion_id) if suggestion_id else None
        if suggestion is None:
            logger.warning(f"Accept ignored: suggestion '{suggestion_id}' is not live.")
            issues.append(
                EngineIssue(
                    kind=IssueKind.UNKNOWN_SUGGESTION_ID,
                    message="Suggestion is not live",
                    suggestion_id=suggestion_id,
                )
            )
            return self.suggestions, None

        group = self.group_of(suggestion_id)
        removed = {m.id for m in group.members} if group else {suggestion_id}
        record = AcceptedSuggestion(
            suggestion=suggestion,
            group_id=group.id if group else None,
            discarded=tuple(sorted(removed - {suggestion_id})),
            accepted_at=datetime.now(timezone.utc),
        )
        remaining = [s for s in self.suggestions if s.id not in removed]
        return remaining, record

    def _map_suggestions(self, suggestions: List[Suggestion], mapping: Mapping, doc: Document) -> List[Suggestion]:
        mapped = []
        for suggestion in suggestions:
            # Text typed at either edge stays outside the span.
            from_pos = mapping.map(suggestion.from_pos, 1)
            to_pos = mapping.map(suggestion.to_pos, -1)
            update: Dict[str, Any] = {"from_pos": from_pos, "to_pos": to_pos}

            if from_pos < to_pos:
                original = doc.text_between(from_pos, to_pos)
                if original:
                    update["original"] = original
                    update["fingerprint"] = generate_fingerprint(original, suggestion.replacement)
            elif self.settings.prune_degenerate:
                logger.info(f"Dropping collapsed suggestion {suggestion.id}")
                continue

            mapped.append(suggestion.model_copy(update=update))
        return mapped


def _issue(kind: IssueKind, message: str, index: int, suggestion_id: Optional[str] = None) -> EngineIssue:
    logger.warning(f"Skipping suggestion #{index}: {message}", kind=kind.value)
    return EngineIssue(kind=kind, message=message, index=index, suggestion_id=suggestion_id)


def resolve_span(
    mapper: PositionMapper, proposal: Proposal, index: int, issues: List[EngineIssue]
) -> Optional[Tuple[int, int]]:
    """
    Finds the tree span a proposal targets: explicit positions first, then
    character offsets, then a literal search for the original text (the hit
    nearest to a start hint if one was given), then a tolerant search.
    """
    if proposal.has_positions:
        from_pos, to_pos = proposal.from_pos, proposal.to_pos
        if mapper.position_to_offset(from_pos) is None or mapper.position_to_offset(to_pos) is None:
            issues.append(
                _issue(IssueKind.POSITION_RESOLUTION_FAILURE, f"positions [{from_pos}, {to_pos}) do not resolve", index)
            )
            return None
        if from_pos >= to_pos:
            issues.append(_issue(IssueKind.INVALID_RANGE, f"empty range [{from_pos}, {to_pos})", index))
            return None
        return from_pos, to_pos

    if proposal.has_offsets:
        check = mapper.validate_range(proposal.start, proposal.end)
        if check.start_pos is None or check.end_pos is None:
            issues.append(
                _issue(
                    IssueKind.POSITION_RESOLUTION_FAILURE,
                    f"offsets [{proposal.start}, {proposal.end}) are outside the document",
                    index,
                )
            )
            return None
        if not check.is_valid:
            issues.append(_issue(IssueKind.INVALID_RANGE, f"empty range [{proposal.start}, {proposal.end})", index))
            return None
        return check.start_pos, check.end_pos

    if not proposal.original:
        issues.append(_issue(IssueKind.POSITION_RESOLUTION_FAILURE, "no offsets and no original text", index))
        return None

    hits = mapper.find_all_occurrences(proposal.original)
    if hits:
        hint = proposal.start
        hit = hits[0] if hint is None else min(hits, key=lambda h: abs(h.start - hint))
        return hit.from_pos, hit.to_pos

    start_idx, length = mapper.find_match_index(proposal.original)
    if start_idx != -1:
        logger.info(f"Matched suggestion #{index} with tolerant search.")
        check = mapper.validate_range(start_idx, start_idx + length)
        if check.is_valid:
            return check.start_pos, check.end_pos

    issues.append(
        _issue(
            IssueKind.POSITION_RESOLUTION_FAILURE,
            f"target '{proposal.original[:20]}...' not found",
            index,
        )
    )
    return None


def _ingest(
    doc: Document, raw: Sequence[Union[Proposal, Dict[str, Any]]], issues: List[EngineIssue]
) -> List[Suggestion]:
    mapper = PositionMapper(doc)
    seen_ids = set()
    suggestions = []

    for index, item in enumerate(raw):
        proposal = item if isinstance(item, Proposal) else Proposal.model_validate(item)
        span = resolve_span(mapper, proposal, index, issues)
        if span is None:
            continue

        from_pos, to_pos = span
        # The document is authoritative for the target text.
        original = doc.text_between(from_pos, to_pos)
        suggestion_id = proposal.id
        if not suggestion_id or suggestion_id in seen_ids:
            suggestion_id = generate_suggestion_id(
                original, proposal.replacement, proposal.edit_type, proposal.confidence
            )
        seen_ids.add(suggestion_id)

        suggestions.append(
            Suggestion(
                id=suggestion_id,
                from_pos=from_pos,
                to_pos=to_pos,
                original=original,
                replacement=proposal.replacement,
                edit_type=proposal.edit_type,
                confidence=proposal.confidence,
                fingerprint=generate_fingerprint(original, proposal.replacement),
                source_start=mapper.position_to_offset(from_pos),
                source_end=mapper.position_to_offset(to_pos),
                rationale=proposal.rationale,
            )
        )

    logger.debug(f"Ingested {len(suggestions)} of {len(raw)} proposals.")
    return suggestions


def _merge(doc: Document, current: List[Suggestion], incoming: Sequence[Suggestion]) -> List[Suggestion]:
    live_ids = {s.id for s in current}
    merged = list(current)
    for suggestion in incoming:
        if suggestion.id in live_ids:
            logger.warning(f"Suggestion {suggestion.id} is already live, not added again.")
            continue
        original = doc.text_between(suggestion.from_pos, suggestion.to_pos)
        if not original:
            logger.warning(f"Suggestion {suggestion.id} does not resolve in this document, not added.")
            continue
        live_ids.add(suggestion.id)
        merged.append(
            suggestion.model_copy(
                update={
                    "original": original,
                    "fingerprint": generate_fingerprint(original, suggestion.replacement),
                }
            )
        )
    return merged


def _revise(
    suggestions: List[Suggestion],
    suggestion_id: Optional[str],
    replacement: Optional[str],
    issues: List[EngineIssue],
) -> List[Suggestion]:
    if not any(s.id == suggestion_id for s in suggestions):
        logger.warning(f"Revise ignored: suggestion '{suggestion_id}' is not live.")
        issues.append(
            EngineIssue(
                kind=IssueKind.UNKNOWN_SUGGESTION_ID,
                message="Suggestion is not live",
                suggestion_id=suggestion_id,
            )
        )
        return suggestions

    replacement = replacement or ""
    return [
        s.model_copy(update={"replacement": replacement, "fingerprint": generate_fingerprint(s.original, replacement)})
        if s.id == suggestion_id
        else s
        for s in suggestions
    ]
