from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_EDIT_TYPE = "Line"
CONFLICT_EDIT_TYPE = "Conflict"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REVISED = "revised"


class IssueKind(str, Enum):
    """Data-quality conditions the engine reports instead of raising."""

    POSITION_RESOLUTION_FAILURE = "position_resolution_failure"
    INVALID_RANGE = "invalid_range"
    UNKNOWN_SUGGESTION_ID = "unknown_suggestion_id"
    MATCH_NOT_FOUND = "match_not_found"
    RECREATION_FAILURE = "recreation_failure"


class Proposal(BaseModel):
    """
    A proposed edit as produced upstream (AI editorial service, diff, JSON file).
    Field names vary between producers; this model is the one place where
    they are folded into a canonical record.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    original: str = Field("", validation_alias=AliasChoices("original", "target_text"))
    replacement: str = Field("", validation_alias=AliasChoices("replacement", "suggestion", "new_text"))
    edit_type: str = Field(DEFAULT_EDIT_TYPE, validation_alias=AliasChoices("edit_type", "editType"))

    # Flattened character offsets (half-open)
    start: Optional[int] = None
    end: Optional[int] = None

    # Already-resolved tree positions (half-open)
    from_pos: Optional[int] = Field(None, validation_alias=AliasChoices("from_pos", "from"))
    to_pos: Optional[int] = Field(None, validation_alias=AliasChoices("to_pos", "to"))

    confidence: float = 1.0
    rationale: Optional[str] = Field(None, validation_alias=AliasChoices("rationale", "why", "comment"))

    @field_validator("original", "replacement", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    @field_validator("edit_type", mode="before")
    @classmethod
    def _default_edit_type(cls, value):
        return value or DEFAULT_EDIT_TYPE

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return 1.0
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(0.0, min(1.0, float(value)))
        return value

    @property
    def has_positions(self) -> bool:
        return self.from_pos is not None and self.to_pos is not None

    @property
    def has_offsets(self) -> bool:
        return self.start is not None and self.end is not None

    def to_payload(self) -> Dict[str, Any]:
        """Upstream wire shape ({original, suggestion, editType, start, end})."""
        payload: Dict[str, Any] = {
            "original": self.original,
            "suggestion": self.replacement,
            "editType": self.edit_type,
        }
        if self.id:
            payload["id"] = self.id
        if self.has_offsets:
            payload["start"] = self.start
            payload["end"] = self.end
        if self.rationale:
            payload["why"] = self.rationale
        return payload


class Suggestion(BaseModel):
    """A live suggestion anchored to tree positions [from_pos, to_pos)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    from_pos: int = Field(alias="from")
    to_pos: int = Field(alias="to")
    original: str
    replacement: str = ""
    edit_type: str = Field(DEFAULT_EDIT_TYPE, alias="editType")
    status: SuggestionStatus = SuggestionStatus.PENDING
    confidence: float = 1.0
    fingerprint: str = ""
    source_start: Optional[int] = None
    source_end: Optional[int] = None
    rationale: Optional[str] = None

    @property
    def is_conflict_group(self) -> bool:
        return False

    @property
    def is_degenerate(self) -> bool:
        return self.from_pos >= self.to_pos

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING


class ConflictGroup(BaseModel):
    """Two or more overlapping pending suggestions offered as one choice."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    from_pos: int = Field(alias="from")
    to_pos: int = Field(alias="to")
    members: Tuple[Suggestion, ...] = Field(min_length=2)
    edit_type: str = Field(CONFLICT_EDIT_TYPE, alias="editType")

    @property
    def is_conflict_group(self) -> bool:
        return True

    @property
    def is_degenerate(self) -> bool:
        return self.from_pos >= self.to_pos

    def member(self, suggestion_id: str) -> Optional[Suggestion]:
        return next((m for m in self.members if m.id == suggestion_id), None)

    def contains(self, suggestion_id: str) -> bool:
        return self.member(suggestion_id) is not None


LiveItem = Union[Suggestion, ConflictGroup]


class Decoration(BaseModel):
    """Renderable highlight derived from exactly one live suggestion or group."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_pos: int = Field(alias="from")
    to_pos: int = Field(alias="to")
    css_class: str = Field(alias="class")
    attributes: Dict[str, str] = Field(default_factory=dict)

    @property
    def suggestion_id(self) -> Optional[str]:
        return self.attributes.get("data-suggestion-id")

    @property
    def conflict_group_id(self) -> Optional[str]:
        return self.attributes.get("data-conflict-group-id")


class AcceptedSuggestion(BaseModel):
    """Log entry written when a suggestion is applied to the document."""

    model_config = ConfigDict(frozen=True)

    suggestion: Suggestion
    group_id: Optional[str] = None
    discarded: Tuple[str, ...] = ()
    accepted_at: datetime


class MatchResult(BaseModel):
    suggestion: Suggestion
    confidence: float = Field(ge=0.0, le=1.0)
    strategy: str
    reason: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EngineIssue(BaseModel):
    kind: IssueKind
    message: str
    index: Optional[int] = None
    suggestion_id: Optional[str] = None


class ReconcileMatch(BaseModel):
    external_index: int
    suggestion_id: str
    confidence: float
    strategy: str


class ReconcileResult(BaseModel):
    matched: List[ReconcileMatch] = Field(default_factory=list)
    recreated: List[Suggestion] = Field(default_factory=list)
    orphaned: List[Suggestion] = Field(default_factory=list)
    # Items the matcher could not place; each was then tried for recreation.
    unmatched: List[EngineIssue] = Field(default_factory=list)
    errors: List[EngineIssue] = Field(default_factory=list)
    external_total: int = 0
    live_total: int = 0

    def stats(self) -> Dict[str, Any]:
        resolved = len(self.matched) + len(self.recreated)
        return {
            "external_total": self.external_total,
            "live_total": self.live_total,
            "matched": len(self.matched),
            "recreated": len(self.recreated),
            "orphaned": len(self.orphaned),
            "errors": len(self.errors),
            "success_rate": resolved / self.external_total if self.external_total else 0.0,
        }

    def report(self) -> str:
        stats = self.stats()
        lines = [
            "Reconciliation report",
            f"  external suggestions: {stats['external_total']}",
            f"  live suggestions:     {stats['live_total']}",
            f"  matched:              {stats['matched']}",
            f"  recreated:            {stats['recreated']}",
            f"  orphaned:             {stats['orphaned']}",
            f"  errors:               {stats['errors']}",
            f"  success rate:         {stats['success_rate']:.0%}",
        ]
        for match in self.matched:
            lines.append(
                f"  [matched]   #{match.external_index} -> {match.suggestion_id}"
                f" ({match.strategy}, {match.confidence:.0%})"
            )
        for suggestion in self.recreated:
            lines.append(f"  [recreated] {suggestion.id} '{suggestion.original[:40]}'")
        for suggestion in self.orphaned:
            lines.append(f"  [orphaned]  {suggestion.id} '{suggestion.original[:40]}'")
        for error in self.errors:
            lines.append(f"  [error]     #{error.index}: {error.message}")
        return "\n".join(lines)


class MatchingStats(BaseModel):
    total_external: int = 0
    total_live: int = 0
    matched: int = 0
    unmatched: int = 0
    strategies: Dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0
    match_rate: float = 0.0
    distribution: Dict[str, int] = Field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})


class ParsedSuggestionId(BaseModel):
    valid: bool
    content_hash: Optional[str] = None
    context_hash: Optional[str] = None
    suffix: Optional[str] = None


class SuggestionMetadata(BaseModel):
    fingerprint: str
    normalized_original: str
    original_length: int
    replacement_length: int
    edit_type: str = DEFAULT_EDIT_TYPE
    confidence: float = 1.0
    created: datetime
    text_complexity: float
    change_type: str
