import json
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field


class MatchSettings(BaseModel):
    """Thresholds and ceilings used by the matcher and the reconciler."""

    confidence_threshold: float = Field(0.75, ge=0.0, le=1.0, description="Minimum confidence for a match.")
    early_stop_confidence: float = Field(0.95, ge=0.0, le=1.0, description="Stop evaluating once reached.")
    fuzzy_similarity: float = Field(0.8, ge=0.0, le=1.0, description="Minimum original-text similarity.")
    context_score: float = Field(0.6, ge=0.0, le=1.0, description="Minimum blended position-context score.")
    word_overlap_ratio: float = Field(0.7, ge=0.0, le=1.0, description="Minimum significant-word overlap.")
    min_significant_words: int = Field(2, ge=1)
    significant_word_length: int = Field(3, ge=0, description="Words must be longer than this.")

    # Recreation fallback
    recreation_similarity: float = Field(0.8, ge=0.0, le=1.0)
    sliding_window_limit: int = Field(50, ge=1, description="Longest text tried by the sliding window.")
    recreated_confidence: float = Field(0.8, ge=0.0, le=1.0)


class EngineSettings(BaseModel):
    matching: MatchSettings = Field(default_factory=MatchSettings)
    history_limit: int = Field(100, ge=0, description="Undo snapshots kept by the engine.")
    prune_degenerate: bool = Field(False, description="Drop collapsed spans on the next document change.")


def load_settings(path: Optional[Union[str, Path]] = None, threshold: Optional[float] = None) -> EngineSettings:
    """
    Reads EngineSettings from a JSON file (missing keys keep their defaults),
    then applies a confidence threshold override if given.
    """
    data = {}
    if path:
        data = json.loads(Path(path).read_text(encoding="utf-8"))

    if threshold is not None:
        data.setdefault("matching", {})["confidence_threshold"] = threshold
    return EngineSettings.model_validate(data)
