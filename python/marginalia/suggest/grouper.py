import hashlib
from typing import List, Sequence

import structlog

from marginalia.models import ConflictGroup, LiveItem, Suggestion

logger = structlog.get_logger(__name__)


def create_conflict_group(members: Sequence[Suggestion]) -> ConflictGroup:
    """Bundles overlapping suggestions; the group id depends only on span and members."""
    from_pos = min(m.from_pos for m in members)
    to_pos = max(m.to_pos for m in members)
    member_hash = hashlib.sha1("|".join(m.id for m in members).encode("utf-8")).hexdigest()[:8]
    return ConflictGroup(
        id=f"conflict_{from_pos}_{to_pos}_{member_hash}",
        from_pos=from_pos,
        to_pos=to_pos,
        members=tuple(members),
    )


def group_overlaps(suggestions: List[Suggestion]) -> List[LiveItem]:
    """
    Partitions suggestions into standalone ones and conflict groups.

    Sorted by start (stable), then swept once: the next suggestion joins the
    current run while it starts strictly before the run's furthest end.
    Ambiguity is never resolved here; overlapping suggestions always come
    back as one ConflictGroup for the user to choose from.
    """
    if len(suggestions) < 2:
        return suggestions

    ordered = sorted(suggestions, key=lambda s: s.from_pos)
    result: List[LiveItem] = []
    current = [ordered[0]]
    current_end = ordered[0].to_pos

    for suggestion in ordered[1:]:
        if suggestion.from_pos < current_end:
            current.append(suggestion)
            current_end = max(current_end, suggestion.to_pos)
            continue
        result.append(_close(current))
        current = [suggestion]
        current_end = suggestion.to_pos

    result.append(_close(current))
    return result


def _close(run: List[Suggestion]) -> LiveItem:
    if len(run) == 1:
        return run[0]
    group = create_conflict_group(run)
    logger.debug(f"Grouped {len(run)} overlapping suggestions into {group.id}")
    return group
