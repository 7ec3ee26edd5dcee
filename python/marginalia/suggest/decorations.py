from typing import List, Sequence

from marginalia.models import ConflictGroup, Decoration, LiveItem

HIGHLIGHT_CLASS = "suggestion-highlight"
CONFLICT_CLASS = "conflict-highlight"


def edit_type_class(edit_type: str) -> str:
    return "-".join((edit_type or "line").lower().split())


def decoration_for(item: LiveItem) -> Decoration:
    if isinstance(item, ConflictGroup):
        return Decoration(
            from_pos=item.from_pos,
            to_pos=item.to_pos,
            css_class=f"{HIGHLIGHT_CLASS} {CONFLICT_CLASS}",
            attributes={
                "data-conflict-group-id": item.id,
                "data-edit-type": item.edit_type,
                "data-member-count": str(len(item.members)),
            },
        )
    return Decoration(
        from_pos=item.from_pos,
        to_pos=item.to_pos,
        css_class=f"{HIGHLIGHT_CLASS} {edit_type_class(item.edit_type)}",
        attributes={
            "data-suggestion-id": item.id,
            "data-edit-type": item.edit_type,
        },
    )


def build_decorations(items: Sequence[LiveItem]) -> List[Decoration]:
    """Full rebuild, one decoration per live item. Collapsed spans are not rendered."""
    decorations = [decoration_for(item) for item in items if not item.is_degenerate]
    decorations.sort(key=lambda d: (d.from_pos, d.to_pos))
    return decorations
