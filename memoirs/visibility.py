"""
Visibility gate: which visibility categories a viewer may retrieve.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, TypeVar

from memoirs.errors import ProfileSetupRequired, ValidationFailed

T = TypeVar("T")


class Relationship(str, Enum):
    SPOUSE_OR_CHILD = "spouse_or_child"
    PARENT_OR_SIBLING = "parent_or_sibling"
    RELATIVE = "relative"
    FRIEND = "friend"


# Closer relations see everything further relations see, never the reverse.
_HIERARCHY: dict[str, tuple[str, ...]] = {
    Relationship.SPOUSE_OR_CHILD.value: (
        Relationship.SPOUSE_OR_CHILD.value,
        Relationship.PARENT_OR_SIBLING.value,
        Relationship.RELATIVE.value,
    ),
    Relationship.PARENT_OR_SIBLING.value: (
        Relationship.PARENT_OR_SIBLING.value,
        Relationship.RELATIVE.value,
    ),
    Relationship.RELATIVE.value: (Relationship.RELATIVE.value,),
}


def allowed_visibility(relationship: Optional[str]) -> tuple[str, ...]:
    """Return the ordered visibility categories a viewer may see."""
    if isinstance(relationship, Relationship):
        relationship = relationship.value
    if not relationship:
        raise ProfileSetupRequired("Set your relationship before browsing stories")
    return _HIERARCHY.get(relationship, (relationship,))


def normalize_visibility_label(label: str) -> str:
    """'Spouse or Child' -> 'spouse_or_child'."""
    return re.sub(r"\s+", "_", (label or "").strip().lower())


def parse_visibility(labels: Iterable[str]) -> list[str]:
    """Normalize submitted visibility labels, rejecting unknown categories."""
    known = {r.value for r in Relationship}
    result: list[str] = []
    for label in labels:
        value = normalize_visibility_label(label)
        if not value:
            continue
        if value not in known:
            raise ValidationFailed(f"Unknown visibility category: {label}")
        if value not in result:
            result.append(value)
    if not result:
        raise ValidationFailed("Please select who can see this post")
    return result


def is_visible(visibility_rows: Iterable[str], allowed: Sequence[str]) -> bool:
    # A story with no rows intersects nothing and stays hidden.
    return not set(visibility_rows).isdisjoint(allowed)


def filter_visible(
    stories: Iterable[T],
    visibility_map: Mapping[str, Iterable[str]],
    allowed: Sequence[str],
    *,
    key=lambda story: story.id,
) -> list[T]:
    return [
        story
        for story in stories
        if is_visible(visibility_map.get(key(story), ()), allowed)
    ]
