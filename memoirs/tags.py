"""
Tag resolution between human-readable names and stored tag ids.

Names match exactly (case-sensitive) after surrounding whitespace is
trimmed, so "Travel" and "travel" are distinct tags.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from memoirs.db import DbClient, TagRecord
from memoirs.errors import ValidationFailed

logger = logging.getLogger(__name__)

MIN_TAGS_PER_STORY = 1
MAX_TAGS_PER_STORY = 3

DEFAULT_TAGS: dict[str, str] = {
    "Childhood": "baby.svg",
    "Sports": "trophy.svg",
    "Hobbies & Interests": "palette.svg",
    "Liberation war": "flag.svg",
    "Proud moments": "star.svg",
    "Travel": "plane.svg",
    "Grief": "heart.svg",
    "Family": "users.svg",
    "Health": "activity.svg",
}


@dataclass
class TagResolution:
    ids_by_name: dict[str, str] = field(default_factory=dict)
    created_ids: list[str] = field(default_factory=list)

    @property
    def tag_ids(self) -> list[str]:
        return list(self.ids_by_name.values())


def normalize_tag_names(names: Iterable[str]) -> list[str]:
    result: list[str] = []
    for name in names:
        cleaned = (name or "").strip()
        if cleaned and cleaned not in result:
            result.append(cleaned)
    return result


def validate_story_tags(names: Iterable[str]) -> list[str]:
    cleaned = normalize_tag_names(names)
    if not MIN_TAGS_PER_STORY <= len(cleaned) <= MAX_TAGS_PER_STORY:
        raise ValidationFailed(
            f"Select between {MIN_TAGS_PER_STORY} and {MAX_TAGS_PER_STORY} tags"
        )
    return cleaned


def resolve_tag_ids(
    db: DbClient, names: Iterable[str], resolution: TagResolution | None = None
) -> TagResolution:
    """
    Map every name to exactly one tag id, creating tags that do not exist.

    Pass a resolution to collect created ids even when a later creation fails.
    """
    resolution = resolution if resolution is not None else TagResolution()
    wanted = normalize_tag_names(names)
    existing = {tag.name: tag.id for tag in db.find_tags_by_names(wanted)}
    for name in wanted:
        if name in existing:
            resolution.ids_by_name[name] = existing[name]
            continue
        tag = db.create_tag(name, icon=DEFAULT_TAGS.get(name))
        logger.info("Created tag %r (%s)", name, tag.id)
        resolution.ids_by_name[name] = tag.id
        resolution.created_ids.append(tag.id)
    return resolution


def lookup_tag_ids(db: DbClient, names: Iterable[str]) -> list[str]:
    """Ids of existing tags with these names; unknown names are ignored."""
    wanted = normalize_tag_names(names)
    if not wanted:
        return []
    return [tag.id for tag in db.find_tags_by_names(wanted)]


def story_ids_for_tag_names(db: DbClient, names: Iterable[str]) -> frozenset[str]:
    """Stories carrying at least one of the named tags."""
    tag_ids = lookup_tag_ids(db, names)
    if not tag_ids:
        return frozenset()
    return frozenset(db.story_ids_for_tags(tag_ids))


def list_tag_catalogue(db: DbClient) -> list[TagRecord]:
    """Default tags followed by any user-created ones."""
    stored = {tag.name: tag for tag in db.list_tags()}
    catalogue = [
        stored.get(name) or TagRecord(id="", name=name, icon=icon)
        for name, icon in DEFAULT_TAGS.items()
    ]
    catalogue.extend(tag for name, tag in stored.items() if name not in DEFAULT_TAGS)
    return catalogue


def ensure_default_tags(db: DbClient) -> list[TagRecord]:
    """Insert any default tag that is missing; returns the created tags."""
    existing = {tag.name for tag in db.find_tags_by_names(DEFAULT_TAGS)}
    created = []
    for name, icon in DEFAULT_TAGS.items():
        if name not in existing:
            created.append(db.create_tag(name, icon=icon))
    return created
