"""
Per-story access checks for the detail view and story-scoped actions.
"""

from __future__ import annotations

from memoirs.context import ViewerContext
from memoirs.db import DbClient, StoryRecord
from memoirs.errors import NotFound, PermissionDenied
from memoirs.visibility import is_visible


def can_view(db: DbClient, viewer: ViewerContext, story: StoryRecord) -> bool:
    # Owners always see their own stories, drafts included.
    if story.user_id == viewer.user_id:
        return True
    if not story.is_published:
        return False
    rows = db.get_story_visibility([story.id]).get(story.id, [])
    return is_visible(rows, viewer.allowed_visibility())


def get_accessible_story(db: DbClient, viewer: ViewerContext, story_id: str) -> StoryRecord:
    """
    Return the story or raise NotFound.

    Stories the viewer may not see are reported as missing so their
    existence is not disclosed.
    """
    story = db.get_story(story_id)
    if story is None or not can_view(db, viewer, story):
        raise NotFound("Story not found")
    return story


def get_owned_story(db: DbClient, viewer: ViewerContext, story_id: str) -> StoryRecord:
    story = db.get_story(story_id)
    if story is None:
        raise NotFound("Story not found")
    if story.user_id != viewer.user_id:
        if not can_view(db, viewer, story):
            raise NotFound("Story not found")
        raise PermissionDenied("Only the author can change this story")
    return story
