"""
Display helpers for story cards and the dashboard.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from memoirs.context import ViewerContext
from memoirs.db import DbClient, SortOrder, StoryRecord, TagRecord
from memoirs.feed import FeedStory, total_pages, visible_stories
from memoirs.results import attempt
from memoirs.stories import list_bookmarks

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
DASHBOARD_RECENT_COUNT = 2
DASHBOARD_ERROR_MESSAGE = "Some stories could not be loaded."


def format_duration(seconds: float) -> str:
    """90 -> '1:30', 3725 -> '1:02:05'."""
    total = int(max(seconds or 0, 0))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def is_new(story: StoryRecord, *, days: int = 7, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    return story.created_at > now - days * DAY_SECONDS


def episode_numbers(stories: Iterable[StoryRecord]) -> dict[str, int]:
    """1-based position of each story in creation order."""
    ordered = sorted(stories, key=lambda s: s.created_at)
    return {story.id: index for index, story in enumerate(ordered, start=1)}


def story_card(
    story: StoryRecord,
    tags: Iterable[TagRecord] = (),
    *,
    episode_number: Optional[int] = None,
    new_story_days: int = 7,
    now: Optional[float] = None,
) -> dict:
    card = story.as_dict()
    card.update(
        tags=[tag.as_dict() for tag in tags],
        episode_number=episode_number,
        is_new=is_new(story, days=new_story_days, now=now),
        duration_label=format_duration(story.duration),
    )
    return card


@dataclass
class Dashboard:
    featured: Optional[FeedStory] = None
    recent: list[FeedStory] = field(default_factory=list)
    latest: list[FeedStory] = field(default_factory=list)
    bookmarks: list[FeedStory] = field(default_factory=list)
    episodes: dict[str, int] = field(default_factory=dict)
    total: int = 0
    total_pages: int = 0
    page: int = 1
    page_size: int = 9
    errors: list[str] = field(default_factory=list)


def build_dashboard(
    db: DbClient, viewer: ViewerContext, *, page: int = 1, page_size: int = 9
) -> Dashboard:
    """
    Featured, recently updated, paginated latest and bookmarked stories.

    Each section loads independently; a failing section is left empty and
    noted in `errors`.
    """
    viewer.require_member()
    allowed = viewer.allowed_visibility()
    dashboard = Dashboard(page=page, page_size=page_size)

    everything = attempt("Dashboard stories", visible_stories, db, allowed, sort=SortOrder.OLDEST)
    if not everything.ok:
        dashboard.errors.append(DASHBOARD_ERROR_MESSAGE)
        return dashboard
    stories, total = everything.value
    dashboard.episodes = episode_numbers(stories)
    dashboard.total = total
    dashboard.total_pages = total_pages(total, page_size)

    tags_result = attempt("Dashboard tags", db.tags_for_stories, [s.id for s in stories])
    tags = tags_result.value if tags_result.ok else {}
    if not tags_result.ok:
        dashboard.errors.append(DASHBOARD_ERROR_MESSAGE)

    def wrap(story: StoryRecord) -> FeedStory:
        return FeedStory(story=story, tags=tags.get(story.id, []))

    newest_first = sorted(stories, key=lambda s: s.created_at, reverse=True)
    if newest_first:
        dashboard.featured = wrap(newest_first[0])
    by_update = sorted(stories, key=lambda s: s.updated_at, reverse=True)
    dashboard.recent = [wrap(s) for s in by_update[:DASHBOARD_RECENT_COUNT]]
    start = (page - 1) * page_size
    dashboard.latest = [wrap(s) for s in newest_first[start:start + page_size]]

    bookmarks = attempt("Dashboard bookmarks", list_bookmarks, db, viewer)
    if bookmarks.ok:
        dashboard.bookmarks = bookmarks.value
    else:
        dashboard.errors.append(DASHBOARD_ERROR_MESSAGE)
    return dashboard
