"""
Story query composition: search, tag filter, visibility gate, sort and page
window combined into one retrieval request.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from memoirs.context import ViewerContext
from memoirs.db import DbClient, SortOrder, StoryQuery, StoryRecord, TagRecord
from memoirs.errors import ValidationFailed
from memoirs.results import attempt
from memoirs.tags import normalize_tag_names, story_ids_for_tag_names

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 6
FEED_ERROR_MESSAGE = "We couldn't load stories right now. Please try again."


@dataclass(frozen=True)
class FeedRequest:
    search: str = ""
    tags: tuple[str, ...] = ()
    sort: SortOrder = SortOrder.RECENT
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass
class FeedStory:
    story: StoryRecord
    tags: list[TagRecord] = field(default_factory=list)


@dataclass
class FeedPage:
    stories: list[FeedStory]
    total: int
    total_pages: int
    page: int
    page_size: int
    error: Optional[str] = None


def total_pages(total: int, page_size: int) -> int:
    if page_size < 1:
        raise ValueError("page_size must be positive")
    return math.ceil(total / page_size)


def build_story_query(
    request: FeedRequest,
    allowed: tuple[str, ...],
    story_ids: Optional[frozenset[str]] = None,
) -> StoryQuery:
    return StoryQuery(
        search=(request.search or "").strip(),
        story_ids=story_ids,
        visibility=tuple(allowed),
        sort=request.sort,
        offset=(request.page - 1) * request.page_size,
        limit=request.page_size,
    )


def _empty_page(request: FeedRequest, error: Optional[str] = None) -> FeedPage:
    return FeedPage(
        stories=[],
        total=0,
        total_pages=0,
        page=request.page,
        page_size=request.page_size,
        error=error,
    )


def compose_feed(db: DbClient, viewer: ViewerContext, request: FeedRequest) -> FeedPage:
    """
    Run one feed request for a viewer.

    Backend failures never raise: they produce an empty page carrying a
    user-facing error message.
    """
    if request.page < 1 or request.page_size < 1:
        raise ValidationFailed("page and page_size must be positive")
    allowed = viewer.allowed_visibility()

    story_ids = None
    tag_names = normalize_tag_names(request.tags)
    if tag_names:
        lookup = attempt("Tag lookup", story_ids_for_tag_names, db, tag_names)
        if not lookup.ok:
            return _empty_page(request, FEED_ERROR_MESSAGE)
        story_ids = lookup.value
        if not story_ids:
            return _empty_page(request)

    query = build_story_query(request, allowed, story_ids)
    result = attempt("Story query", db.query_stories, query)
    if not result.ok:
        return _empty_page(request, FEED_ERROR_MESSAGE)
    stories, total = result.value

    tags = attempt("Story tags", db.tags_for_stories, [s.id for s in stories])
    if not tags.ok:
        return _empty_page(request, FEED_ERROR_MESSAGE)

    logger.debug(
        "Feed for %s: %d/%d stories (page %d)", viewer.user_id, len(stories), total, request.page
    )
    return FeedPage(
        stories=[FeedStory(story=s, tags=tags.value.get(s.id, [])) for s in stories],
        total=total,
        total_pages=total_pages(total, request.page_size),
        page=request.page,
        page_size=request.page_size,
    )


def visible_stories(
    db: DbClient,
    allowed: tuple[str, ...],
    *,
    sort: SortOrder = SortOrder.RECENT,
    limit: Optional[int] = None,
    offset: int = 0,
    story_ids: Optional[frozenset[str]] = None,
    created_after: Optional[float] = None,
) -> tuple[list[StoryRecord], int]:
    """Plain visibility-filtered listing used by the dashboard; raises on failure."""
    return db.query_stories(
        StoryQuery(
            visibility=tuple(allowed),
            sort=sort,
            limit=limit,
            offset=offset,
            story_ids=story_ids,
            created_after=created_after,
        )
    )
