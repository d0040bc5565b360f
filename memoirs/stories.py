"""
Story lifecycle: creation saga, detail view, owner edits and deletion,
likes and bookmarks.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Optional

from memoirs.access import get_accessible_story, get_owned_story
from memoirs.comments import CommentNode, build_comment_tree
from memoirs.context import ViewerContext
from memoirs.db import DbClient, ProfileRecord, SortOrder, StoryRecord, TagRecord
from memoirs.errors import BackendError, ValidationFailed
from memoirs.feed import FeedStory, visible_stories
from memoirs.results import attempt
from memoirs.saga import Saga, SagaOutcome
from memoirs.storage import StorageClient
from memoirs.tags import TagResolution, resolve_tag_ids, validate_story_tags
from memoirs.visibility import parse_visibility

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
STORY_CREATE_ERROR = "Failed to create story. Please try again."

MEDIA_FOLDERS = {"image": "images", "audio": "audio", "video": "videos"}


@dataclass(frozen=True)
class UploadLimits:
    max_bytes: int = 50 * 1024 * 1024
    max_images: int = 3
    max_audio: int = 3
    max_videos: int = 1


@dataclass
class MediaUpload:
    filename: str
    content_type: str
    data: bytes

    @property
    def kind(self) -> str:
        return media_kind(self.content_type)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lstrip(".").lower() or "bin"


@dataclass
class StoryDraft:
    title: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    visibility: list[str] = field(default_factory=list)
    files: list[MediaUpload] = field(default_factory=list)
    transcript_question: str = ""
    transcript_answer: str = ""
    duration: float = 0.0


class StoryCreationFailed(BackendError):
    def __init__(self, outcome: SagaOutcome):
        super().__init__(STORY_CREATE_ERROR)
        self.outcome = outcome


def media_kind(content_type: str) -> str:
    major = (content_type or "").split("/", 1)[0].lower()
    if major not in MEDIA_FOLDERS:
        raise ValidationFailed(f"Unsupported file type: {content_type or 'unknown'}")
    return major


def validate_media(files: list[MediaUpload], limits: UploadLimits) -> None:
    counts = {"image": 0, "audio": 0, "video": 0}
    for upload in files:
        counts[upload.kind] += 1
        if not upload.data:
            raise ValidationFailed(f"{upload.filename} is empty")
        if len(upload.data) > limits.max_bytes:
            raise ValidationFailed(f"{upload.filename} is too large")
    if counts["image"] > limits.max_images:
        raise ValidationFailed(f"Maximum {limits.max_images} images allowed")
    if counts["video"] > limits.max_videos:
        raise ValidationFailed("Only a single video file allowed")
    if counts["audio"] > limits.max_audio:
        raise ValidationFailed(f"Maximum {limits.max_audio} audio files allowed")
    if counts["video"] and counts["audio"]:
        raise ValidationFailed("Cannot upload both video and audio files")


def validate_draft(draft: StoryDraft, limits: UploadLimits) -> StoryDraft:
    """Check every rule before anything is written."""
    title = (draft.title or "").strip()
    if not title:
        raise ValidationFailed("Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"Title is limited to {MAX_TITLE_LENGTH} characters")
    validate_media(draft.files, limits)
    return StoryDraft(
        title=title,
        description=(draft.description or "").strip(),
        tags=validate_story_tags(draft.tags),
        visibility=parse_visibility(draft.visibility),
        files=list(draft.files),
        transcript_question=(draft.transcript_question or "").strip(),
        transcript_answer=(draft.transcript_answer or "").strip(),
        duration=max(float(draft.duration or 0.0), 0.0),
    )


def media_path(story_id: str, upload: MediaUpload) -> str:
    folder = MEDIA_FOLDERS[upload.kind]
    return f"{folder}/{story_id}-{uuid.uuid4().hex}.{upload.extension}"


def _first_url(media: list[dict], kind: str) -> str:
    return next((item["url"] for item in media if item["kind"] == kind), "")


def build_creation_saga(
    db: DbClient,
    storage: StorageClient,
    viewer: ViewerContext,
    draft: StoryDraft,
) -> Saga:
    """
    Steps: story row, visibility rows, one upload per file, media URL
    backfill, tag resolution, tag association.
    """
    resolution = TagResolution()
    saga = Saga("create-story")

    saga.step(
        "story",
        lambda ctx: db.create_story(
            viewer.user_id,
            draft.title,
            description=draft.description,
            transcript_question=draft.transcript_question,
            transcript_answer=draft.transcript_answer,
            duration=draft.duration,
        ),
        lambda ctx, story: db.delete_story(story.id),
    )
    saga.step(
        "visibility",
        lambda ctx: db.add_story_visibility(ctx["story"].id, draft.visibility),
        lambda ctx, _: db.delete_story_visibility(ctx["story"].id),
    )

    upload_steps = []
    for index, upload in enumerate(draft.files):
        name = f"upload:{index}:{upload.filename}"
        upload_steps.append(name)

        def do_upload(ctx, upload=upload):
            path = media_path(ctx["story"].id, upload)
            storage.upload_bytes(path, upload.data, upload.content_type)
            return {
                "kind": upload.kind,
                "path": path,
                "url": storage.public_url(path),
                "content_type": upload.content_type,
                "filename": upload.filename,
            }

        saga.step(name, do_upload, lambda ctx, item: storage.delete(item["path"]))

    def backfill_media(ctx):
        media = [ctx[name] for name in upload_steps]
        if not media:
            return ctx["story"]
        return db.update_story(
            ctx["story"].id,
            media=media,
            thumbnail_url=_first_url(media, "image"),
            audio_url=_first_url(media, "audio"),
            video_url=_first_url(media, "video"),
        )

    saga.step("media", backfill_media)
    saga.step(
        "tags",
        lambda ctx: resolve_tag_ids(db, draft.tags, resolution),
        lambda ctx, _: db.delete_tags_if_unused(resolution.created_ids),
        compensate_on_failure=True,
    )
    saga.step(
        "story_tags",
        lambda ctx: db.add_story_tags(ctx["story"].id, resolution.tag_ids),
        lambda ctx, _: db.delete_story_tags(ctx["story"].id),
    )
    return saga


def create_story(
    db: DbClient,
    storage: StorageClient,
    viewer: ViewerContext,
    draft: StoryDraft,
    limits: UploadLimits = UploadLimits(),
) -> StoryRecord:
    """
    Validate then write a story with all of its parts.

    Any failure aborts the whole submission and rolls back the steps that
    already ran.
    """
    viewer.require_member()
    draft = validate_draft(draft, limits)
    outcome = build_creation_saga(db, storage, viewer, draft).run()
    if not outcome.ok:
        logger.error(
            "Story creation by %s failed at %s (%s); rolled back %s",
            viewer.user_id,
            outcome.failed_step,
            outcome.error,
            outcome.compensated,
        )
        raise StoryCreationFailed(outcome)
    story = outcome.context["media"]
    logger.info("Story %s created by %s", story.id, viewer.user_id)
    return story


@dataclass
class StoryDetail:
    story: StoryRecord
    tags: list[TagRecord]
    visibility: list[str]
    author: Optional[ProfileRecord]
    like_count: int
    liked: bool
    bookmarked: bool
    comments: list[CommentNode]
    comment_count: int
    profiles: dict[str, ProfileRecord]
    next_story: Optional[FeedStory] = None


def _next_story(db: DbClient, viewer: ViewerContext, story: StoryRecord) -> Optional[FeedStory]:
    later, _ = visible_stories(
        db,
        viewer.allowed_visibility(),
        sort=SortOrder.OLDEST,
        limit=1,
        created_after=story.created_at,
    )
    if not later:
        return None
    nxt = later[0]
    return FeedStory(story=nxt, tags=db.tags_for_stories([nxt.id]).get(nxt.id, []))


def load_story_detail(
    db: DbClient, viewer: ViewerContext, story_id: str, *, count_view: bool = True
) -> StoryDetail:
    viewer.require_member()
    story = get_accessible_story(db, viewer, story_id)
    if count_view:
        story.view_count = db.increment_view_count(story.id)
    comments = db.list_comments(story.id)
    profiles = db.get_profiles([story.user_id, *(c.user_id for c in comments)])

    next_story = attempt("Next story", _next_story, db, viewer, story)
    return StoryDetail(
        story=story,
        tags=db.tags_for_stories([story.id]).get(story.id, []),
        visibility=db.get_story_visibility([story.id]).get(story.id, []),
        author=profiles.get(story.user_id),
        like_count=db.count_likes(story.id),
        liked=db.has_like(viewer.user_id, story.id),
        bookmarked=db.has_bookmark(viewer.user_id, story.id),
        comments=build_comment_tree(comments),
        comment_count=len(comments),
        profiles=profiles,
        next_story=next_story.value if next_story.ok else None,
    )


def update_story(db: DbClient, viewer: ViewerContext, story_id: str, **fields) -> StoryRecord:
    viewer.require_member()
    get_owned_story(db, viewer, story_id)
    changes = {key: value for key, value in fields.items() if value is not None}
    if "title" in changes:
        changes["title"] = changes["title"].strip()
        if not changes["title"]:
            raise ValidationFailed("Title is required")
    if not changes:
        return db.get_story(story_id)
    return db.update_story(story_id, **changes)


def delete_story(
    db: DbClient, storage: StorageClient, viewer: ViewerContext, story_id: str
) -> list[str]:
    """Delete an owned story; returns media paths that could not be removed."""
    viewer.require_member()
    get_owned_story(db, viewer, story_id)
    story = db.delete_story(story_id)
    leftovers = []
    for item in story.media if story else []:
        if not attempt("Delete media", storage.delete, item["path"]).ok:
            leftovers.append(item["path"])
    if leftovers:
        logger.warning("Story %s deleted; media left behind: %s", story_id, leftovers)
    return leftovers


def toggle_like(db: DbClient, viewer: ViewerContext, story_id: str) -> tuple[bool, int]:
    viewer.require_member()
    get_accessible_story(db, viewer, story_id)
    if db.has_like(viewer.user_id, story_id):
        db.remove_like(viewer.user_id, story_id)
        liked = False
    else:
        db.add_like(viewer.user_id, story_id)
        liked = True
    return liked, db.count_likes(story_id)


def toggle_bookmark(db: DbClient, viewer: ViewerContext, story_id: str) -> bool:
    viewer.require_member()
    get_accessible_story(db, viewer, story_id)
    if db.has_bookmark(viewer.user_id, story_id):
        db.remove_bookmark(viewer.user_id, story_id)
        return False
    db.add_bookmark(viewer.user_id, story_id)
    return True


def list_bookmarks(db: DbClient, viewer: ViewerContext) -> list[FeedStory]:
    """Bookmarked stories the viewer can still see, most recently bookmarked first."""
    viewer.require_member()
    ids = db.list_bookmarked_story_ids(viewer.user_id)
    if not ids:
        return []
    stories, _ = visible_stories(db, viewer.allowed_visibility(), story_ids=frozenset(ids))
    by_id = {s.id: s for s in stories}
    tags = db.tags_for_stories(list(by_id))
    return [FeedStory(story=by_id[sid], tags=tags.get(sid, [])) for sid in ids if sid in by_id]
