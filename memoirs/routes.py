"""
HTTP routes for the memories API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from memoirs import comments as comment_service
from memoirs import profiles as profile_service
from memoirs import stories as story_service
from memoirs.access import get_accessible_story
from memoirs.comments import CommentNode
from memoirs.config import Settings, get_settings
from memoirs.context import ViewerContext
from memoirs.db import DbClient, ProfileRecord, SortOrder
from memoirs.dependencies import get_db_client, get_storage_client, get_viewer
from memoirs.errors import NotFound, ValidationFailed
from memoirs.feed import FeedRequest, FeedStory, compose_feed
from memoirs.presenter import build_dashboard, story_card
from memoirs.schemas import (
    AuthorSummary,
    AvatarResponse,
    BookmarkResponse,
    CommentCreate,
    CommentDeleteResponse,
    CommentOut,
    CommentTreeResponse,
    DashboardResponse,
    FeedResponse,
    LikeResponse,
    ProfileOut,
    ProfileUpdate,
    SignUrlResponse,
    StoryCard,
    StoryDeleteResponse,
    StoryDetailResponse,
    StoryListResponse,
    StoryUpdate,
    TagListResponse,
    TagOut,
)
from memoirs.storage import StorageClient
from memoirs.stories import MEDIA_FOLDERS, MediaUpload, StoryDraft, UploadLimits
from memoirs.tags import list_tag_catalogue

logger = logging.getLogger(__name__)

router = APIRouter()


def _card(item: FeedStory, settings: Settings, episodes: dict | None = None) -> StoryCard:
    return StoryCard(
        **story_card(
            item.story,
            item.tags,
            episode_number=(episodes or {}).get(item.story.id),
            new_story_days=settings.new_story_days,
        )
    )


def _author(profile: Optional[ProfileRecord]) -> Optional[AuthorSummary]:
    if profile is None:
        return None
    return AuthorSummary(
        id=profile.id, display_name=profile.display_name, avatar_url=profile.avatar_url
    )


def _comment_out(node: CommentNode, profiles: dict[str, ProfileRecord]) -> CommentOut:
    comment = node.comment
    return CommentOut(
        id=comment.id,
        story_id=comment.story_id,
        user_id=comment.user_id,
        parent_id=comment.parent_id,
        content=comment.content,
        created_at=comment.created_at,
        author=_author(profiles.get(comment.user_id)),
        replies=[_comment_out(reply, profiles) for reply in node.replies],
    )


def _profile_out(profile: ProfileRecord) -> ProfileOut:
    return ProfileOut(**profile.as_dict())


async def _read_upload(file: UploadFile) -> MediaUpload:
    return MediaUpload(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )


@router.get("/profile", response_model=ProfileOut)
def get_profile(viewer: ViewerContext = Depends(get_viewer)):
    if viewer.profile is None:
        raise NotFound("Profile not found", code="profile_setup_required")
    return _profile_out(viewer.profile)


@router.put("/profile", response_model=ProfileOut)
def put_profile(
    payload: ProfileUpdate,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    profile = profile_service.save_profile(
        db,
        viewer,
        display_name=payload.display_name,
        email=payload.email,
        relationship=payload.relationship.value,
        bio=payload.bio,
        avatar_url=payload.avatar_url,
        founder_user_ids=settings.founder_user_ids,
    )
    return _profile_out(profile)


@router.post("/profile/avatar", response_model=AvatarResponse)
async def post_avatar(
    file: UploadFile = File(...),
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    upload = await _read_upload(file)
    url = profile_service.upload_avatar(
        db, storage, viewer, upload, max_bytes=settings.max_avatar_bytes
    )
    return AvatarResponse(avatar_url=url)


@router.post("/profiles/{user_id}/verify", response_model=ProfileOut)
def verify_profile(
    user_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    return _profile_out(profile_service.verify_member(db, viewer, user_id))


@router.get("/tags", response_model=TagListResponse)
def list_tags(db: DbClient = Depends(get_db_client)):
    tags = [TagOut(**tag.as_dict()) for tag in list_tag_catalogue(db)]
    return TagListResponse(tags=tags)


@router.get("/stories", response_model=FeedResponse)
def list_stories(
    search: str = Query("", max_length=200),
    tags: list[str] = Query(default=[]),
    sort: SortOrder = Query(SortOrder.RECENT),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=50),
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    """
    Visibility-filtered feed with optional search and tag filters.
    """
    viewer.require_member()
    request = FeedRequest(
        search=search,
        tags=tuple(tags),
        sort=sort,
        page=page,
        page_size=page_size or settings.feed_page_size,
    )
    page_result = compose_feed(db, viewer, request)
    return FeedResponse(
        stories=[_card(item, settings) for item in page_result.stories],
        total=page_result.total,
        total_pages=page_result.total_pages,
        page=page_result.page,
        page_size=page_result.page_size,
        error=page_result.error,
    )


@router.post("/stories", response_model=StoryCard, status_code=201)
async def create_story(
    title: str = Form(...),
    description: str = Form(""),
    tags: Optional[list[str]] = Form(None),
    visibility: Optional[list[str]] = Form(None),
    transcript_question: str = Form(""),
    transcript_answer: str = Form(""),
    duration: float = Form(0.0),
    files: Optional[list[UploadFile]] = File(None),
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    uploads = [await _read_upload(f) for f in files or []]
    draft = StoryDraft(
        title=title,
        description=description,
        tags=tags or [],
        visibility=visibility or [],
        files=uploads,
        transcript_question=transcript_question,
        transcript_answer=transcript_answer,
        duration=duration,
    )
    limits = UploadLimits(
        max_bytes=settings.max_upload_bytes,
        max_images=settings.max_images_per_story,
        max_audio=settings.max_audio_per_story,
        max_videos=settings.max_videos_per_story,
    )
    story = story_service.create_story(db, storage, viewer, draft, limits)
    tags_by_story = db.tags_for_stories([story.id])
    return _card(FeedStory(story=story, tags=tags_by_story.get(story.id, [])), settings)


@router.get("/stories/{story_id}", response_model=StoryDetailResponse)
def get_story(
    story_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    detail = story_service.load_story_detail(db, viewer, story_id)
    return StoryDetailResponse(
        story=_card(FeedStory(story=detail.story, tags=detail.tags), settings),
        visibility=detail.visibility,
        author=_author(detail.author),
        like_count=detail.like_count,
        liked=detail.liked,
        bookmarked=detail.bookmarked,
        comments=[_comment_out(node, detail.profiles) for node in detail.comments],
        comment_count=detail.comment_count,
        next_story=_card(detail.next_story, settings) if detail.next_story else None,
    )


@router.patch("/stories/{story_id}", response_model=StoryCard)
def patch_story(
    story_id: str,
    payload: StoryUpdate,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    story = story_service.update_story(db, viewer, story_id, **payload.model_dump())
    tags = db.tags_for_stories([story.id]).get(story.id, [])
    return _card(FeedStory(story=story, tags=tags), settings)


@router.delete("/stories/{story_id}", response_model=StoryDeleteResponse)
def delete_story(
    story_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    leftovers = story_service.delete_story(db, storage, viewer, story_id)
    return StoryDeleteResponse(status="ok", media_left_behind=leftovers)


@router.post("/stories/{story_id}/like", response_model=LikeResponse)
def like_story(
    story_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    liked, count = story_service.toggle_like(db, viewer, story_id)
    return LikeResponse(liked=liked, like_count=count)


@router.post("/stories/{story_id}/bookmark", response_model=BookmarkResponse)
def bookmark_story(
    story_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    return BookmarkResponse(bookmarked=story_service.toggle_bookmark(db, viewer, story_id))


@router.get("/bookmarks", response_model=StoryListResponse)
def list_bookmarks(
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    items = story_service.list_bookmarks(db, viewer)
    return StoryListResponse(stories=[_card(item, settings) for item in items])


@router.get("/stories/{story_id}/comments", response_model=CommentTreeResponse)
def list_comments(
    story_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    viewer.require_member()
    roots = comment_service.load_comment_tree(db, viewer, story_id)
    user_ids = {node.comment.user_id for node in roots}
    user_ids.update(reply.comment.user_id for node in roots for reply in node.replies)
    profiles = db.get_profiles(user_ids)
    return CommentTreeResponse(
        comments=[_comment_out(node, profiles) for node in roots],
        comment_count=comment_service.count_nodes(roots),
    )


@router.post("/stories/{story_id}/comments", response_model=CommentOut, status_code=201)
def post_comment(
    story_id: str,
    payload: CommentCreate,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    comment = comment_service.add_comment(
        db, viewer, story_id, payload.content, parent_id=payload.parent_id
    )
    return _comment_out(CommentNode(comment=comment), db.get_profiles([viewer.user_id]))


@router.delete("/comments/{comment_id}", response_model=CommentDeleteResponse)
def delete_comment(
    comment_id: str,
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
):
    promoted = comment_service.delete_comment(db, viewer, comment_id)
    return CommentDeleteResponse(status="ok", promoted_reply_ids=promoted)


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    page: int = Query(1, ge=1),
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    board = build_dashboard(db, viewer, page=page, page_size=settings.dashboard_page_size)

    def card(item: FeedStory) -> StoryCard:
        return _card(item, settings, board.episodes)

    return DashboardResponse(
        featured=card(board.featured) if board.featured else None,
        recent=[card(item) for item in board.recent],
        latest=[card(item) for item in board.latest],
        bookmarks=[card(item) for item in board.bookmarks],
        total=board.total,
        total_pages=board.total_pages,
        page=board.page,
        page_size=board.page_size,
        errors=board.errors,
    )


@router.get("/media/sign-url", response_model=SignUrlResponse)
def sign_url(
    path: str = Query(..., description="Object path in storage"),
    expires_in: Optional[int] = Query(None, ge=60, le=86400),
    viewer: ViewerContext = Depends(get_viewer),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    """
    Time-limited URL for a story's media or an avatar.
    """
    viewer.require_member()
    folder, _, filename = path.partition("/")
    if folder in MEDIA_FOLDERS.values() and "-" in filename:
        # Media paths start with the owning story id.
        get_accessible_story(db, viewer, filename.split("-", 1)[0])
    elif folder != "avatars" or not filename:
        raise ValidationFailed("Unknown media path")
    url = storage.presign_get(path, expires_in=expires_in or settings.signed_url_expiry_seconds)
    return SignUrlResponse(url=url)
