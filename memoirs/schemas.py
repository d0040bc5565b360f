"""
Pydantic schemas for the memories API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from memoirs.visibility import Relationship


class TagOut(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None


class TagListResponse(BaseModel):
    tags: list[TagOut]


class StoryCard(BaseModel):
    id: str
    user_id: str
    title: str
    description: str = ""
    thumbnail_url: str = ""
    audio_url: str = ""
    video_url: str = ""
    media: list[dict] = Field(default_factory=list)
    transcript_question: str = ""
    transcript_answer: str = ""
    duration: float = 0.0
    duration_label: str = "0:00"
    is_published: bool = True
    view_count: int = 0
    created_at: float
    updated_at: float
    tags: list[TagOut] = Field(default_factory=list)
    episode_number: Optional[int] = None
    is_new: bool = False


class FeedResponse(BaseModel):
    stories: list[StoryCard]
    total: int
    total_pages: int
    page: int
    page_size: int
    error: Optional[str] = None


class StoryListResponse(BaseModel):
    stories: list[StoryCard]


class AuthorSummary(BaseModel):
    id: str
    display_name: str
    avatar_url: Optional[str] = None


class CommentOut(BaseModel):
    id: str
    story_id: str
    user_id: str
    parent_id: Optional[str] = None
    content: str
    created_at: float
    author: Optional[AuthorSummary] = None
    replies: list["CommentOut"] = Field(default_factory=list)


CommentOut.model_rebuild()


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    parent_id: Optional[str] = None


class CommentTreeResponse(BaseModel):
    comments: list[CommentOut]
    comment_count: int


class CommentDeleteResponse(BaseModel):
    status: Literal["ok"]
    promoted_reply_ids: list[str]


class StoryDetailResponse(BaseModel):
    story: StoryCard
    visibility: list[str]
    author: Optional[AuthorSummary] = None
    like_count: int
    liked: bool
    bookmarked: bool
    comments: list[CommentOut]
    comment_count: int
    next_story: Optional[StoryCard] = None


class StoryUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    transcript_question: Optional[str] = None
    transcript_answer: Optional[str] = None
    is_published: Optional[bool] = None


class StoryDeleteResponse(BaseModel):
    status: Literal["ok"]
    media_left_behind: list[str] = Field(default_factory=list)


class LikeResponse(BaseModel):
    liked: bool
    like_count: int


class BookmarkResponse(BaseModel):
    bookmarked: bool


class ProfileOut(BaseModel):
    id: str
    display_name: str
    email: str
    relationship: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False
    created_at: float
    updated_at: float


class ProfileUpdate(BaseModel):
    display_name: str = Field(..., max_length=120)
    email: str = Field(..., max_length=320)
    relationship: Relationship
    bio: Optional[str] = Field(default=None, max_length=2000)
    avatar_url: Optional[str] = None


class AvatarResponse(BaseModel):
    avatar_url: str


class DashboardResponse(BaseModel):
    featured: Optional[StoryCard] = None
    recent: list[StoryCard]
    latest: list[StoryCard]
    bookmarks: list[StoryCard]
    total: int
    total_pages: int
    page: int
    page_size: int
    errors: list[str] = Field(default_factory=list)


class SignUrlResponse(BaseModel):
    url: str
