"""
Database abstraction for Postgres and an in-memory test implementation.

Both clients expose the query capability the feed needs: inclusion filters,
a filter through the story_visibility join, case-insensitive OR search on
title/description, ordering, offset/limit windows and an exact total count.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from memoirs.errors import BackendError


class SortOrder(str, Enum):
    RECENT = "recent"
    OLDEST = "oldest"
    AZ = "az"


@dataclass(frozen=True)
class StoryQuery:
    """One retrieval request against the stories table."""

    search: str = ""
    # None disables the filter; an empty set matches nothing.
    story_ids: Optional[frozenset[str]] = None
    visibility: Optional[tuple[str, ...]] = None
    user_id: Optional[str] = None
    # Strictly later than this creation time.
    created_after: Optional[float] = None
    published_only: bool = True
    sort: SortOrder = SortOrder.RECENT
    offset: int = 0
    limit: Optional[int] = None


@dataclass
class ProfileRecord:
    id: str
    display_name: str
    email: str
    relationship: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "relationship": self.relationship,
            "bio": self.bio,
            "avatar_url": self.avatar_url,
            "is_verified": self.is_verified,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class StoryRecord:
    id: str
    user_id: str
    title: str
    description: str = ""
    thumbnail_url: str = ""
    audio_url: str = ""
    video_url: str = ""
    media: list = field(default_factory=list)
    transcript_question: str = ""
    transcript_answer: str = ""
    duration: float = 0.0
    is_published: bool = True
    view_count: int = 0
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "audio_url": self.audio_url,
            "video_url": self.video_url,
            "media": list(self.media),
            "transcript_question": self.transcript_question,
            "transcript_answer": self.transcript_answer,
            "duration": self.duration,
            "is_published": self.is_published,
            "view_count": self.view_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


STORY_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "thumbnail_url",
        "audio_url",
        "video_url",
        "media",
        "transcript_question",
        "transcript_answer",
        "duration",
        "is_published",
    }
)


@dataclass
class TagRecord:
    id: str
    name: str
    icon: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "icon": self.icon}


@dataclass
class CommentRecord:
    id: str
    story_id: str
    user_id: str
    content: str
    parent_id: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "story_id": self.story_id,
            "user_id": self.user_id,
            "content": self.content,
            "parent_id": self.parent_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class DbClient(Protocol):
    """Interface for database access."""

    # Profiles
    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileRecord]:
        ...

    def upsert_profile(self, profile: ProfileRecord) -> ProfileRecord:
        ...

    def set_profile_verified(self, user_id: str, verified: bool = True) -> bool:
        ...

    # Stories
    def create_story(self, user_id: str, title: str, **fields) -> StoryRecord:
        ...

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        ...

    def update_story(self, story_id: str, **fields) -> Optional[StoryRecord]:
        ...

    def delete_story(self, story_id: str) -> Optional[StoryRecord]:
        ...

    def increment_view_count(self, story_id: str) -> int:
        ...

    def query_stories(self, query: StoryQuery) -> tuple[list[StoryRecord], int]:
        ...

    # Visibility
    def add_story_visibility(self, story_id: str, visibility_types: Iterable[str]) -> None:
        ...

    def delete_story_visibility(self, story_id: str) -> None:
        ...

    def get_story_visibility(self, story_ids: Iterable[str]) -> Dict[str, list[str]]:
        ...

    # Tags
    def list_tags(self) -> list[TagRecord]:
        ...

    def find_tags_by_names(self, names: Iterable[str]) -> list[TagRecord]:
        ...

    def create_tag(self, name: str, icon: Optional[str] = None) -> TagRecord:
        ...

    def delete_tags_if_unused(self, tag_ids: Iterable[str]) -> list[str]:
        ...

    def story_ids_for_tags(self, tag_ids: Iterable[str]) -> set[str]:
        ...

    def add_story_tags(self, story_id: str, tag_ids: Iterable[str]) -> None:
        ...

    def delete_story_tags(self, story_id: str) -> None:
        ...

    def tags_for_stories(self, story_ids: Iterable[str]) -> Dict[str, list[TagRecord]]:
        ...

    # Comments
    def list_comments(self, story_id: str) -> list[CommentRecord]:
        ...

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        ...

    def create_comment(
        self, story_id: str, user_id: str, content: str, parent_id: Optional[str] = None
    ) -> CommentRecord:
        ...

    def delete_comment(self, comment_id: str) -> list[str]:
        ...

    # Likes / bookmarks
    def has_like(self, user_id: str, story_id: str) -> bool:
        ...

    def add_like(self, user_id: str, story_id: str) -> None:
        ...

    def remove_like(self, user_id: str, story_id: str) -> None:
        ...

    def count_likes(self, story_id: str) -> int:
        ...

    def has_bookmark(self, user_id: str, story_id: str) -> bool:
        ...

    def add_bookmark(self, user_id: str, story_id: str) -> None:
        ...

    def remove_bookmark(self, user_id: str, story_id: str) -> None:
        ...

    def list_bookmarked_story_ids(self, user_id: str) -> list[str]:
        ...


def _sort_key(sort: SortOrder):
    if sort == SortOrder.AZ:
        return (lambda s: (s.title or "").casefold()), False
    if sort == SortOrder.OLDEST:
        return (lambda s: s.created_at), False
    return (lambda s: s.created_at), True


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, ProfileRecord] = {}
        self.stories: Dict[str, StoryRecord] = {}
        self.visibility: Dict[str, list[str]] = {}
        self.tags: Dict[str, TagRecord] = {}
        # (story_id, tag_id) -> created_at
        self.story_tags: Dict[tuple[str, str], float] = {}
        self.comments: Dict[str, CommentRecord] = {}
        self.likes: Dict[tuple[str, str], float] = {}
        self.bookmarks: Dict[tuple[str, str], float] = {}

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(user_id)

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileRecord]:
        return {uid: self.profiles[uid] for uid in set(user_ids) if uid in self.profiles}

    def upsert_profile(self, profile: ProfileRecord) -> ProfileRecord:
        existing = self.profiles.get(profile.id)
        if existing:
            profile = replace(profile, created_at=existing.created_at)
        profile.updated_at = time.time()
        self.profiles[profile.id] = profile
        return profile

    def set_profile_verified(self, user_id: str, verified: bool = True) -> bool:
        profile = self.profiles.get(user_id)
        if not profile:
            return False
        profile.is_verified = verified
        profile.updated_at = time.time()
        return True

    def create_story(self, user_id: str, title: str, **fields) -> StoryRecord:
        record = StoryRecord(id=uuid.uuid4().hex, user_id=user_id, title=title, **fields)
        self.stories[record.id] = record
        return record

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        return self.stories.get(story_id)

    def update_story(self, story_id: str, **fields) -> Optional[StoryRecord]:
        story = self.stories.get(story_id)
        if not story:
            return None
        for key, value in fields.items():
            if key not in STORY_UPDATABLE_FIELDS:
                raise ValueError(f"Cannot update story field {key}")
            setattr(story, key, value)
        story.updated_at = time.time()
        return story

    def delete_story(self, story_id: str) -> Optional[StoryRecord]:
        story = self.stories.pop(story_id, None)
        if not story:
            return None
        self.visibility.pop(story_id, None)
        for key in [k for k in self.story_tags if k[0] == story_id]:
            del self.story_tags[key]
        for cid in [c.id for c in self.comments.values() if c.story_id == story_id]:
            del self.comments[cid]
        for table in (self.likes, self.bookmarks):
            for key in [k for k in table if k[1] == story_id]:
                del table[key]
        return story

    def increment_view_count(self, story_id: str) -> int:
        story = self.stories.get(story_id)
        if not story:
            return 0
        story.view_count += 1
        return story.view_count

    def query_stories(self, query: StoryQuery) -> tuple[list[StoryRecord], int]:
        needle = query.search.casefold() if query.search else ""
        allowed = set(query.visibility) if query.visibility is not None else None
        matches = []
        for story in self.stories.values():
            if query.published_only and not story.is_published:
                continue
            if query.created_after is not None and story.created_at <= query.created_after:
                continue
            if query.user_id is not None and story.user_id != query.user_id:
                continue
            if query.story_ids is not None and story.id not in query.story_ids:
                continue
            if allowed is not None and allowed.isdisjoint(self.visibility.get(story.id, ())):
                continue
            if needle and not (
                needle in (story.title or "").casefold()
                or needle in (story.description or "").casefold()
            ):
                continue
            matches.append(story)
        key, reverse = _sort_key(query.sort)
        matches.sort(key=key, reverse=reverse)
        total = len(matches)
        end = None if query.limit is None else query.offset + query.limit
        return matches[query.offset:end], total

    def add_story_visibility(self, story_id: str, visibility_types: Iterable[str]) -> None:
        rows = self.visibility.setdefault(story_id, [])
        for value in visibility_types:
            if value not in rows:
                rows.append(value)

    def delete_story_visibility(self, story_id: str) -> None:
        self.visibility.pop(story_id, None)

    def get_story_visibility(self, story_ids: Iterable[str]) -> Dict[str, list[str]]:
        return {sid: list(self.visibility.get(sid, [])) for sid in story_ids}

    def list_tags(self) -> list[TagRecord]:
        return sorted(self.tags.values(), key=lambda t: t.name)

    def find_tags_by_names(self, names: Iterable[str]) -> list[TagRecord]:
        wanted = set(names)
        return [tag for tag in self.tags.values() if tag.name in wanted]

    def create_tag(self, name: str, icon: Optional[str] = None) -> TagRecord:
        if any(tag.name == name for tag in self.tags.values()):
            raise BackendError(f"Tag {name} already exists")
        record = TagRecord(id=uuid.uuid4().hex, name=name, icon=icon)
        self.tags[record.id] = record
        return record

    def delete_tags_if_unused(self, tag_ids: Iterable[str]) -> list[str]:
        used = {tag_id for _, tag_id in self.story_tags}
        deleted = []
        for tag_id in tag_ids:
            if tag_id in self.tags and tag_id not in used:
                del self.tags[tag_id]
                deleted.append(tag_id)
        return deleted

    def story_ids_for_tags(self, tag_ids: Iterable[str]) -> set[str]:
        wanted = set(tag_ids)
        return {story_id for story_id, tag_id in self.story_tags if tag_id in wanted}

    def add_story_tags(self, story_id: str, tag_ids: Iterable[str]) -> None:
        for tag_id in tag_ids:
            if tag_id not in self.tags:
                raise BackendError(f"Unknown tag {tag_id}")
            self.story_tags.setdefault((story_id, tag_id), time.time())

    def delete_story_tags(self, story_id: str) -> None:
        for key in [k for k in self.story_tags if k[0] == story_id]:
            del self.story_tags[key]

    def tags_for_stories(self, story_ids: Iterable[str]) -> Dict[str, list[TagRecord]]:
        result: Dict[str, list[TagRecord]] = {sid: [] for sid in story_ids}
        ordered = sorted(self.story_tags.items(), key=lambda item: item[1])
        for (story_id, tag_id), _ in ordered:
            if story_id in result and tag_id in self.tags:
                result[story_id].append(self.tags[tag_id])
        return result

    def list_comments(self, story_id: str) -> list[CommentRecord]:
        comments = [c for c in self.comments.values() if c.story_id == story_id]
        return sorted(comments, key=lambda c: c.created_at, reverse=True)

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        return self.comments.get(comment_id)

    def create_comment(
        self, story_id: str, user_id: str, content: str, parent_id: Optional[str] = None
    ) -> CommentRecord:
        record = CommentRecord(
            id=uuid.uuid4().hex,
            story_id=story_id,
            user_id=user_id,
            content=content,
            parent_id=parent_id,
        )
        self.comments[record.id] = record
        return record

    def delete_comment(self, comment_id: str) -> list[str]:
        if self.comments.pop(comment_id, None) is None:
            return []
        promoted = []
        for comment in self.comments.values():
            if comment.parent_id == comment_id:
                comment.parent_id = None
                promoted.append(comment.id)
        return promoted

    def has_like(self, user_id: str, story_id: str) -> bool:
        return (user_id, story_id) in self.likes

    def add_like(self, user_id: str, story_id: str) -> None:
        self.likes.setdefault((user_id, story_id), time.time())

    def remove_like(self, user_id: str, story_id: str) -> None:
        self.likes.pop((user_id, story_id), None)

    def count_likes(self, story_id: str) -> int:
        return sum(1 for _, sid in self.likes if sid == story_id)

    def has_bookmark(self, user_id: str, story_id: str) -> bool:
        return (user_id, story_id) in self.bookmarks

    def add_bookmark(self, user_id: str, story_id: str) -> None:
        self.bookmarks.setdefault((user_id, story_id), time.time())

    def remove_bookmark(self, user_id: str, story_id: str) -> None:
        self.bookmarks.pop((user_id, story_id), None)

    def list_bookmarked_story_ids(self, user_id: str) -> list[str]:
        rows = [(created, sid) for (uid, sid), created in self.bookmarks.items() if uid == user_id]
        return [sid for _, sid in sorted(rows, reverse=True)]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_profile(self, row: "ProfileRow") -> ProfileRecord:
        return ProfileRecord(
            id=row.id,
            display_name=row.display_name,
            email=row.email,
            relationship=row.relationship,
            bio=row.bio,
            avatar_url=row.avatar_url,
            is_verified=bool(row.is_verified),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_story(self, row: "StoryRow") -> StoryRecord:
        return StoryRecord(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            description=row.description or "",
            thumbnail_url=row.thumbnail_url or "",
            audio_url=row.audio_url or "",
            video_url=row.video_url or "",
            media=list(row.media or []),
            transcript_question=row.transcript_question or "",
            transcript_answer=row.transcript_answer or "",
            duration=row.duration or 0.0,
            is_published=bool(row.is_published),
            view_count=row.view_count or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_tag(self, row: "TagRow") -> TagRecord:
        return TagRecord(id=row.id, name=row.name, icon=row.icon, created_at=row.created_at)

    def _to_comment(self, row: "CommentRow") -> CommentRecord:
        return CommentRecord(
            id=row.id,
            story_id=row.story_id,
            user_id=row.user_id,
            content=row.content,
            parent_id=row.parent_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        with self.Session() as session:
            row = session.get(ProfileRow, user_id)
            return self._to_profile(row) if row else None

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileRecord]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(select(ProfileRow).where(ProfileRow.id.in_(ids))).scalars()
            return {row.id: self._to_profile(row) for row in rows}

    def upsert_profile(self, profile: ProfileRecord) -> ProfileRecord:
        now = time.time()
        with self.Session() as session:
            row = session.get(ProfileRow, profile.id)
            if row is None:
                row = ProfileRow(id=profile.id, created_at=profile.created_at)
                session.add(row)
            row.display_name = profile.display_name
            row.email = profile.email
            row.relationship = profile.relationship
            row.bio = profile.bio
            row.avatar_url = profile.avatar_url
            row.is_verified = profile.is_verified
            row.updated_at = now
            session.commit()
            session.refresh(row)
            return self._to_profile(row)

    def set_profile_verified(self, user_id: str, verified: bool = True) -> bool:
        with self.Session() as session:
            row = session.get(ProfileRow, user_id)
            if not row:
                return False
            row.is_verified = verified
            row.updated_at = time.time()
            session.commit()
            return True

    def create_story(self, user_id: str, title: str, **fields) -> StoryRecord:
        record = StoryRecord(id=uuid.uuid4().hex, user_id=user_id, title=title, **fields)
        with self.Session() as session:
            row = StoryRow(**record.as_dict())
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_story(row)

    def get_story(self, story_id: str) -> Optional[StoryRecord]:
        with self.Session() as session:
            row = session.get(StoryRow, story_id)
            return self._to_story(row) if row else None

    def update_story(self, story_id: str, **fields) -> Optional[StoryRecord]:
        with self.Session() as session:
            row = session.get(StoryRow, story_id)
            if not row:
                return None
            for key, value in fields.items():
                if key not in STORY_UPDATABLE_FIELDS:
                    raise ValueError(f"Cannot update story field {key}")
                setattr(row, key, value)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_story(row)

    def delete_story(self, story_id: str) -> Optional[StoryRecord]:
        with self.Session() as session:
            row = session.get(StoryRow, story_id)
            if not row:
                return None
            record = self._to_story(row)
            for model in (StoryVisibilityRow, StoryTagRow, CommentRow, LikeRow, BookmarkRow):
                session.execute(delete(model).where(model.story_id == story_id))
            session.delete(row)
            session.commit()
            return record

    def increment_view_count(self, story_id: str) -> int:
        with self.Session() as session:
            session.execute(
                update(StoryRow)
                .where(StoryRow.id == story_id)
                .values(view_count=StoryRow.view_count + 1)
            )
            session.commit()
            count = session.execute(
                select(StoryRow.view_count).where(StoryRow.id == story_id)
            ).scalar_one_or_none()
            return count or 0

    def query_stories(self, query: StoryQuery) -> tuple[list[StoryRecord], int]:
        stmt = select(StoryRow)
        if query.published_only:
            stmt = stmt.where(StoryRow.is_published.is_(True))
        if query.created_after is not None:
            stmt = stmt.where(StoryRow.created_at > query.created_after)
        if query.user_id is not None:
            stmt = stmt.where(StoryRow.user_id == query.user_id)
        if query.story_ids is not None:
            stmt = stmt.where(StoryRow.id.in_(sorted(query.story_ids)))
        if query.visibility is not None:
            visible_ids = select(StoryVisibilityRow.story_id).where(
                StoryVisibilityRow.visibility_type.in_(list(query.visibility))
            )
            stmt = stmt.where(StoryRow.id.in_(visible_ids))
        if query.search:
            pattern = f"%{_escape_like(query.search)}%"
            stmt = stmt.where(
                or_(
                    StoryRow.title.ilike(pattern, escape="\\"),
                    StoryRow.description.ilike(pattern, escape="\\"),
                )
            )

        if query.sort == SortOrder.AZ:
            ordered = stmt.order_by(func.lower(StoryRow.title).asc())
        elif query.sort == SortOrder.OLDEST:
            ordered = stmt.order_by(StoryRow.created_at.asc())
        else:
            ordered = stmt.order_by(StoryRow.created_at.desc())
        ordered = ordered.offset(query.offset)
        if query.limit is not None:
            ordered = ordered.limit(query.limit)

        with self.Session() as session:
            total = session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
            rows = session.execute(ordered).scalars().all()
            return [self._to_story(row) for row in rows], total

    def add_story_visibility(self, story_id: str, visibility_types: Iterable[str]) -> None:
        now = time.time()
        with self.Session() as session:
            existing = set(
                session.execute(
                    select(StoryVisibilityRow.visibility_type).where(
                        StoryVisibilityRow.story_id == story_id
                    )
                ).scalars()
            )
            for value in visibility_types:
                if value in existing:
                    continue
                existing.add(value)
                session.add(
                    StoryVisibilityRow(story_id=story_id, visibility_type=value, created_at=now)
                )
            session.commit()

    def delete_story_visibility(self, story_id: str) -> None:
        with self.Session() as session:
            session.execute(
                delete(StoryVisibilityRow).where(StoryVisibilityRow.story_id == story_id)
            )
            session.commit()

    def get_story_visibility(self, story_ids: Iterable[str]) -> Dict[str, list[str]]:
        ids = list(story_ids)
        result: Dict[str, list[str]] = {sid: [] for sid in ids}
        if not ids:
            return result
        with self.Session() as session:
            rows = session.execute(
                select(StoryVisibilityRow)
                .where(StoryVisibilityRow.story_id.in_(ids))
                .order_by(StoryVisibilityRow.created_at.asc())
            ).scalars()
            for row in rows:
                result[row.story_id].append(row.visibility_type)
        return result

    def list_tags(self) -> list[TagRecord]:
        with self.Session() as session:
            rows = session.execute(select(TagRow).order_by(TagRow.name.asc())).scalars()
            return [self._to_tag(row) for row in rows]

    def find_tags_by_names(self, names: Iterable[str]) -> list[TagRecord]:
        wanted = list(set(names))
        if not wanted:
            return []
        with self.Session() as session:
            rows = session.execute(select(TagRow).where(TagRow.name.in_(wanted))).scalars()
            return [self._to_tag(row) for row in rows]

    def create_tag(self, name: str, icon: Optional[str] = None) -> TagRecord:
        with self.Session() as session:
            row = TagRow(id=uuid.uuid4().hex, name=name, icon=icon, created_at=time.time())
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_tag(row)

    def delete_tags_if_unused(self, tag_ids: Iterable[str]) -> list[str]:
        ids = list(tag_ids)
        if not ids:
            return []
        with self.Session() as session:
            used = set(
                session.execute(
                    select(StoryTagRow.tag_id).where(StoryTagRow.tag_id.in_(ids))
                ).scalars()
            )
            unused = [tag_id for tag_id in ids if tag_id not in used]
            if unused:
                session.execute(delete(TagRow).where(TagRow.id.in_(unused)))
            session.commit()
            return unused

    def story_ids_for_tags(self, tag_ids: Iterable[str]) -> set[str]:
        ids = list(tag_ids)
        if not ids:
            return set()
        with self.Session() as session:
            return set(
                session.execute(
                    select(StoryTagRow.story_id).where(StoryTagRow.tag_id.in_(ids))
                ).scalars()
            )

    def add_story_tags(self, story_id: str, tag_ids: Iterable[str]) -> None:
        now = time.time()
        with self.Session() as session:
            for tag_id in dict.fromkeys(tag_ids):
                if session.get(TagRow, tag_id) is None:
                    raise BackendError(f"Unknown tag {tag_id}")
                if session.get(StoryTagRow, (story_id, tag_id)) is None:
                    session.add(StoryTagRow(story_id=story_id, tag_id=tag_id, created_at=now))
            session.commit()

    def delete_story_tags(self, story_id: str) -> None:
        with self.Session() as session:
            session.execute(delete(StoryTagRow).where(StoryTagRow.story_id == story_id))
            session.commit()

    def tags_for_stories(self, story_ids: Iterable[str]) -> Dict[str, list[TagRecord]]:
        ids = list(story_ids)
        result: Dict[str, list[TagRecord]] = {sid: [] for sid in ids}
        if not ids:
            return result
        with self.Session() as session:
            rows = session.execute(
                select(StoryTagRow.story_id, TagRow)
                .join(TagRow, TagRow.id == StoryTagRow.tag_id)
                .where(StoryTagRow.story_id.in_(ids))
                .order_by(StoryTagRow.created_at.asc())
            ).all()
            for story_id, tag in rows:
                result[story_id].append(self._to_tag(tag))
        return result

    def list_comments(self, story_id: str) -> list[CommentRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(CommentRow)
                .where(CommentRow.story_id == story_id)
                .order_by(CommentRow.created_at.desc())
            ).scalars()
            return [self._to_comment(row) for row in rows]

    def get_comment(self, comment_id: str) -> Optional[CommentRecord]:
        with self.Session() as session:
            row = session.get(CommentRow, comment_id)
            return self._to_comment(row) if row else None

    def create_comment(
        self, story_id: str, user_id: str, content: str, parent_id: Optional[str] = None
    ) -> CommentRecord:
        now = time.time()
        with self.Session() as session:
            row = CommentRow(
                id=uuid.uuid4().hex,
                story_id=story_id,
                user_id=user_id,
                content=content,
                parent_id=parent_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_comment(row)

    def delete_comment(self, comment_id: str) -> list[str]:
        with self.Session() as session:
            row = session.get(CommentRow, comment_id)
            if not row:
                return []
            promoted = list(
                session.execute(
                    select(CommentRow.id).where(CommentRow.parent_id == comment_id)
                ).scalars()
            )
            session.execute(
                update(CommentRow)
                .where(CommentRow.parent_id == comment_id)
                .values(parent_id=None)
            )
            session.delete(row)
            session.commit()
            return promoted

    def _has_pair(self, model, user_id: str, story_id: str) -> bool:
        with self.Session() as session:
            return session.get(model, (user_id, story_id)) is not None

    def _add_pair(self, model, user_id: str, story_id: str) -> None:
        with self.Session() as session:
            if session.get(model, (user_id, story_id)) is None:
                session.add(model(user_id=user_id, story_id=story_id, created_at=time.time()))
                session.commit()

    def _remove_pair(self, model, user_id: str, story_id: str) -> None:
        with self.Session() as session:
            session.execute(
                delete(model).where(model.user_id == user_id, model.story_id == story_id)
            )
            session.commit()

    def has_like(self, user_id: str, story_id: str) -> bool:
        return self._has_pair(LikeRow, user_id, story_id)

    def add_like(self, user_id: str, story_id: str) -> None:
        self._add_pair(LikeRow, user_id, story_id)

    def remove_like(self, user_id: str, story_id: str) -> None:
        self._remove_pair(LikeRow, user_id, story_id)

    def count_likes(self, story_id: str) -> int:
        with self.Session() as session:
            return session.execute(
                select(func.count()).select_from(LikeRow).where(LikeRow.story_id == story_id)
            ).scalar_one()

    def has_bookmark(self, user_id: str, story_id: str) -> bool:
        return self._has_pair(BookmarkRow, user_id, story_id)

    def add_bookmark(self, user_id: str, story_id: str) -> None:
        self._add_pair(BookmarkRow, user_id, story_id)

    def remove_bookmark(self, user_id: str, story_id: str) -> None:
        self._remove_pair(BookmarkRow, user_id, story_id)

    def list_bookmarked_story_ids(self, user_id: str) -> list[str]:
        with self.Session() as session:
            return list(
                session.execute(
                    select(BookmarkRow.story_id)
                    .where(BookmarkRow.user_id == user_id)
                    .order_by(BookmarkRow.created_at.desc())
                ).scalars()
            )


Base = declarative_base()


class ProfileRow(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    relationship = Column("relationship_to_author", String, nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String, nullable=True)
    is_verified = Column("is_family_verified", Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class StoryRow(Base):
    __tablename__ = "stories"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    audio_url = Column(String, nullable=True)
    video_url = Column(String, nullable=True)
    media = Column(JSON, nullable=False, default=list)
    transcript_question = Column(Text, nullable=True)
    transcript_answer = Column(Text, nullable=True)
    duration = Column(Float, nullable=False, default=0.0)
    is_published = Column(Boolean, nullable=False, default=True)
    view_count = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class TagRow(Base):
    __tablename__ = "tags"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    icon = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class StoryTagRow(Base):
    __tablename__ = "story_tags"

    story_id = Column(String, primary_key=True)
    tag_id = Column(String, primary_key=True, index=True)
    created_at = Column(Float, nullable=False)


class StoryVisibilityRow(Base):
    __tablename__ = "story_visibility"

    story_id = Column(String, primary_key=True)
    visibility_type = Column(String, primary_key=True, index=True)
    created_at = Column(Float, nullable=False)


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True)
    story_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    parent_id = Column(String, nullable=True, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class LikeRow(Base):
    __tablename__ = "likes"

    user_id = Column(String, primary_key=True)
    story_id = Column(String, primary_key=True, index=True)
    created_at = Column(Float, nullable=False)


class BookmarkRow(Base):
    __tablename__ = "bookmarks"

    user_id = Column(String, primary_key=True)
    story_id = Column(String, primary_key=True, index=True)
    created_at = Column(Float, nullable=False)
