"""
Threaded comments: tree assembly for display plus add/delete operations.

Threads are two levels deep. A reply to a reply is attached to the top of
its thread. Deleting a comment promotes its replies to top level rather
than removing other people's words.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from memoirs.access import get_accessible_story
from memoirs.context import ViewerContext
from memoirs.db import CommentRecord, DbClient
from memoirs.errors import NotFound, PermissionDenied, ValidationFailed

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


@dataclass
class CommentNode:
    comment: CommentRecord
    replies: list["CommentNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.comment.id


def _thread_root(comment_id: str, parents: dict[str, Optional[str]]) -> Optional[str]:
    """
    Top-level ancestor of a comment among the loaded comments.

    Returns None when the comment has no loaded parent or its parent chain
    loops back on itself.
    """
    seen = {comment_id}
    root = None
    current = parents.get(comment_id)
    while current is not None and current in parents:
        if current in seen:
            return None
        seen.add(current)
        root = current
        current = parents[current]
    return root


def build_comment_tree(comments: Iterable[CommentRecord]) -> list[CommentNode]:
    nodes: dict[str, CommentNode] = {}
    for comment in comments:
        if comment.id not in nodes:
            nodes[comment.id] = CommentNode(comment=comment)

    parents = {cid: node.comment.parent_id for cid, node in nodes.items()}
    roots: list[CommentNode] = []
    for cid, node in nodes.items():
        root_id = _thread_root(cid, parents)
        if root_id is None:
            roots.append(node)
        else:
            nodes[root_id].replies.append(node)
    return roots


def count_nodes(roots: Iterable[CommentNode]) -> int:
    return sum(1 + len(node.replies) for node in roots)


def remove_from_tree(roots: list[CommentNode], comment_id: str) -> list[CommentNode]:
    """Detach a comment; its replies take its place at top level."""
    result: list[CommentNode] = []
    for node in roots:
        if node.id == comment_id:
            result.extend(node.replies)
            node.replies = []
            continue
        node.replies = [reply for reply in node.replies if reply.id != comment_id]
        result.append(node)
    return result


def _resolve_parent(db: DbClient, story_id: str, parent_id: str) -> str:
    parent = db.get_comment(parent_id)
    if parent is None or parent.story_id != story_id:
        raise NotFound("The comment you replied to no longer exists")
    seen = {parent.id}
    while parent.parent_id:
        grandparent = db.get_comment(parent.parent_id)
        if grandparent is None or grandparent.id in seen:
            break
        seen.add(grandparent.id)
        parent = grandparent
    return parent.id


def add_comment(
    db: DbClient,
    viewer: ViewerContext,
    story_id: str,
    content: str,
    parent_id: Optional[str] = None,
) -> CommentRecord:
    viewer.require_member()
    get_accessible_story(db, viewer, story_id)
    text = (content or "").strip()
    if not text:
        raise ValidationFailed("Comment cannot be empty")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationFailed(f"Comments are limited to {MAX_COMMENT_LENGTH} characters")
    if parent_id:
        parent_id = _resolve_parent(db, story_id, parent_id)
    comment = db.create_comment(story_id, viewer.user_id, text, parent_id=parent_id)
    logger.info("Comment %s added to story %s by %s", comment.id, story_id, viewer.user_id)
    return comment


def delete_comment(db: DbClient, viewer: ViewerContext, comment_id: str) -> list[str]:
    """Delete the viewer's own comment; returns ids of replies promoted to top level."""
    comment = db.get_comment(comment_id)
    if comment is None:
        raise NotFound("Comment not found")
    if comment.user_id != viewer.user_id:
        raise PermissionDenied("Only the author can delete this comment")
    promoted = db.delete_comment(comment_id)
    if promoted:
        logger.info("Deleted comment %s; promoted replies %s", comment_id, promoted)
    return promoted


def load_comment_tree(db: DbClient, viewer: ViewerContext, story_id: str) -> list[CommentNode]:
    get_accessible_story(db, viewer, story_id)
    return build_comment_tree(db.list_comments(story_id))
