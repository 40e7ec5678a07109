from collections import defaultdict
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from schemas.posts import CommentResponse, CreateCommentRequest, CreatePostRequest, PostResponse, UpdatePostRequest
from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from backend import redis_backend
from constants import MAX_POST_LENGTH
from database import get_db
from models import Comment, Post, Room
from room_access import commit_or_500, check_not_banned, check_room_password, get_room_or_404, require_owner
from room_utils import format_display_name, now_utc, organize_comments
from logging_config import get_logger

logger = get_logger(__name__)

posts_router = APIRouter(prefix="/rooms/{code}/posts", tags=["posts"])


def member_room(db: Session, code: str, password: Optional[str]) -> Room:
    room = get_room_or_404(db, code)
    check_room_password(room, password)
    return room


def get_post_or_404(db: Session, room: Room, post_id: UUID) -> Post:
    post = db.get(Post, post_id)
    if not post or post.room_id != room.id or post.deleted_at is not None:
        logger.warning(f"Post {post_id} not found in room {room.code}")
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def comment_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "post_id": comment.post_id,
        "parent_comment_id": comment.parent_comment_id,
        "author_display": comment.author_display,
        "content": comment.content,
        "created_at": comment.created_at,
    }


def visible_comments(db: Session, post_ids: list) -> list[Comment]:
    if not post_ids:
        return []
    return db.scalars(
        select(Comment).where(Comment.post_id.in_(post_ids), Comment.deleted_at.is_(None))
    ).all()


def serialize_post(post: Post, comments: Optional[list[Comment]] = None) -> PostResponse:
    flat = [comment_dict(c) for c in comments or []]
    return PostResponse(
        id=post.id,
        room_id=post.room_id,
        author_display=post.author_display,
        content=post.content,
        media=post.media or [],
        pinned=post.pinned,
        created_at=post.created_at,
        edited_at=post.edited_at,
        comment_count=len(flat),
        comments=organize_comments(flat),
    )


@posts_router.get("/", response_model=list[PostResponse])
async def list_posts(
    code: str,
    password: Optional[str] = Query(None, description="Room password (required if room is password protected)"),
    db: Session = Depends(get_db),
):
    """
    List the visible posts of a room with their threaded comments.

    Pinned posts come first, then newest first. Soft-deleted posts and
    comments are left out.
    """
    room = member_room(db, code, password)

    posts = db.scalars(
        select(Post)
        .where(Post.room_id == room.id, Post.deleted_at.is_(None))
        .order_by(Post.pinned.desc(), Post.created_at.desc())
    ).all()

    comments_by_post = defaultdict(list)
    for comment in visible_comments(db, [p.id for p in posts]):
        comments_by_post[comment.post_id].append(comment)

    logger.debug(f"Room {room.code}: {len(posts)} posts")
    return [serialize_post(post, comments_by_post[post.id]) for post in posts]


@posts_router.post("/", status_code=201, response_model=PostResponse)
async def create_post(
    code: str,
    post: CreatePostRequest,
    password: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    room = member_room(db, code, password)

    author = format_display_name(post.author_display)
    if not author:
        raise HTTPException(status_code=400, detail="Please enter a display name")
    check_not_banned(db, room, author)

    content = (post.content or "").strip()
    if not content and not post.media:
        raise HTTPException(status_code=400, detail="Add text or attach media to post")
    if len(content) > MAX_POST_LENGTH:
        raise HTTPException(status_code=400, detail=f"Posts are limited to {MAX_POST_LENGTH} characters")

    new_post = Post(
        room_id=room.id,
        author_display=author,
        content=content,
        media=[m.model_dump() for m in post.media],
    )
    db.add(new_post)
    commit_or_500(db, "create post")

    response = serialize_post(new_post)
    redis_backend.publish_change(room.id, "posts", "INSERT", response.model_dump(mode="json"))
    logger.info(f"Post {new_post.id} created in room {room.code} by {author!r} ({len(post.media)} media)")
    return response


@posts_router.patch("/{post_id}", response_model=PostResponse)
async def update_post(
    code: str,
    post_id: UUID,
    update: UpdatePostRequest,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    """Pin, unpin or edit a post. Owner only."""
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)
    post = get_post_or_404(db, room, post_id)

    if update.pinned is not None:
        post.pinned = update.pinned
    if update.content is not None:
        content = update.content.strip()
        if not content and not post.media:
            raise HTTPException(status_code=400, detail="Add text or attach media to post")
        if len(content) > MAX_POST_LENGTH:
            raise HTTPException(status_code=400, detail=f"Posts are limited to {MAX_POST_LENGTH} characters")
        post.content = content
        post.edited_at = now_utc()
    commit_or_500(db, "update post")

    response = serialize_post(post, visible_comments(db, [post.id]))
    redis_backend.publish_change(room.id, "posts", "UPDATE", response.model_dump(mode="json", exclude={"comments"}))
    logger.info(f"Post {post.id} updated in room {room.code}: pinned={post.pinned}")
    return response


@posts_router.delete("/{post_id}")
async def delete_post(
    code: str,
    post_id: UUID,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)
    post = get_post_or_404(db, room, post_id)

    # Soft delete; the row stays for reports
    post.deleted_at = now_utc()
    commit_or_500(db, "delete post")

    redis_backend.publish_change(room.id, "posts", "DELETE", {"id": str(post.id)})
    logger.info(f"Post {post.id} deleted in room {room.code}")
    return {"message": "The post has been removed"}


@posts_router.post("/{post_id}/comments", status_code=201, response_model=CommentResponse)
async def create_comment(
    code: str,
    post_id: UUID,
    comment: CreateCommentRequest,
    password: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    room = member_room(db, code, password)
    post = get_post_or_404(db, room, post_id)

    author = format_display_name(comment.author_display)
    if not author:
        raise HTTPException(status_code=400, detail="Please enter a display name")
    check_not_banned(db, room, author)

    content = (comment.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Please enter a comment")
    if len(content) > MAX_POST_LENGTH:
        raise HTTPException(status_code=400, detail=f"Comments are limited to {MAX_POST_LENGTH} characters")

    parent_id = None
    if comment.parent_comment_id:
        parent = db.get(Comment, comment.parent_comment_id)
        if not parent or parent.deleted_at is not None:
            raise HTTPException(status_code=404, detail="Comment not found")
        if parent.post_id != post.id:
            raise HTTPException(status_code=400, detail="Reply must belong to the same post")
        # Threads are one level deep: replies to replies go under the root
        parent_id = parent.parent_comment_id or parent.id

    new_comment = Comment(
        post_id=post.id,
        parent_comment_id=parent_id,
        author_display=author,
        content=content,
    )
    db.add(new_comment)
    commit_or_500(db, "post comment")

    response = CommentResponse(**comment_dict(new_comment))
    redis_backend.publish_change(room.id, "comments", "INSERT", response.model_dump(mode="json"))
    logger.info(f"Comment {new_comment.id} on post {post.id} in room {room.code} by {author!r}")
    return response


@posts_router.delete("/{post_id}/comments/{comment_id}")
async def delete_comment(
    code: str,
    post_id: UUID,
    comment_id: UUID,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)
    post = get_post_or_404(db, room, post_id)

    comment = db.get(Comment, comment_id)
    if not comment or comment.post_id != post.id or comment.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Comment not found")

    comment.deleted_at = now_utc()
    commit_or_500(db, "delete comment")

    redis_backend.publish_change(room.id, "comments", "DELETE", {"id": str(comment.id), "post_id": str(post.id)})
    logger.info(f"Comment {comment.id} deleted in room {room.code}")
    return {"message": "The comment has been removed"}
