from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class MediaItem(BaseModel):
    url: str
    type: str = Field(..., pattern="^(image|video)$")
    size: int

class CreatePostRequest(BaseModel):
    author_display: str
    content: Optional[str] = ""
    media: list[MediaItem] = []

class UpdatePostRequest(BaseModel):
    pinned: Optional[bool] = None
    content: Optional[str] = None

class CreateCommentRequest(BaseModel):
    author_display: str
    content: str
    parent_comment_id: Optional[UUID] = None

class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    parent_comment_id: Optional[UUID] = None
    author_display: str
    content: str
    created_at: datetime
    replies: list["CommentResponse"] = []

class PostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    room_id: UUID
    author_display: str
    content: str
    media: list[MediaItem] = []
    pinned: bool
    created_at: datetime
    edited_at: Optional[datetime] = None
    comment_count: int = 0
    comments: list[CommentResponse] = []


CommentResponse.model_rebuild()
