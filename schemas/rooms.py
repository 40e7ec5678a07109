from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CreateRoomRequest(BaseModel):
    title: str
    description: Optional[str] = None
    password: Optional[str] = None
    is_ephemeral: Optional[bool] = False
    expiry: Optional[str] = Field("never", description="never | 1h | 6h | 24h | 7d")

class CreateRoomResponse(BaseModel):
    room_id: str
    code: str
    owner_token: str
    join_url: str
    ws_url: str
    expires_at: Optional[datetime] = None

class JoinRoomRequest(BaseModel):
    display_name: str
    password: Optional[str] = None

class JoinRoomResponse(BaseModel):
    code: str
    title: str
    display_name: str
    is_owner: bool
    ws_url: str
    expires_at: Optional[datetime] = None

class UpdateRoomRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    # Empty string removes the password
    password: Optional[str] = None
    is_ephemeral: Optional[bool] = None
    expiry: Optional[str] = None

class RoomDetailsResponse(BaseModel):
    room_id: str
    code: str
    title: str
    description: Optional[str]
    created_at: datetime
    expires_at: Optional[datetime]
    is_ephemeral: bool
    requires_password: bool
    is_expired: bool
