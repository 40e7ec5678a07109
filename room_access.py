from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend import redis_backend
from logging_config import get_logger
from models import Ban, Room
from room_utils import format_room_code, is_expired, is_valid_room_code, now_utc, verify_hash
from storage import media_storage

logger = get_logger(__name__)


def find_room(db: Session, code: str) -> Optional[Room]:
    return db.scalars(select(Room).where(Room.code == code).limit(1)).first()


def delete_room(db: Session, room: Room, reason: str = "Room has expired"):
    """Delete a room with everything it owns (posts, comments, bans, uploads, media).

    Connected clients are told through a ``room_closed`` system message.
    """
    room_id, code = room.id, room.code
    db.delete(room)
    db.commit()
    media_storage.delete_room(room_id)
    redis_backend.publish_system(room_id, reason, event="room_closed")
    logger.info(f"Room {code} ({room_id}) deleted")


def get_room_or_404(db: Session, code: str, allow_expired: bool = False) -> Room:
    """Resolve a room code to a live room.

    Raises 400 for malformed codes, 404 for unknown rooms and 410 once the
    room has expired. Expired ephemeral rooms are deleted on the spot.
    """
    formatted = format_room_code(code)
    if not is_valid_room_code(formatted):
        logger.info(f"Room lookup rejected: invalid code {code!r}")
        raise HTTPException(status_code=400, detail="Room code must be in format ABCD-1234")

    room = find_room(db, formatted)
    if not room:
        logger.warning(f"Room {formatted} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    if not allow_expired and is_expired(room.expiry_at):
        logger.info(f"Room {formatted} expired at {room.expiry_at}")
        if room.is_ephemeral:
            delete_room(db, room)
        raise HTTPException(status_code=410, detail="Room expired")
    return room


def check_room_password(room: Room, password: Optional[str]):
    if not room.password_hash:
        return
    if not password:
        logger.warning(f"Password required for room {room.code}")
        raise HTTPException(status_code=401, detail="Password required for this room")
    if not verify_hash(password, room.password_hash):
        logger.warning(f"Invalid password for room {room.code}")
        raise HTTPException(status_code=401, detail="Invalid password")


def find_active_ban(db: Session, room_id, display_name: str) -> Optional[Ban]:
    """Return the active ban for a display name, if any.

    Names compare case-insensitively. Bans without ``expires_at`` never lapse.
    """
    bans = db.scalars(
        select(Ban).where(
            Ban.room_id == room_id,
            func.lower(Ban.display_name) == display_name.lower(),
        )
    ).all()
    now = now_utc()
    for ban in bans:
        if not is_expired(ban.expires_at, now):
            return ban
    return None


def is_display_name_banned(db: Session, room_id, display_name: str) -> bool:
    return find_active_ban(db, room_id, display_name) is not None


def check_not_banned(db: Session, room: Room, display_name: str):
    if is_display_name_banned(db, room.id, display_name):
        logger.warning(f"Display name {display_name!r} is banned in room {room.code}")
        raise HTTPException(status_code=403, detail="This display name is not allowed in this room")


def is_owner(room: Room, owner_token: Optional[str]) -> bool:
    return verify_hash(owner_token, room.owner_token_hash)


def require_owner(room: Room, owner_token: Optional[str]):
    if not owner_token:
        raise HTTPException(status_code=401, detail="Owner token required")
    if not is_owner(room, owner_token):
        logger.warning(f"Owner check failed for room {room.code}")
        raise HTTPException(status_code=403, detail="You are not the owner of the room")


def purge_expired_rooms(db: Session) -> int:
    """Delete every ephemeral room whose expiry has passed."""
    rooms = db.scalars(select(Room).where(Room.is_ephemeral.is_(True), Room.expiry_at.is_not(None))).all()
    now = now_utc()
    purged = 0
    for room in rooms:
        if is_expired(room.expiry_at, now):
            delete_room(db, room)
            purged += 1
    if purged:
        logger.info(f"Purged {purged} expired ephemeral rooms")
    return purged


def commit_or_500(db: Session, action: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error trying to {action}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")
