from fastapi import APIRouter, Depends, Header, HTTPException, Request
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, JoinRoomRequest, JoinRoomResponse, RoomDetailsResponse, UpdateRoomRequest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
from backend import redis_backend
from constants import EXPIRY_OPTIONS
from database import get_db
from models import Room
from room_access import check_not_banned, check_room_password, delete_room, find_room, get_room_or_404, is_owner, require_owner
from room_utils import calculate_expiry, format_display_name, generate_owner_token, generate_room_code, hash_string, is_expired
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])

MAX_CODE_ATTEMPTS = 5


def client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def build_urls(request: Request, code: str):
    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{base_url}/#/room/{code}", f"{ws_base}/rooms/{code}/ws"


def validate_expiry_option(expiry: Optional[str]):
    if expiry is not None and expiry not in EXPIRY_OPTIONS:
        raise HTTPException(status_code=400, detail=f"Expiry must be one of {', '.join(EXPIRY_OPTIONS)}")


def room_details(room: Room) -> RoomDetailsResponse:
    return RoomDetailsResponse(
        room_id=str(room.id),
        code=room.code,
        title=room.title,
        description=room.description,
        created_at=room.created_at,
        expires_at=room.expiry_at,
        is_ephemeral=room.is_ephemeral,
        requires_password=bool(room.password_hash),
        is_expired=is_expired(room.expiry_at),
    )


@rooms_router.post("/", status_code=201, response_model=CreateRoomResponse)
async def create_room(room: CreateRoomRequest, request: Request, db: Session = Depends(get_db)):
    logger.info(f"Room creation request from {client_host(request)}, title: {room.title!r}, expiry: {room.expiry}")
    title = (room.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Please enter a room title")
    validate_expiry_option(room.expiry)

    owner_token = generate_owner_token()
    expires_at = calculate_expiry(room.expiry)

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = generate_room_code()
        # Ensure unique room code
        if find_room(db, code):
            logger.debug(f"Room code {code} already taken, retrying")
            continue

        new_room = Room(
            code=code,
            title=title,
            description=(room.description or "").strip() or None,
            owner_token_hash=hash_string(owner_token),
            is_ephemeral=bool(room.is_ephemeral),
            expiry_at=expires_at,
            password_hash=hash_string(room.password) if room.password else None,
        )
        try:
            db.add(new_room)
            db.commit()
        except IntegrityError:
            # Lost a race on the unique code
            db.rollback()
            logger.warning(f"Room code {code} collided on insert (attempt {attempt})")
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error creating room: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to create room")

        join_url, ws_url = build_urls(request, code)
        logger.info(f"Room {code} created successfully: id={new_room.id}, expires_at={expires_at}, ephemeral={new_room.is_ephemeral}")
        return CreateRoomResponse(
            room_id=str(new_room.id),
            code=code,
            owner_token=owner_token,
            join_url=join_url,
            ws_url=ws_url,
            expires_at=expires_at,
        )

    logger.error(f"Could not allocate a unique room code after {MAX_CODE_ATTEMPTS} attempts")
    raise HTTPException(status_code=500, detail="Failed to create room")


@rooms_router.get("/{code}", response_model=RoomDetailsResponse)
async def get_room_details(code: str, request: Request, db: Session = Depends(get_db)):
    """
    Look up a room by code before joining.

    Returns the title, description and whether a password is needed. The
    password itself is only checked on join.
    """
    logger.info(f"Room details request for {code} from {client_host(request)}")
    room = get_room_or_404(db, code)
    return room_details(room)


@rooms_router.post("/{code}/join", response_model=JoinRoomResponse)
async def join_room(
    code: str,
    join_room_request: JoinRoomRequest,
    request: Request,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    logger.info(f"Join room request for {code} from {client_host(request)}, display_name: {join_room_request.display_name!r}")

    display_name = format_display_name(join_room_request.display_name)
    if not display_name:
        raise HTTPException(status_code=400, detail="Please enter a display name")

    room = get_room_or_404(db, code)
    check_room_password(room, join_room_request.password)
    check_not_banned(db, room, display_name)

    _, ws_url = build_urls(request, room.code)
    logger.info(f"Join room successful for {room.code} as {display_name!r}")

    # Note: sessions live on the client; later requests repeat the display name
    # (and password) and are validated again
    return JoinRoomResponse(
        code=room.code,
        title=room.title,
        display_name=display_name,
        is_owner=is_owner(room, owner_token),
        ws_url=ws_url,
        expires_at=room.expiry_at,
    )


@rooms_router.patch("/{code}", response_model=RoomDetailsResponse)
async def update_room(
    code: str,
    update: UpdateRoomRequest,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    logger.info(f"Update room request for {code}")
    # Owners may revive an expired room by moving its expiry
    room = get_room_or_404(db, code, allow_expired=True)
    require_owner(room, owner_token)
    validate_expiry_option(update.expiry)

    if update.title is not None:
        title = update.title.strip()
        if not title:
            raise HTTPException(status_code=400, detail="Please enter a room title")
        room.title = title
    if update.description is not None:
        room.description = update.description.strip() or None
    if update.password is not None:
        room.password_hash = hash_string(update.password) if update.password else None
    if update.is_ephemeral is not None:
        room.is_ephemeral = update.is_ephemeral
    if update.expiry is not None:
        room.expiry_at = calculate_expiry(update.expiry)

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update room")

    details = room_details(room)
    redis_backend.publish_change(room.id, "rooms", "UPDATE", details.model_dump(mode="json"))
    logger.info(f"Room {room.code} updated by owner")
    return details


@rooms_router.delete("/{code}")
async def close_room(
    code: str,
    request: Request,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    # - Room row is deleted; posts, comments, bans and uploads cascade.
    # - Connected clients get a system message and are closed by the WebSocket cleanup
    logger.info(f"Close room request for {code} from {client_host(request)}")
    room = get_room_or_404(db, code, allow_expired=True)
    require_owner(room, owner_token)

    try:
        delete_room(db, room, reason="Room has been closed by owner")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error closing room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to close room")

    logger.info(f"Room {code} closed successfully by owner {client_host(request)}")
    return {"message": "Room closed successfully"}
