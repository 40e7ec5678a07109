from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from schemas.uploads import UploadResponse
from sqlalchemy.orm import Session
from typing import Optional
from database import get_db
from models import Upload
from room_access import check_not_banned, check_room_password, commit_or_500, get_room_or_404
from room_utils import format_display_name
from storage import MediaRejected, max_media_bytes, media_storage, validate_media
from logging_config import get_logger

logger = get_logger(__name__)

uploads_router = APIRouter(prefix="/rooms/{code}/uploads", tags=["uploads"])


@uploads_router.post("/", status_code=201, response_model=UploadResponse)
async def upload_media(
    code: str,
    request: Request,
    file: UploadFile = File(...),
    uploader_display: str = Form(...),
    password: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Store an image or video in the room's media bucket.

    The returned item is what a post's ``media`` list expects.
    """
    room = get_room_or_404(db, code)
    check_room_password(room, password)

    uploader = format_display_name(uploader_display)
    if not uploader:
        raise HTTPException(status_code=400, detail="Please enter a display name")
    check_not_banned(db, room, uploader)

    mime_type = file.content_type or ""
    try:
        # Reject on the declared size first, then never read past the cap
        kind = validate_media(file.filename, mime_type, file.size)
        data = await file.read(max_media_bytes(kind) + 1)
        validate_media(file.filename, mime_type, len(data))
    except MediaRejected as e:
        logger.warning(f"Upload rejected in room {room.code}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    path = media_storage.object_path(room.id, mime_type)
    try:
        media_storage.upload(path, data)
    except OSError as e:
        logger.error(f"Upload error for {file.filename} in room {room.code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to upload {file.filename}")

    public_url = media_storage.get_public_url(path, base_url=media_storage.base_url or str(request.base_url))
    db.add(Upload(
        room_id=room.id,
        uploader_display=uploader,
        url=public_url,
        mime_type=mime_type,
        size=len(data),
    ))
    try:
        commit_or_500(db, "record upload")
    except HTTPException:
        media_storage.delete(path)
        raise

    logger.info(f"Stored {kind} {path} ({len(data)} bytes) for {uploader!r} in room {room.code}")
    return UploadResponse(url=public_url, type=kind, size=len(data), mime=mime_type)
