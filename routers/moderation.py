from fastapi import APIRouter, Depends, Header, HTTPException, Request
from schemas.moderation import BanResponse, CreateBanRequest, CreateReportRequest, ReportResponse, UpdateReportRequest
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from backend import redis_backend
from constants import EXPIRY_OPTIONS
from database import get_db
from models import Ban, Comment, Post, Report
from room_access import commit_or_500, get_room_or_404, require_owner
from room_utils import calculate_expiry, format_display_name, is_expired
from logging_config import get_logger

logger = get_logger(__name__)

moderation_router = APIRouter(tags=["moderation"])

DEFAULT_REPORT_REASON = "User reported content"


@moderation_router.get("/rooms/{code}/bans", response_model=list[BanResponse])
async def list_bans(
    code: str,
    include_expired: bool = False,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)
    bans = db.scalars(select(Ban).where(Ban.room_id == room.id).order_by(Ban.created_at.desc())).all()
    if not include_expired:
        bans = [b for b in bans if not is_expired(b.expires_at)]
    return bans


@moderation_router.post("/rooms/{code}/bans", status_code=201, response_model=BanResponse)
async def create_ban(
    code: str,
    ban: CreateBanRequest,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)

    display_name = format_display_name(ban.display_name)
    if not display_name:
        raise HTTPException(status_code=400, detail="Please enter a display name")
    if ban.duration is not None and ban.duration not in EXPIRY_OPTIONS:
        raise HTTPException(status_code=400, detail=f"Duration must be one of {', '.join(EXPIRY_OPTIONS)}")

    new_ban = Ban(room_id=room.id, display_name=display_name, expires_at=calculate_expiry(ban.duration))
    db.add(new_ban)
    commit_or_500(db, "ban display name")

    response = BanResponse.model_validate(new_ban)
    redis_backend.publish_change(room.id, "bans", "INSERT", response.model_dump(mode="json"))
    logger.info(f"Display name {display_name!r} banned in room {room.code} until {new_ban.expires_at or 'forever'}")
    return response


@moderation_router.delete("/rooms/{code}/bans/{ban_id}")
async def delete_ban(
    code: str,
    ban_id: UUID,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)

    ban = db.get(Ban, ban_id)
    if not ban or ban.room_id != room.id:
        raise HTTPException(status_code=404, detail="Ban not found")
    display_name = ban.display_name
    db.delete(ban)
    commit_or_500(db, "lift ban")

    redis_backend.publish_change(room.id, "bans", "DELETE", {"id": str(ban_id)})
    logger.info(f"Ban on {display_name!r} lifted in room {room.code}")
    return {"message": "Ban lifted"}


@moderation_router.post("/reports", status_code=201, response_model=ReportResponse)
async def create_report(report: CreateReportRequest, request: Request, db: Session = Depends(get_db)):
    """Report a post or comment for review by the room owner."""
    model = Post if report.content_type == "post" else Comment
    target = db.get(model, report.content_id)
    if not target or target.deleted_at is not None:
        logger.warning(f"Report rejected: {report.content_type} {report.content_id} not found")
        raise HTTPException(status_code=404, detail=f"{report.content_type.capitalize()} not found")

    new_report = Report(
        content_type=report.content_type,
        content_id=report.content_id,
        reason=(report.reason or "").strip() or DEFAULT_REPORT_REASON,
        reporter_meta={
            "ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        },
    )
    db.add(new_report)
    commit_or_500(db, "submit report")

    logger.info(f"Report {new_report.id} filed against {report.content_type} {report.content_id}")
    return new_report


@moderation_router.get("/rooms/{code}/reports", response_model=list[ReportResponse])
async def list_reports(
    code: str,
    status: Optional[str] = None,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)

    room_posts = select(Post.id).where(Post.room_id == room.id)
    room_comments = select(Comment.id).where(Comment.post_id.in_(room_posts))
    query = select(Report).where(
        or_(
            and_(Report.content_type == "post", Report.content_id.in_(room_posts)),
            and_(Report.content_type == "comment", Report.content_id.in_(room_comments)),
        )
    )
    if status:
        query = query.where(Report.status == status)
    return db.scalars(query.order_by(Report.created_at.desc())).all()


@moderation_router.patch("/rooms/{code}/reports/{report_id}", response_model=ReportResponse)
async def update_report(
    code: str,
    report_id: UUID,
    update: UpdateReportRequest,
    owner_token: Optional[str] = Header(None, alias="X-Owner-Token"),
    db: Session = Depends(get_db),
):
    room = get_room_or_404(db, code)
    require_owner(room, owner_token)

    report = db.get(Report, report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")

    # Only reports about this room's content
    if report.content_type == "post":
        post = db.get(Post, report.content_id)
    else:
        comment = db.get(Comment, report.content_id)
        post = comment.post if comment else None
    if not post or post.room_id != room.id:
        raise HTTPException(status_code=404, detail="Report not found")

    report.status = update.status
    commit_or_500(db, "update report")
    logger.info(f"Report {report.id} marked {report.status} in room {room.code}")
    return report
