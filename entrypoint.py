import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app
log_level = os.getenv("LOG_LEVEL", "DEBUG")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from app import app
from backend import redis_backend
from database import SessionLocal, init_db
from room_access import purge_expired_rooms
from logging_config import get_logger

logger = get_logger(__name__)


def prepare():
    """Create tables, drop expired ephemeral rooms and check Redis."""
    init_db()
    with SessionLocal() as db:
        purged = purge_expired_rooms(db)
    logger.info(f"Start-up purge removed {purged} expired ephemeral rooms")
    redis_backend.ping()


if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    prepare()
    logger.info(f"Starting BlackSite Rooms server on {host}:{port}")
    uvicorn.run("app:app", host=host, port=port, reload=os.getenv("RELOAD", "false").lower() == "true")
