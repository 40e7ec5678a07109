from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from routers.rooms import rooms_router
from routers.posts import posts_router
from routers.moderation import moderation_router
from routers.uploads import uploads_router
from backend import redis_backend
from database import SessionLocal
from room_access import check_not_banned, check_room_password, get_room_or_404
from room_utils import format_display_name
from storage import media_storage
import uuid
import json
import asyncio
from typing import Dict
from datetime import datetime, timezone
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

app = FastAPI(title="BlackSite Rooms")

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(posts_router)
app.include_router(moderation_router)
app.include_router(uploads_router)

# Public reads of the media bucket
app.mount(f"/{media_storage.bucket}", StaticFiles(directory=media_storage.ensure_bucket()), name=media_storage.bucket)

logger.info("FastAPI application initialized")

# In-memory connection tracking per room
# Format: {room_id: {connection_id: websocket}}
# NOTE: Each instance tracks only its own WebSocket connections. Redis pub/sub
# distributes change events across all instances, and each instance forwards
# them to its local connections.
room_connections: Dict[str, Dict[str, WebSocket]] = {}

# Background tasks for Redis pub/sub listeners per room
# Format: {room_id: task}
room_pubsub_tasks: Dict[str, asyncio.Task] = {}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def close_room_connections(room_id: str, reason: str):
    for conn_id, ws in list(room_connections.get(room_id, {}).items()):
        try:
            await ws.close(code=1000, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing connection {conn_id} in room {room_id}: {e}")


async def listen_to_redis_channel(room_id: str, pubsub):
    """Background task forwarding a room's change events to local connections.

    Takes ownership of ``pubsub`` and closes it on exit.
    """
    logger.info(f"Starting Redis pub/sub listener for room: {room_id}")
    try:
        channel = redis_backend.get_room_channel_name(room_id)
        logger.debug(f"Subscribed to Redis channel: {channel} for room: {room_id}")

        loop = asyncio.get_event_loop()

        while True:
            # Exit once the room has no local connections
            if room_id not in room_connections or len(room_connections[room_id]) == 0:
                logger.info(f"No more connections in room {room_id}, stopping listener")
                break

            # Run blocking get_message() in thread pool with timeout
            def get_message():
                try:
                    return pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)
                except Exception as e:
                    logger.error(f"Error in pubsub.get_message() for room {room_id}: {e}", exc_info=True)
                    return None

            message = await loop.run_in_executor(None, get_message)
            if message is None or message.get('type') != 'message':
                continue

            try:
                message_data = json.loads(message['data'])
            except json.JSONDecodeError as e:
                logger.error(f"Error parsing message from Redis for room {room_id}: {e}")
                continue

            logger.debug(f"Received {message_data.get('type')} event from Redis for room {room_id}")
            local = list(room_connections.get(room_id, {}).items())
            payload = json.dumps(message_data)
            results = await asyncio.gather(*(ws.send_text(payload) for _, ws in local), return_exceptions=True)

            # Clean up connections that failed to receive
            for (conn_id, _), result in zip(local, results):
                if isinstance(result, Exception):
                    logger.warning(f"Error sending to connection {conn_id} in room {room_id}: {result}")
                    room_connections.get(room_id, {}).pop(conn_id, None)

            if message_data.get("event") == "room_closed":
                await close_room_connections(room_id, "Room closed")

    except asyncio.CancelledError:
        logger.info(f"Redis listener task cancelled for room: {room_id}")
    except Exception as e:
        logger.error(f"Error in Redis listener for room {room_id}: {e}", exc_info=True)
    finally:
        if pubsub:
            try:
                pubsub.close()
                logger.debug(f"Closed pub/sub connection for room: {room_id}")
            except Exception as e:
                logger.error(f"Error closing pub/sub for room {room_id}: {e}")
        if room_pubsub_tasks.get(room_id) is asyncio.current_task():
            del room_pubsub_tasks[room_id]
            logger.debug(f"Removed pub/sub task reference for room: {room_id}")


@app.websocket("/rooms/{code}/ws")
async def websocket_endpoint(code: str, websocket: WebSocket, display_name: str = None, password: str = None):
    """Change feed of a room.

    Query parameters:
    - display_name: name the client joined with (checked against bans)
    - password: required if room is password protected
    """
    logger.info(f"WebSocket connection attempt for room: {code}, display_name: {display_name}")

    name = format_display_name(display_name)
    try:
        with SessionLocal() as db:
            room = get_room_or_404(db, code)
            check_room_password(room, password)
            if name:
                check_not_banned(db, room, name)
            room_id, room_code = str(room.id), room.code
    except HTTPException as e:
        logger.info(f"WebSocket connection rejected for room {code}: {e.detail}")
        await websocket.close(code=1008, reason=e.detail)
        return

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    room_connections.setdefault(room_id, {})[connection_id] = websocket
    logger.info(f"WebSocket connection {connection_id} accepted for room {room_code} (local connections: {len(room_connections[room_id])})")

    try:
        # Start Redis pub/sub listener for this room if not already running.
        # Subscribe here so no event published after the welcome message is missed
        if room_id not in room_pubsub_tasks or room_pubsub_tasks[room_id].done():
            pubsub = redis_backend.subscribe_to_room(room_id)
            room_pubsub_tasks[room_id] = asyncio.create_task(listen_to_redis_channel(room_id, pubsub))
            logger.debug(f"Started Redis pub/sub listener for room: {room_id}")

        await websocket.send_text(json.dumps({
            "type": "system",
            "message": "Connected to room",
            "room_id": room_id,
            "code": room_code,
            "connection_id": connection_id,
            "display_name": name or None,
            "timestamp": now_iso(),
        }))

        # The feed is server to client; inbound frames are only keepalives
        while True:
            data = await websocket.receive_text()
            try:
                message_type = json.loads(data).get("type")
            except (json.JSONDecodeError, AttributeError):
                message_type = data.strip().lower()
            if message_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong", "timestamp": now_iso()}))
            else:
                logger.debug(f"Ignoring inbound frame from connection {connection_id} in room {room_code}")

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id} in room {room_code}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id} in room {room_code}: {e}", exc_info=True)
    finally:
        room_connections.get(room_id, {}).pop(connection_id, None)
        logger.debug(f"Removed connection {connection_id} from local tracking for room {room_id}")

        # If no more connections in this room, clean up
        if room_id in room_connections and len(room_connections[room_id]) == 0:
            del room_connections[room_id]
            logger.info(f"No more local connections in room {room_code}, cleaning up")
            task = room_pubsub_tasks.pop(room_id, None)
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                logger.debug(f"Cancelled pub/sub task for room {room_id}")

        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
