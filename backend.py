import redis
import json
from datetime import datetime, timezone
from typing import Optional
from fastapi.encoders import jsonable_encoder
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_ROOM_CHANNEL
from logging_config import get_logger

logger = get_logger(__name__)

CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")


class RedisBackend:
    """Room change feed on top of Redis pub/sub.

    Every process publishes row changes on ``room:channel:{room_id}`` and
    listens on the channels of the rooms it has WebSocket clients for.
    """

    def __init__(self):
        logger.info(f"Initializing RedisBackend for {REDIS_HOST}:{REDIS_PORT}")
        self.redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)

    def ping(self):
        """Fail fast when Redis is unreachable."""
        try:
            self.redis_client.ping()
            self.pubsub_client.ping()
            logger.info(f"Redis clients connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    def get_room_channel_name(self, room_id) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish_message(self, room_id, message: dict):
        """Publish a message to the room's Redis pub/sub channel."""
        channel = self.get_room_channel_name(room_id)
        message_json = json.dumps(jsonable_encoder(message))
        subscribers = self.redis_client.publish(channel, message_json)
        logger.debug(f"Published message to room {room_id} channel {channel}, {subscribers} subscribers")
        return True

    def publish_change(self, room_id, table: str, event: str, record: Optional[dict] = None):
        """Publish a row change (INSERT/UPDATE/DELETE) for a room.

        The row is already committed when this runs, so Redis errors are
        logged and reported through the return value only.
        """
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Unknown change event {event}")
        message = {
            "type": "change",
            "table": table,
            "event": event,
            "room_id": str(room_id),
            "record": record or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            return self.publish_message(room_id, message)
        except redis.RedisError as e:
            logger.error(f"Failed to publish {table} {event} for room {room_id}: {e}", exc_info=True)
            return False

    def publish_system(self, room_id, text: str, event: Optional[str] = None):
        message = {
            "type": "system",
            "message": text,
            "event": event,
            "room_id": str(room_id),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            return self.publish_message(room_id, message)
        except redis.RedisError as e:
            logger.error(f"Failed to publish system message for room {room_id}: {e}", exc_info=True)
            return False

    def subscribe_to_room(self, room_id):
        """Create a pubsub subscriber for a room channel."""
        channel = self.get_room_channel_name(room_id)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_id}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.subscribe(channel)
        logger.debug(f"Successfully subscribed to channel {channel}")
        return pubsub


redis_backend = RedisBackend()
