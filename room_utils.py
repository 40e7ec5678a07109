import hashlib
import hmac
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from constants import MAX_DISPLAY_NAME_LENGTH, ROOM_CODE_ALPHABET

ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}$")
EXPIRY_RE = re.compile(r"^(\d+)([hd])$")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_room_code() -> str:
    """Generate an 8 character room code formatted as XXXX-XXXX."""
    chars = [secrets.choice(ROOM_CODE_ALPHABET) for _ in range(8)]
    return "".join(chars[:4]) + "-" + "".join(chars[4:])


def generate_owner_token() -> str:
    return f"owner_{secrets.token_urlsafe(24)}"


def hash_string(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def verify_hash(value: Optional[str], expected_hash: Optional[str]) -> bool:
    if not value or not expected_hash:
        return False
    return hmac.compare_digest(hash_string(value), expected_hash)


def is_valid_room_code(code: str) -> bool:
    return bool(code) and ROOM_CODE_RE.match(code) is not None


def format_room_code(value: str) -> str:
    """Normalise user input ("abcd1234", "ab cd-12 34") into XXXX-XXXX form.

    Input shorter than 4 characters is returned without a dash, anything past
    8 characters is dropped.
    """
    cleaned = re.sub(r"[^A-Z0-9]", "", (value or "").upper())[:8]
    if len(cleaned) <= 4:
        return cleaned
    return f"{cleaned[:4]}-{cleaned[4:]}"


def format_display_name(name: Optional[str]) -> str:
    return (name or "").strip()[:MAX_DISPLAY_NAME_LENGTH]


def calculate_expiry(option: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Turn an expiry option ("never", "6h", "7d") into an absolute timestamp.

    Unknown options mean no expiry.
    """
    if not option or option == "never":
        return None
    match = EXPIRY_RE.match(option)
    if not match:
        return None

    value = int(match.group(1))
    unit = match.group(2)
    now = now or now_utc()
    if unit == "h":
        return now + timedelta(hours=value)
    return now + timedelta(days=value)


def is_expired(expiry_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expiry_at is None:
        return False
    return ensure_utc(expiry_at) < (now or now_utc())


def organize_comments(flat_comments: list[dict]) -> list[dict]:
    """Rebuild the reply tree from a flat list of comments.

    Every comment gets a ``replies`` list. Roots and replies are sorted
    oldest first. A reply whose parent is not in ``flat_comments`` (deleted,
    hidden) is dropped together with the parent.
    """
    by_id = {}
    for comment in flat_comments:
        by_id[str(comment["id"])] = {**comment, "replies": []}

    roots = []
    for comment in flat_comments:
        node = by_id[str(comment["id"])]
        parent_id = comment.get("parent_comment_id")
        if parent_id:
            parent = by_id.get(str(parent_id))
            if parent is not None:
                parent["replies"].append(node)
        else:
            roots.append(node)

    def created(c):
        return ensure_utc(c["created_at"])

    for node in by_id.values():
        node["replies"].sort(key=created)
    return sorted(roots, key=created)
