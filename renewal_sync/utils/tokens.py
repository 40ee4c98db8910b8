"""Purchase token and idempotency key helpers."""

import hashlib
import json
from typing import Any, Optional

TOKEN_LOG_PREFIX = 20


def mask_token(token: Optional[str]) -> Optional[str]:
    """Shorten a purchase token for logging.

    Args:
        token: Purchase token

    Returns:
        First 20 characters followed by "...", or the token itself if shorter
    """
    if token is None:
        return None
    if len(token) > TOKEN_LOG_PREFIX:
        return token[:TOKEN_LOG_PREFIX] + "..."
    return token


def pubsub_event_id(message_id: str) -> str:
    """Idempotency key from a Pub/Sub message ID (stable across redeliveries)."""
    return f"pubsub:{message_id}"


def content_event_id(fields: dict[str, Any]) -> str:
    """Idempotency key from a content hash of normalized payload fields.

    Keys are sorted so the same payload always hashes the same way.

    Example:
        >>> content_event_id({"purchaseToken": "abc", "notificationType": 2})[:7]
        'sha256:'
    """
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def poll_event_id(expiry_time_millis: int) -> str:
    """Idempotency key for a polled snapshot: the polled expiry itself."""
    return f"poll:{expiry_time_millis}"
