"""Utility functions and helpers."""

from renewal_sync.utils.time_utils import (
    DAY_MILLIS,
    HOUR_MILLIS,
    MINUTE_MILLIS,
    days_to_millis,
    millis_to_iso,
)
from renewal_sync.utils.tokens import (
    content_event_id,
    mask_token,
    poll_event_id,
    pubsub_event_id,
)

__all__ = [
    # Token helpers
    "mask_token",
    "pubsub_event_id",
    "content_event_id",
    "poll_event_id",
    # Time helpers
    "DAY_MILLIS",
    "HOUR_MILLIS",
    "MINUTE_MILLIS",
    "days_to_millis",
    "millis_to_iso",
]
