"""Audit logging for reconciliation decisions.

Records state and expiry transitions with before/after values, plus the
decisions that leave state untouched (duplicates, stale events, anomalies).
"""

from typing import Any, Optional

from renewal_sync.logging_config import get_logger
from renewal_sync.utils.time_utils import millis_to_iso
from renewal_sync.utils.tokens import mask_token

logger = get_logger(__name__)


def log_subscription_state_change(
    subscription_user_id: str,
    old_state: Any,
    new_state: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription state change.

    Args:
        subscription_user_id: SubscriptionUser ID
        old_state: Previous state value
        new_state: New state value
        reason: Event type or probe that caused the change
        **extra_context: Additional context (event_id, token, etc.)
    """
    logger.info(
        "subscription_state_changed",
        subscription_user_id=subscription_user_id,
        old_state=str(old_state),
        new_state=str(new_state),
        reason=reason,
        **extra_context,
    )


def log_expiry_change(
    subscription_user_id: str,
    old_expiry_millis: int,
    new_expiry_millis: int,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log expiry change with direction.

    Args:
        subscription_user_id: SubscriptionUser ID
        old_expiry_millis: Previous expiry
        new_expiry_millis: New expiry
        reason: Event type or probe that caused the change
        **extra_context: Additional context
    """
    logger.info(
        "subscription_expiry_changed",
        subscription_user_id=subscription_user_id,
        old_expiry_millis=old_expiry_millis,
        new_expiry_millis=new_expiry_millis,
        new_expiry=millis_to_iso(new_expiry_millis),
        delta_millis=new_expiry_millis - old_expiry_millis,
        reason=reason,
        **extra_context,
    )


def log_duplicate_event(subscription_user_id: str, event_id: str, **extra_context: Any) -> None:
    """Log an event whose idempotency key was already applied."""
    logger.info(
        "reconciliation_duplicate_event",
        subscription_user_id=subscription_user_id,
        event_id=event_id,
        **extra_context,
    )


def log_stale_event(
    subscription_user_id: str,
    current_expiry_millis: int,
    polled_expiry_millis: int,
    **extra_context: Any,
) -> None:
    """Log a renewal-class event that would not move expiry forward."""
    logger.info(
        "reconciliation_stale_event",
        subscription_user_id=subscription_user_id,
        current_expiry_millis=current_expiry_millis,
        polled_expiry_millis=polled_expiry_millis,
        **extra_context,
    )


def log_anomaly(
    subscription_user_id: str,
    reason: str,
    token: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a rejected transition that needs manual review."""
    logger.error(
        "reconciliation_anomaly",
        subscription_user_id=subscription_user_id,
        reason=reason,
        token=mask_token(token),
        requires_review=True,
        **extra_context,
    )
