"""Outcomes reported by reconciliation and sweep runs."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .subscription import SubscriptionStatus


class ReconciliationOutcome(str, Enum):
    """What the engine did with an event or snapshot."""

    APPLIED = "applied"  # State written to the store
    DUPLICATE = "duplicate"  # Idempotency key already applied
    STALE = "stale"  # Older than what is stored
    NO_CHANGE = "no_change"  # Already in the target state
    NO_MATCH = "no_match"  # No tracked subscription for the token
    IGNORED = "ignored"  # Informational event type
    GRACE = "grace"  # Grace period reported, nothing written


class ReconciliationResult(BaseModel):
    """Result of reconciling one event or polled snapshot."""

    outcome: ReconciliationOutcome
    event_id: Optional[str] = None
    subscription_user_id: Optional[str] = None
    previous_state: Optional[SubscriptionStatus] = None
    new_state: Optional[SubscriptionStatus] = None
    previous_expiry_millis: Optional[int] = None
    new_expiry_millis: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.outcome == ReconciliationOutcome.APPLIED


class SweepReport(BaseModel):
    """Counts from one sweep run."""

    horizon_days: int = Field(..., description="Window the sweep covered")
    checked: int = Field(default=0, description="Subscriptions polled")
    updated: int = Field(default=0, description="Subscriptions whose state was written")
    failed: int = Field(default=0, description="Subscriptions that raised an error")
    skipped: int = Field(default=0, description="Subscriptions whose probe was a no-op")
    started_at_millis: Optional[int] = None
    finished_at_millis: Optional[int] = None

    def summary(self) -> str:
        """Human-readable one-line summary."""
        return f"Completed. Checked: {self.checked}, Updated: {self.updated}, Failed: {self.failed}"
