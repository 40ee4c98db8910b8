"""Persisted subscription records and their enums.

Transaction rows are created by the purchase flow; SubscriptionUser rows carry
the entitlement expiry that reconciliation moves.
"""

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field


class AgentType(str, Enum):
    """Store provider that issued the purchase."""

    GOOGLE_PLAY = "google_play"
    APP_STORE = "app_store"


class TransactionStatus(str, Enum):
    """Purchase transaction status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Reconciled entitlement state of a subscription."""

    ACTIVE = "active"
    GRACE = "grace"  # Renewal charge failed, access retained
    ON_HOLD = "on_hold"  # Account hold after grace period
    PAUSED = "paused"
    EXPIRED = "expired"


class NotificationType(IntEnum):
    """RTDN subscription notification codes matching Google Play values."""

    SUBSCRIPTION_RECOVERED = 1
    SUBSCRIPTION_RENEWED = 2
    SUBSCRIPTION_CANCELED = 3
    SUBSCRIPTION_PURCHASED = 4
    SUBSCRIPTION_ON_HOLD = 5
    SUBSCRIPTION_IN_GRACE_PERIOD = 6
    SUBSCRIPTION_RESTARTED = 7
    SUBSCRIPTION_PRICE_CHANGE_CONFIRMED = 8
    SUBSCRIPTION_DEFERRED = 9
    SUBSCRIPTION_PAUSED = 10
    SUBSCRIPTION_PAUSE_SCHEDULE_CHANGED = 11
    SUBSCRIPTION_REVOKED = 12
    SUBSCRIPTION_EXPIRED = 13


class Transaction(BaseModel):
    """Purchase transaction of record.

    Immutable after creation except for ``status``.
    """

    id: str = Field(..., description="Transaction identifier")
    purchase_token: str = Field(..., description="Opaque purchase token, unique per purchase lineage")
    product_id: str = Field(..., description="Store product / subscription ID")
    agent_type: AgentType = Field(default=AgentType.GOOGLE_PLAY, description="Store provider")
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, description="Purchase status")
    subscription_user_id: Optional[str] = Field(None, description="Linked SubscriptionUser ID")
    package_name: Optional[str] = Field(None, description="Android package name, if known")

    @property
    def is_reconcilable(self) -> bool:
        """Only successful, linked transactions are reconciliation targets."""
        return self.status == TransactionStatus.SUCCESS and self.subscription_user_id is not None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "txn-1001",
                "purchase_token": "opaque-token-abc123...",
                "product_id": "premium.monthly",
                "agent_type": "google_play",
                "status": "success",
                "subscription_user_id": "sub-user-1",
                "package_name": "com.example.app",
            }
        }


class SubscriptionUser(BaseModel):
    """Entitlement record for one user + product lineage."""

    id: str = Field(..., description="SubscriptionUser identifier")
    expiry_at_millis: int = Field(..., description="Entitlement expiry (Unix millis)")
    state: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE, description="Reconciled state")
    last_applied_event_id: Optional[str] = Field(None, description="Idempotency key of the last applied change")
    last_applied_at_millis: Optional[int] = Field(None, description="When the last change was applied")
    version: int = Field(default=0, description="Bumped on every successful compare-and-set")

    @property
    def is_active(self) -> bool:
        return self.state == SubscriptionStatus.ACTIVE

    class Config:
        json_schema_extra = {
            "example": {
                "id": "sub-user-1",
                "expiry_at_millis": 1731536000000,
                "state": "active",
                "last_applied_event_id": "pubsub:4217316930131925",
                "last_applied_at_millis": 1700000000000,
                "version": 3,
            }
        }
