"""Authoritative subscription state returned by the billing backend."""

from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class CancelReason(IntEnum):
    """Subscription cancellation reasons (Android Publisher API v3)."""

    USER_CANCELED = 0
    SYSTEM_CANCELED = 1
    REPLACED = 2
    DEVELOPER_CANCELED = 3


class BillingSnapshot(BaseModel):
    """Subset of a SubscriptionPurchase resource used for reconciliation."""

    expiry_time_millis: int = Field(..., description="Current expiry time (Unix millis)")
    cancel_reason: Optional[int] = Field(None, description="Cancel reason, present once canceled")
    auto_renewing: Optional[bool] = Field(None, description="Whether the subscription will auto-renew")
    payment_state: Optional[int] = Field(None, description="0=pending, 1=received, 2=trial, 3=deferred")
    start_time_millis: Optional[int] = Field(None, description="Subscription start time (Unix millis)")
    order_id: Optional[str] = Field(None, description="Latest order ID")

    @property
    def is_canceled(self) -> bool:
        return self.cancel_reason is not None

    def is_expired_at(self, now_millis: int) -> bool:
        return self.expiry_time_millis < now_millis

    @classmethod
    def from_purchase_resource(cls, resource: dict[str, Any]) -> "BillingSnapshot":
        """Build a snapshot from a raw ``purchases.subscriptions.get`` response.

        The API returns millisecond timestamps as strings.

        Raises:
            ValueError: If ``expiryTimeMillis`` is missing or not numeric
        """
        expiry = resource.get("expiryTimeMillis")
        if expiry in (None, ""):
            raise ValueError("Subscription purchase has no expiryTimeMillis")

        start = resource.get("startTimeMillis")
        return cls(
            expiry_time_millis=int(expiry),
            cancel_reason=resource.get("cancelReason"),
            auto_renewing=resource.get("autoRenewing"),
            payment_state=resource.get("paymentState"),
            start_time_millis=int(start) if start else None,
            order_id=resource.get("orderId"),
        )
