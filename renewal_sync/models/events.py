"""RTDN envelope and event models.

Maps the Pub/Sub push envelope and the Google Play Real-time Developer
Notification payload, plus the normalized RenewalEvent fed to reconciliation.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .subscription import NotificationType


class EventType(str, Enum):
    """Normalized renewal event types."""

    RENEWED = "renewed"
    RECOVERED = "recovered"
    RESTARTED = "restarted"
    CANCELED = "canceled"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ON_HOLD = "on_hold"
    PAUSED = "paused"
    GRACE_PERIOD = "grace_period"
    PRICE_CHANGE = "price_change"
    DEFERRED = "deferred"
    PAUSE_SCHEDULE_CHANGED = "pause_schedule_changed"
    PURCHASED = "purchased"
    UNKNOWN = "unknown"

    @classmethod
    def from_notification_type(cls, notification_type: Optional[int]) -> "EventType":
        """Classify a store notification code; unknown codes are not an error."""
        try:
            return _NOTIFICATION_TYPE_MAP[NotificationType(notification_type)]
        except (ValueError, TypeError, KeyError):
            return cls.UNKNOWN


def lenient_int(value: Any) -> Optional[int]:
    """Integer or numeric string as int; anything else (a new code name, a float, a bool) as None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


_NOTIFICATION_TYPE_MAP = {
    NotificationType.SUBSCRIPTION_RECOVERED: EventType.RECOVERED,
    NotificationType.SUBSCRIPTION_RENEWED: EventType.RENEWED,
    NotificationType.SUBSCRIPTION_CANCELED: EventType.CANCELED,
    NotificationType.SUBSCRIPTION_PURCHASED: EventType.PURCHASED,
    NotificationType.SUBSCRIPTION_ON_HOLD: EventType.ON_HOLD,
    NotificationType.SUBSCRIPTION_IN_GRACE_PERIOD: EventType.GRACE_PERIOD,
    NotificationType.SUBSCRIPTION_RESTARTED: EventType.RESTARTED,
    NotificationType.SUBSCRIPTION_PRICE_CHANGE_CONFIRMED: EventType.PRICE_CHANGE,
    NotificationType.SUBSCRIPTION_DEFERRED: EventType.DEFERRED,
    NotificationType.SUBSCRIPTION_PAUSED: EventType.PAUSED,
    NotificationType.SUBSCRIPTION_PAUSE_SCHEDULE_CHANGED: EventType.PAUSE_SCHEDULE_CHANGED,
    NotificationType.SUBSCRIPTION_REVOKED: EventType.REVOKED,
    NotificationType.SUBSCRIPTION_EXPIRED: EventType.EXPIRED,
}

RENEWAL_EVENTS = frozenset({EventType.RENEWED, EventType.RECOVERED, EventType.RESTARTED})
CANCELLATION_EVENTS = frozenset({EventType.CANCELED, EventType.REVOKED, EventType.EXPIRED})
SUSPENSION_EVENTS = frozenset({EventType.ON_HOLD, EventType.PAUSED})


class PubSubMessage(BaseModel):
    """``message`` block of a Pub/Sub push request."""

    data: str = Field(..., description="Base64-encoded notification JSON")
    message_id: Optional[str] = Field(None, alias="messageId", description="Pub/Sub message ID")
    publish_time: Optional[str] = Field(None, alias="publishTime", description="RFC 3339 publish time")
    attributes: dict[str, str] = Field(default_factory=dict, description="Message attributes")

    class Config:
        populate_by_name = True


class PushEnvelope(BaseModel):
    """Root body of a Pub/Sub push delivery."""

    message: PubSubMessage
    subscription: Optional[str] = Field(None, description="Pub/Sub subscription path")

    class Config:
        json_schema_extra = {
            "example": {
                "message": {
                    "data": "eyJ2ZXJzaW9uIjoiMS4wIiwicGFja2FnZU5hbWUiOiJjb20uZXhhbXBsZS5hcHAifQ==",
                    "messageId": "4217316930131925",
                    "publishTime": "2024-01-01T00:00:00.000Z",
                },
                "subscription": "projects/example/subscriptions/play-rtdn",
            }
        }


class SubscriptionNotification(BaseModel):
    """Subscription notification payload within DeveloperNotification."""

    version: str = Field(default="1.0", description="Notification version")
    notification_type: Optional[int] = Field(None, alias="notificationType", description="RTDN code (1-13)")
    purchase_token: Optional[str] = Field(None, alias="purchaseToken", description="Subscription purchase token")
    subscription_id: Optional[str] = Field(None, alias="subscriptionId", description="Subscription product ID")

    class Config:
        populate_by_name = True

    @field_validator("notification_type", mode="before")
    @classmethod
    def _tolerate_unknown_code(cls, value: Any) -> Optional[int]:
        return lenient_int(value)


class OneTimeProductNotification(BaseModel):
    """One-time product notification payload within DeveloperNotification."""

    version: str = Field(default="1.0", description="Notification version")
    notification_type: Optional[int] = Field(None, alias="notificationType")
    purchase_token: Optional[str] = Field(None, alias="purchaseToken")
    sku: Optional[str] = Field(None, description="Product SKU/ID")

    class Config:
        populate_by_name = True

    @field_validator("notification_type", mode="before")
    @classmethod
    def _tolerate_unknown_code(cls, value: Any) -> Optional[int]:
        return lenient_int(value)


class TestNotification(BaseModel):
    """Test notification sent from the Play Console."""

    version: str = Field(default="1.0", description="Notification version")


class DeveloperNotification(BaseModel):
    """Decoded RTDN payload carried in ``message.data``."""

    version: str = Field(default="1.0", description="Notification version")
    package_name: Optional[str] = Field(None, alias="packageName", description="Android package name")
    event_time_millis: Optional[int] = Field(None, alias="eventTimeMillis", description="Event timestamp")

    subscription_notification: Optional[SubscriptionNotification] = Field(
        None, alias="subscriptionNotification"
    )
    one_time_product_notification: Optional[OneTimeProductNotification] = Field(
        None, alias="oneTimeProductNotification"
    )
    test_notification: Optional[TestNotification] = Field(None, alias="testNotification")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "version": "1.0",
                "packageName": "com.example.app",
                "eventTimeMillis": "1700000000000",
                "subscriptionNotification": {
                    "version": "1.0",
                    "notificationType": 2,
                    "purchaseToken": "opaque-token-abc123...",
                    "subscriptionId": "premium.monthly",
                },
            }
        }

    @field_validator("event_time_millis", mode="before")
    @classmethod
    def _tolerate_bad_event_time(cls, value: Any) -> Optional[int]:
        return lenient_int(value)


class RenewalEvent(BaseModel):
    """Normalized subscription event, constructed per delivery and never persisted."""

    event_id: str = Field(..., description="Idempotency key for this delivery")
    type: EventType = Field(..., description="Classified event type")
    purchase_token: str = Field(..., description="Subscription purchase token")
    product_id: str = Field(..., description="Subscription product ID")
    package_name: str = Field(..., description="Android package name")
    notification_type: Optional[int] = Field(None, description="Raw store notification code")
    event_time_millis: Optional[int] = Field(None, description="Store event timestamp")
    source: str = Field(default="push", description="Delivery path: push or pull")

    @property
    def is_renewal(self) -> bool:
        return self.type in RENEWAL_EVENTS

    @property
    def is_cancellation(self) -> bool:
        return self.type in CANCELLATION_EVENTS

    @property
    def is_suspension(self) -> bool:
        return self.type in SUSPENSION_EVENTS
