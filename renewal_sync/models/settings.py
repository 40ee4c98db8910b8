"""Service settings models.

Models for config/settings.yaml.
"""

from typing import Optional

from pydantic import BaseModel, Field


class BillingSettings(BaseModel):
    """Android Publisher API client settings."""

    service_account_file: Optional[str] = Field(
        None, description="Service account JSON key with androidpublisher scope"
    )
    api_endpoint: Optional[str] = Field(
        None, description="Override API root (e.g. a local IAP emulator)"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request network timeout")
    num_retries: int = Field(default=0, ge=0, description="Client-side retries for 5xx/429")


class SweepSettings(BaseModel):
    """Periodic renewal sweep settings."""

    horizon_days: int = Field(default=7, gt=0, description="Check subscriptions expiring within this many days")
    interval_seconds: int = Field(default=3600, gt=0, description="Delay between periodic sweeps")


class WebhookSettings(BaseModel):
    """Push endpoint acknowledgment policy."""

    nack_transient_failures: bool = Field(
        default=True,
        description="Answer 503 on transient failures so the store redelivers",
    )


class PubSubSettings(BaseModel):
    """Pull delivery settings."""

    enabled: bool = Field(default=False, description="Consume RTDN via a pull subscription")
    project_id: Optional[str] = Field(None, description="GCP project ID")
    subscription: Optional[str] = Field(None, description="Pull subscription name")
    max_messages: int = Field(default=10, gt=0, description="Flow control: outstanding messages")


class StoreSettings(BaseModel):
    """Subscription store settings."""

    seed_file: Optional[str] = Field(
        None, description="YAML file with transactions and subscription_users loaded at startup"
    )


class ServiceSettings(BaseModel):
    """Root settings document."""

    package_name: str = Field(..., description="Default Android package name")
    billing: BillingSettings = Field(default_factory=BillingSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    pubsub: PubSubSettings = Field(default_factory=PubSubSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    class Config:
        json_schema_extra = {
            "example": {
                "package_name": "com.example.app",
                "billing": {"service_account_file": "/secrets/play.json", "timeout_seconds": 10},
                "sweep": {"horizon_days": 7, "interval_seconds": 3600},
                "webhook": {"nack_transient_failures": True},
                "pubsub": {"enabled": False},
            }
        }
