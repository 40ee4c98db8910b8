"""Pydantic models for envelopes, persisted records, and reconciliation results."""

# Settings models
from .settings import (
    BillingSettings,
    SweepSettings,
    WebhookSettings,
    PubSubSettings,
    StoreSettings,
    ServiceSettings,
)

# Persisted records
from .subscription import (
    AgentType,
    TransactionStatus,
    SubscriptionStatus,
    NotificationType,
    Transaction,
    SubscriptionUser,
)

# Billing backend snapshot
from .billing import (
    CancelReason,
    BillingSnapshot,
)

# Envelope and event models (RTDN)
from .events import (
    EventType,
    PubSubMessage,
    PushEnvelope,
    SubscriptionNotification,
    OneTimeProductNotification,
    DeveloperNotification,
    RenewalEvent,
)

# Results
from .results import (
    ReconciliationOutcome,
    ReconciliationResult,
    SweepReport,
)

__all__ = [
    # Settings
    "BillingSettings",
    "SweepSettings",
    "WebhookSettings",
    "PubSubSettings",
    "StoreSettings",
    "ServiceSettings",
    # Records
    "AgentType",
    "TransactionStatus",
    "SubscriptionStatus",
    "NotificationType",
    "Transaction",
    "SubscriptionUser",
    # Billing
    "CancelReason",
    "BillingSnapshot",
    # Events
    "EventType",
    "PubSubMessage",
    "PushEnvelope",
    "SubscriptionNotification",
    "OneTimeProductNotification",
    "DeveloperNotification",
    "RenewalEvent",
    # Results
    "ReconciliationOutcome",
    "ReconciliationResult",
    "SweepReport",
]
