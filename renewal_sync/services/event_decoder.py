"""Decode inbound RTDN deliveries into normalized RenewalEvents.

Responsibilities:
- Validate the Pub/Sub push envelope and base64/JSON payload
- Classify the notification type (unknown codes become UNKNOWN)
- Derive an idempotency key for the delivery
- Acknowledge non-subscription payloads without producing an event
"""

import base64
import binascii
import json
from typing import Any, Optional

from pydantic import ValidationError

from renewal_sync.logging_config import get_logger
from renewal_sync.models.events import (
    DeveloperNotification,
    EventType,
    PushEnvelope,
    RenewalEvent,
)
from renewal_sync.utils.tokens import content_event_id, mask_token, pubsub_event_id

logger = get_logger(__name__)


class MalformedEnvelopeError(Exception):
    """Raised when a delivery cannot be decoded. Answered with 400."""

    pass


class EventDecoder:
    """Turns raw push bodies or pulled message data into RenewalEvents.

    Args:
        default_package_name: used when the payload omits packageName
    """

    def __init__(self, default_package_name: str):
        self.default_package_name = default_package_name

    def decode(self, raw_envelope: bytes) -> Optional[RenewalEvent]:
        """Decode a Pub/Sub push request body.

        Args:
            raw_envelope: HTTP body, ``{"message": {"data": base64(JSON)}}``

        Returns:
            RenewalEvent, or None when the payload is well formed but carries
            nothing to reconcile (one-time product, test, empty)

        Raises:
            MalformedEnvelopeError: invalid JSON, missing ``message.data``,
                bad base64 or undecodable payload
        """
        try:
            body = json.loads(raw_envelope)
        except (ValueError, TypeError) as e:
            raise MalformedEnvelopeError(f"Invalid message format: {e}") from e

        if not isinstance(body, dict):
            raise MalformedEnvelopeError("Invalid message format: body is not an object")

        try:
            envelope = PushEnvelope.model_validate(body)
        except ValidationError as e:
            raise MalformedEnvelopeError(f"Invalid message format: {e.error_count()} error(s)") from e

        try:
            payload_bytes = base64.b64decode(envelope.message.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedEnvelopeError(f"Could not decode message: {e}") from e

        return self.decode_message(payload_bytes, message_id=envelope.message.message_id, source="push")

    def decode_message(
        self,
        data: bytes,
        message_id: Optional[str] = None,
        source: str = "pull",
    ) -> Optional[RenewalEvent]:
        """Decode a notification payload (already base64-decoded).

        Args:
            data: JSON-encoded DeveloperNotification
            message_id: Pub/Sub message ID, used as idempotency key when present
            source: delivery path recorded on the event

        Returns:
            RenewalEvent or None, as for ``decode``

        Raises:
            MalformedEnvelopeError: If the payload is not a JSON object
        """
        try:
            payload = json.loads(data)
        except (ValueError, TypeError) as e:
            raise MalformedEnvelopeError(f"Could not decode message: {e}") from e

        if not isinstance(payload, dict) or not payload:
            raise MalformedEnvelopeError("Could not decode message: payload is not an object")

        try:
            notification = DeveloperNotification.model_validate(payload)
        except ValidationError as e:
            raise MalformedEnvelopeError(f"Could not decode message: {e.error_count()} error(s)") from e

        logger.info(
            "notification_received",
            package_name=notification.package_name,
            event_time_millis=notification.event_time_millis,
            message_id=message_id,
            source=source,
        )

        if notification.one_time_product_notification is not None:
            product = notification.one_time_product_notification
            logger.info(
                "one_time_product_notification",
                sku=product.sku,
                notification_type=product.notification_type,
                token=mask_token(product.purchase_token),
            )

        if notification.test_notification is not None:
            logger.info("test_notification", version=notification.test_notification.version)

        if notification.subscription_notification is None:
            if notification.one_time_product_notification is None and notification.test_notification is None:
                logger.info("notification_without_known_block", keys=sorted(payload.keys()))
            return None

        return self._build_event(notification, message_id, source)

    def _build_event(
        self,
        notification: DeveloperNotification,
        message_id: Optional[str],
        source: str,
    ) -> Optional[RenewalEvent]:
        sub = notification.subscription_notification
        if not sub.purchase_token or not sub.subscription_id:
            logger.warning(
                "subscription_notification_incomplete",
                has_purchase_token=bool(sub.purchase_token),
                has_subscription_id=bool(sub.subscription_id),
            )
            return None

        event_type = EventType.from_notification_type(sub.notification_type)
        package_name = notification.package_name or self.default_package_name

        if message_id:
            event_id = pubsub_event_id(message_id)
        else:
            event_id = content_event_id(self._identity_fields(notification))

        event = RenewalEvent(
            event_id=event_id,
            type=event_type,
            purchase_token=sub.purchase_token,
            product_id=sub.subscription_id,
            package_name=package_name,
            notification_type=sub.notification_type,
            event_time_millis=notification.event_time_millis,
            source=source,
        )

        logger.info(
            "renewal_event_decoded",
            event_id=event.event_id,
            event_type=event.type.value,
            notification_type=sub.notification_type,
            subscription_id=sub.subscription_id,
            token=mask_token(sub.purchase_token),
        )
        return event

    @staticmethod
    def _identity_fields(notification: DeveloperNotification) -> dict[str, Any]:
        sub = notification.subscription_notification
        return {
            "packageName": notification.package_name,
            "eventTimeMillis": notification.event_time_millis,
            "notificationType": sub.notification_type,
            "purchaseToken": sub.purchase_token,
            "subscriptionId": sub.subscription_id,
        }
