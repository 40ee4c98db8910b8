"""Push-path orchestration: decode, reconcile, decide how to acknowledge.

Every outcome maps to an acknowledgment decision. The billing backend
redelivers on non-2xx, so only malformed envelopes and (optionally)
transient failures are answered with an error status.
"""

from typing import Any, NamedTuple, Optional

from renewal_sync.logging_config import bind_context, get_logger, unbind_context
from renewal_sync.models.events import RenewalEvent
from renewal_sync.services.event_decoder import EventDecoder, MalformedEnvelopeError
from renewal_sync.services.reconciliation_engine import (
    AnomalousTransitionError,
    PersistenceConflictError,
    QueryFailedError,
    ReconciliationEngine,
)

logger = get_logger(__name__)


class AckDecision(NamedTuple):
    """HTTP status and JSON body to answer a delivery with."""

    status_code: int
    body: dict[str, Any]

    @property
    def acknowledged(self) -> bool:
        return 200 <= self.status_code < 300


def _ack(outcome: Optional[str] = None) -> AckDecision:
    body: dict[str, Any] = {"success": True}
    if outcome is not None:
        body["outcome"] = outcome
    return AckDecision(200, body)


class NotificationHandler:
    """Handles one RTDN delivery end to end.

    Args:
        decoder: envelope decoder
        engine: reconciliation engine
        nack_transient_failures: answer 503 on transient failures so the
            delivery is retried
    """

    def __init__(
        self,
        decoder: EventDecoder,
        engine: ReconciliationEngine,
        nack_transient_failures: bool = True,
    ):
        self.decoder = decoder
        self.engine = engine
        self.nack_transient_failures = nack_transient_failures

    def handle(self, raw_envelope: bytes) -> AckDecision:
        """Handle a Pub/Sub push body.

        Args:
            raw_envelope: HTTP request body

        Returns:
            AckDecision (400 for malformed envelopes, no store call made)
        """
        try:
            event = self.decoder.decode(raw_envelope)
        except MalformedEnvelopeError as e:
            logger.warning("malformed_envelope", error=str(e))
            return AckDecision(400, {"error": str(e)})

        return self.handle_event(event)

    def handle_message(self, data: bytes, message_id: Optional[str] = None) -> AckDecision:
        """Handle a pulled Pub/Sub message payload."""
        try:
            event = self.decoder.decode_message(data, message_id=message_id, source="pull")
        except MalformedEnvelopeError as e:
            logger.warning("malformed_message", error=str(e), message_id=message_id)
            return AckDecision(400, {"error": str(e)})

        return self.handle_event(event)

    def handle_event(self, event: Optional[RenewalEvent]) -> AckDecision:
        """Reconcile a decoded event and map the result to an acknowledgment."""
        if event is None:
            return _ack()

        bind_context(event_id=event.event_id)
        try:
            result = self.engine.reconcile_event(event)
        except AnomalousTransitionError as e:
            # redelivery cannot fix it
            logger.error("notification_anomaly_acknowledged", error=str(e))
            return _ack("anomaly")
        except QueryFailedError as e:
            if e.transient:
                return self._transient_failure(str(e))
            logger.warning(
                "notification_query_failed_acknowledged",
                error=str(e),
                cause=type(e.cause).__name__,
            )
            return _ack("query_failed")
        except PersistenceConflictError as e:
            return self._transient_failure(str(e))
        except Exception as e:
            logger.error(
                "notification_reconciliation_crashed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return self._transient_failure(f"{type(e).__name__}: {e}")
        finally:
            unbind_context("event_id")

        logger.info(
            "notification_processed",
            event_id=event.event_id,
            event_type=event.type.value,
            outcome=result.outcome.value,
        )
        return _ack(result.outcome.value)

    def _transient_failure(self, message: str) -> AckDecision:
        if self.nack_transient_failures:
            logger.warning("notification_nacked_for_retry", error=message)
            return AckDecision(503, {"error": message})
        logger.warning("notification_transient_failure_acknowledged", error=message)
        return _ack("retry_later")
