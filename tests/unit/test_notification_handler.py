"""Unit tests for NotificationHandler acknowledgment decisions."""

import base64
import json
from unittest.mock import MagicMock

import pytest

from renewal_sync.models.results import ReconciliationOutcome, ReconciliationResult
from renewal_sync.repositories.subscription_store import SubscriptionUserNotFoundError
from renewal_sync.services.billing_client import BillingAuthError, TransientBillingError
from renewal_sync.services.event_decoder import EventDecoder
from renewal_sync.services.notification_handler import AckDecision, NotificationHandler
from renewal_sync.services.reconciliation_engine import (
    AnomalousTransitionError,
    PersistenceConflictError,
    QueryFailedError,
)


def make_body(notification_type=2, message_id="m-1"):
    payload = {
        "version": "1.0",
        "packageName": "com.example.app",
        "eventTimeMillis": "1700000000000",
        "subscriptionNotification": {
            "version": "1.0",
            "notificationType": notification_type,
            "purchaseToken": "token-abc",
            "subscriptionId": "premium.monthly",
        },
    }
    data = base64.b64encode(json.dumps(payload).encode()).decode()
    return json.dumps({"message": {"data": data, "messageId": message_id}}).encode()


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.reconcile_event.return_value = ReconciliationResult(
        outcome=ReconciliationOutcome.APPLIED, event_id="pubsub:m-1"
    )
    return engine


@pytest.fixture
def handler(engine):
    return NotificationHandler(decoder=EventDecoder("com.example.app"), engine=engine)


class TestAckDecision:
    def test_acknowledged_range(self):
        assert AckDecision(200, {}).acknowledged
        assert not AckDecision(400, {}).acknowledged
        assert not AckDecision(503, {}).acknowledged


class TestHandle:
    """Mapping of reconciliation outcomes to HTTP answers."""

    def test_applied_event_is_acked(self, handler, engine):
        decision = handler.handle(make_body())

        assert decision.status_code == 200
        assert decision.body == {"success": True, "outcome": "applied"}
        event = engine.reconcile_event.call_args.args[0]
        assert event.event_id == "pubsub:m-1"

    def test_malformed_envelope_is_400_without_reconciliation(self, handler, engine):
        decision = handler.handle(b'{"message": {"data": "%%%"}}')

        assert decision.status_code == 400
        assert "error" in decision.body
        engine.reconcile_event.assert_not_called()

    def test_missing_data_is_400(self, handler, engine):
        decision = handler.handle(b'{"message": {}}')

        assert decision.status_code == 400
        engine.reconcile_event.assert_not_called()

    def test_non_subscription_payload_is_acked(self, handler, engine):
        payload = {"version": "1.0", "packageName": "com.example.app", "testNotification": {"version": "1.0"}}
        data = base64.b64encode(json.dumps(payload).encode()).decode()

        decision = handler.handle(json.dumps({"message": {"data": data}}).encode())

        assert decision == AckDecision(200, {"success": True})
        engine.reconcile_event.assert_not_called()

    def test_anomaly_is_acked(self, handler, engine):
        engine.reconcile_event.side_effect = AnomalousTransitionError("backward")

        decision = handler.handle(make_body())

        assert decision.status_code == 200
        assert decision.body["outcome"] == "anomaly"

    def test_permanent_query_failure_is_acked(self, handler, engine):
        engine.reconcile_event.side_effect = QueryFailedError("denied", cause=BillingAuthError("403"))

        decision = handler.handle(make_body())

        assert decision.status_code == 200
        assert decision.body["outcome"] == "query_failed"

    def test_transient_query_failure_is_nacked(self, handler, engine):
        engine.reconcile_event.side_effect = QueryFailedError("timeout", cause=TransientBillingError("timeout"))

        decision = handler.handle(make_body())

        assert decision.status_code == 503
        assert "error" in decision.body

    def test_persistence_conflict_is_nacked(self, handler, engine):
        engine.reconcile_event.side_effect = PersistenceConflictError("lost twice")

        assert handler.handle(make_body()).status_code == 503

    def test_transient_failure_acked_when_nack_disabled(self, engine):
        handler = NotificationHandler(EventDecoder("com.example.app"), engine, nack_transient_failures=False)
        engine.reconcile_event.side_effect = QueryFailedError("timeout", cause=TransientBillingError("timeout"))

        decision = handler.handle(make_body())

        assert decision == AckDecision(200, {"success": True, "outcome": "retry_later"})

    @pytest.mark.parametrize(
        "error", [RuntimeError("boom"), SubscriptionUserNotFoundError("sub-1 disappeared")]
    )
    def test_unexpected_engine_error_is_a_decision_not_a_crash(self, handler, engine, error):
        engine.reconcile_event.side_effect = error

        decision = handler.handle(make_body())

        assert decision.status_code == 503
        assert type(error).__name__ in decision.body["error"]

    def test_unexpected_engine_error_acked_when_nack_disabled(self, engine):
        handler = NotificationHandler(EventDecoder("com.example.app"), engine, nack_transient_failures=False)
        engine.reconcile_event.side_effect = RuntimeError("boom")

        decision = handler.handle(make_body())

        assert decision == AckDecision(200, {"success": True, "outcome": "retry_later"})


class TestHandleMessage:
    """Pull-path payloads skip the envelope."""

    def test_pulled_message_is_reconciled(self, handler, engine):
        payload = json.loads(base64.b64decode(json.loads(make_body())["message"]["data"]))

        decision = handler.handle_message(json.dumps(payload).encode(), message_id="pull-1")

        assert decision.acknowledged
        event = engine.reconcile_event.call_args.args[0]
        assert event.event_id == "pubsub:pull-1"
        assert event.source == "pull"

    def test_malformed_pulled_message_is_400(self, handler, engine):
        decision = handler.handle_message(b"garbage", message_id="pull-2")

        assert decision.status_code == 400
        engine.reconcile_event.assert_not_called()
