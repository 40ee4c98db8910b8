"""Tests for structured logging functionality.

Tests logging configuration, context binding and the reconciliation audit helpers.
"""

import json
import logging

import pytest
import structlog

from renewal_sync.logging_config import (
    add_service_context,
    add_severity,
    bind_context,
    clear_context,
    configure_logging,
    drop_debug_in_production,
    get_logger,
    mask_purchase_tokens,
    unbind_context,
)
from renewal_sync.state_logger import (
    log_anomaly,
    log_duplicate_event,
    log_expiry_change,
    log_stale_event,
    log_subscription_state_change,
)


@pytest.fixture(autouse=True)
def cleanup_context():
    """Ensure context is cleared before and after each test."""
    clear_context()
    yield
    clear_context()


class TestProcessors:
    """Custom structlog processors."""

    def test_add_service_context(self):
        event_dict = add_service_context(None, "info", {"event": "x"})

        assert event_dict["service"] == "renewal-sync"

    def test_unmasked_tokens_are_masked(self):
        event_dict = mask_purchase_tokens(None, "info", {"event": "x", "purchase_token": "b" * 40, "token": "short"})

        assert event_dict["purchase_token"] == "b" * 20 + "..."
        assert event_dict["token"] == "short"

    def test_masked_tokens_are_left_alone(self):
        event_dict = mask_purchase_tokens(None, "info", {"event": "x", "token": "c" * 20 + "..."})

        assert event_dict["token"] == "c" * 20 + "..."

    @pytest.mark.parametrize("method_name,severity", [("info", "INFO"), ("warning", "WARNING"), ("exception", "ERROR")])
    def test_add_severity(self, method_name, severity):
        assert add_severity(None, method_name, {"event": "x"})["severity"] == severity

    def test_debug_dropped_outside_debug_mode(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "INFO")

        with pytest.raises(structlog.DropEvent):
            drop_debug_in_production(None, "debug", {"event": "x"})

    def test_debug_kept_in_debug_mode(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        assert drop_debug_in_production(None, "debug", {"event": "x"}) == {"event": "x"}

    def test_info_never_dropped(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "INFO")

        assert drop_debug_in_production(None, "info", {"event": "x"}) == {"event": "x"}


class TestContextualLogging:
    """Context binding through contextvars."""

    def test_bound_context_is_merged(self):
        bind_context(event_id="pubsub:1", request_id="abc")

        merged = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})

        assert merged["event_id"] == "pubsub:1"
        assert merged["request_id"] == "abc"

    def test_unbind_context(self):
        bind_context(event_id="pubsub:1", request_id="abc")
        unbind_context("event_id")

        merged = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})

        assert "event_id" not in merged
        assert merged["request_id"] == "abc"


class TestConfiguredOutput:
    """JSON rendering end to end."""

    @pytest.fixture
    def json_logging(self):
        configure_logging(log_level="INFO", json_format=True, include_timestamp=False)
        yield
        structlog.reset_defaults()

    def test_json_output(self, json_logging, caplog):
        caplog.set_level(logging.INFO)
        bind_context(event_id="pubsub:7")

        get_logger("test.json").info("webhook_answered", status_code=200)

        record = json.loads(caplog.records[-1].getMessage())
        assert record["message"] == "webhook_answered"
        assert record["status_code"] == 200
        assert record["event_id"] == "pubsub:7"
        assert record["service"] == "renewal-sync"
        assert record["severity"] == "INFO"
        assert record["level"] == "info"

    def test_audit_helpers_do_not_raise(self, json_logging):
        log_subscription_state_change("sub-1", "active", "expired", reason="revoked", event_id="e")
        log_expiry_change("sub-1", 1000, 2000, reason="renewed")
        log_duplicate_event("sub-1", "e")
        log_stale_event("sub-1", current_expiry_millis=2000, polled_expiry_millis=1000)
        log_anomaly("sub-1", reason="backward", token="a" * 40)

    def test_anomaly_is_error_and_masks_token(self, json_logging, caplog):
        caplog.set_level(logging.INFO)

        log_anomaly("sub-1", reason="backward", token="a" * 40)

        record = caplog.records[-1]
        message = record.getMessage()
        assert record.levelno == logging.ERROR
        assert "requires_review" in message
        assert "a" * 20 + "..." in message
        assert "a" * 21 not in message
