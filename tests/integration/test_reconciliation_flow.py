"""Integration tests for push and poll paths sharing one store."""

import base64
import json
import threading

import pytest

from renewal_sync.bootstrap import build_services
from renewal_sync.models.billing import BillingSnapshot
from renewal_sync.models.settings import ServiceSettings
from renewal_sync.models.subscription import SubscriptionStatus, SubscriptionUser, Transaction, TransactionStatus
from renewal_sync.repositories.subscription_store import SubscriptionStore
from renewal_sync.services.billing_client import SubscriptionNotFoundError
from renewal_sync.services.clock import Clock

NOW = 1_700_000_000_000
DAY = 24 * 60 * 60 * 1000


class FakeBillingBackend:
    """In-memory billing backend keyed by purchase token."""

    def __init__(self):
        self.expiries = {}
        self.calls = 0
        self._lock = threading.Lock()

    def query(self, package_name, product_id, purchase_token):
        with self._lock:
            self.calls += 1
            if purchase_token not in self.expiries:
                raise SubscriptionNotFoundError(purchase_token)
            return BillingSnapshot(expiry_time_millis=self.expiries[purchase_token])


@pytest.fixture
def clock():
    return Clock(frozen_at_millis=NOW)


@pytest.fixture
def backend():
    return FakeBillingBackend()


@pytest.fixture
def store():
    store = SubscriptionStore()
    yield store
    store.clear()


@pytest.fixture
def services(store, backend, clock):
    return build_services(
        ServiceSettings(package_name="com.example.app"),
        billing_client=backend,
        store=store,
        clock=clock,
    )


def add_subscription(store, backend, index, expiry_at_millis):
    token = f"token-{index:03d}"
    store.add_subscription_user(SubscriptionUser(id=f"sub-{index}", expiry_at_millis=expiry_at_millis))
    store.add_transaction(
        Transaction(
            id=f"txn-{index}",
            purchase_token=token,
            product_id="premium.monthly",
            status=TransactionStatus.SUCCESS,
            subscription_user_id=f"sub-{index}",
        )
    )
    backend.expiries[token] = expiry_at_millis
    return token


def push_body(notification_type, token, message_id):
    payload = {
        "version": "1.0",
        "packageName": "com.example.app",
        "eventTimeMillis": str(NOW),
        "subscriptionNotification": {
            "version": "1.0",
            "notificationType": notification_type,
            "purchaseToken": token,
            "subscriptionId": "premium.monthly",
        },
    }
    data = base64.b64encode(json.dumps(payload).encode()).decode()
    return json.dumps({"message": {"data": data, "messageId": message_id}}).encode()


class TestPushThenSweep:
    """A renewal seen on one path is a no-op on the other."""

    def test_sweep_after_push_renewal(self, services, store, backend):
        token = add_subscription(store, backend, 1, NOW + 3 * DAY)
        backend.expiries[token] = NOW + 33 * DAY

        decision = services.handler.handle(push_body(2, token, "m-1"))
        report = services.sweeper.run_sweep(horizon_days=7)

        assert decision.body["outcome"] == "applied"
        # renewed subscription is now outside the horizon
        assert report.checked == 0
        assert store.get_subscription_user("sub-1").expiry_at_millis == NOW + 33 * DAY

    def test_push_after_sweep_renewal_is_stale(self, services, store, backend):
        token = add_subscription(store, backend, 1, NOW + 3 * DAY)
        backend.expiries[token] = NOW + 33 * DAY

        report = services.sweeper.run_sweep(horizon_days=7)
        decision = services.handler.handle(push_body(2, token, "m-1"))

        assert report.updated == 1
        assert decision.body["outcome"] == "stale"
        assert store.get_subscription_user("sub-1").version == 1

    def test_missed_push_caught_by_sweep(self, services, store, backend, clock):
        token = add_subscription(store, backend, 1, NOW + DAY)
        backend.expiries[token] = NOW + 31 * DAY

        clock.advance(hours=12)
        report = services.sweeper.run_sweep(horizon_days=7)

        assert report.updated == 1
        assert store.get_subscription_user("sub-1").expiry_at_millis == NOW + 31 * DAY

    def test_revoke_after_renewal_expires(self, services, store, backend):
        token = add_subscription(store, backend, 1, NOW + 3 * DAY)
        backend.expiries[token] = NOW + 33 * DAY

        services.handler.handle(push_body(2, token, "m-1"))
        services.handler.handle(push_body(12, token, "m-2"))

        user = store.get_subscription_user("sub-1")
        assert user.state == SubscriptionStatus.EXPIRED
        assert user.expiry_at_millis == NOW


class TestSweepAtScale:
    def test_one_unknown_token_does_not_abort_sweep(self, services, store, backend):
        for i in range(100):
            add_subscription(store, backend, i, NOW + DAY + i * 60_000)
        for token in list(backend.expiries):
            backend.expiries[token] += 30 * DAY
        del backend.expiries["token-042"]

        report = services.sweeper.run_sweep(horizon_days=7)

        assert (report.checked, report.updated, report.failed) == (100, 99, 1)


class TestConcurrentDelivery:
    """Concurrent deliveries of one event apply exactly once."""

    def test_parallel_redeliveries_apply_once(self, services, store, backend):
        token = add_subscription(store, backend, 1, NOW + 3 * DAY)
        backend.expiries[token] = NOW + 33 * DAY
        body = push_body(2, token, "m-1")
        barrier = threading.Barrier(6)
        decisions = []

        def deliver():
            barrier.wait()
            decisions.append(services.handler.handle(body))

        threads = [threading.Thread(target=deliver) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        outcomes = sorted(d.body.get("outcome", "nacked") for d in decisions)
        assert outcomes.count("applied") == 1
        assert set(outcomes) <= {"applied", "duplicate", "nacked"}
        user = store.get_subscription_user("sub-1")
        assert user.expiry_at_millis == NOW + 33 * DAY
        assert user.version == 1

    def test_concurrent_push_and_sweep_keep_latest_expiry(self, services, store, backend):
        token = add_subscription(store, backend, 1, NOW + 3 * DAY)
        backend.expiries[token] = NOW + 33 * DAY
        barrier = threading.Barrier(2)

        def push():
            barrier.wait()
            services.handler.handle(push_body(2, token, "m-1"))

        def sweep():
            barrier.wait()
            services.sweeper.run_sweep(horizon_days=7)

        threads = [threading.Thread(target=push), threading.Thread(target=sweep)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        user = store.get_subscription_user("sub-1")
        assert user.expiry_at_millis == NOW + 33 * DAY
        assert user.state == SubscriptionStatus.ACTIVE
