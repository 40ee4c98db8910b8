"""Periodic renewal sweep against the billing backend.

Responsibilities:
- Enumerate subscriptions expiring within a horizon
- Poll the authoritative state for each
- Feed snapshots through the reconciliation engine
- Isolate per-subscription failures and report counts
"""

import threading
from typing import Optional

from renewal_sync.config import get_config
from renewal_sync.logging_config import get_logger
from renewal_sync.models.results import ReconciliationOutcome, SweepReport
from renewal_sync.models.subscription import Transaction
from renewal_sync.repositories.subscription_store import SubscriptionStore
from renewal_sync.services.billing_client import BillingQueryClient, BillingQueryError
from renewal_sync.services.clock import Clock
from renewal_sync.services.reconciliation_engine import ReconciliationEngine, ReconciliationError
from renewal_sync.utils.time_utils import days_to_millis
from renewal_sync.utils.tokens import mask_token

logger = get_logger(__name__)


class SweepScheduler:
    """Re-checks subscriptions nearing expiry.

    Args:
        store: subscription store
        billing_client: authoritative expiry source
        engine: reconciliation engine sharing the same store
        package_name: package queried for every subscription unless the
            transaction records its own
        clock: time source (defaults to the engine's clock)
    """

    def __init__(
        self,
        store: SubscriptionStore,
        billing_client: BillingQueryClient,
        engine: ReconciliationEngine,
        package_name: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.billing_client = billing_client
        self.engine = engine
        self.package_name = package_name or get_config().package_name
        self.clock = clock or engine.clock

    def run_sweep(self, horizon_days: int = 7) -> SweepReport:
        """Poll every subscription expiring in ``(now, now + horizon_days]``.

        One failing subscription increments ``failed`` and the sweep goes on.

        Args:
            horizon_days: window size in days

        Returns:
            SweepReport with checked/updated/failed counts

        Raises:
            ValueError: If horizon_days is not positive
        """
        if horizon_days <= 0:
            raise ValueError("horizon_days must be positive")

        started = self.clock.now_millis()
        report = SweepReport(horizon_days=horizon_days, started_at_millis=started)

        transactions = self.store.find_subscriptions_expiring_within(
            window_millis=days_to_millis(horizon_days),
            now_millis=started,
        )
        logger.info("sweep_started", horizon_days=horizon_days, candidates=len(transactions))

        for transaction in transactions:
            report.checked += 1
            try:
                if self._check_transaction(transaction):
                    report.updated += 1
                else:
                    report.skipped += 1
            except (BillingQueryError, ReconciliationError) as e:
                report.failed += 1
                logger.error(
                    "sweep_item_failed",
                    transaction_id=transaction.id,
                    token=mask_token(transaction.purchase_token),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            except Exception as e:
                report.failed += 1
                logger.error(
                    "sweep_item_crashed",
                    transaction_id=transaction.id,
                    token=mask_token(transaction.purchase_token),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

        report.finished_at_millis = self.clock.now_millis()
        logger.info(
            "sweep_completed",
            horizon_days=horizon_days,
            checked=report.checked,
            updated=report.updated,
            failed=report.failed,
            skipped=report.skipped,
            duration_ms=report.finished_at_millis - started,
        )
        return report

    def _check_transaction(self, transaction: Transaction) -> bool:
        """Poll one subscription and reconcile. Returns True if state was written."""
        package_name = transaction.package_name or self.package_name
        snapshot = self.billing_client.query(package_name, transaction.product_id, transaction.purchase_token)

        result = self.engine.reconcile_snapshot(transaction, snapshot)
        if result.outcome == ReconciliationOutcome.APPLIED:
            logger.info(
                "sweep_subscription_updated",
                transaction_id=transaction.id,
                previous_expiry_millis=result.previous_expiry_millis,
                new_expiry_millis=result.new_expiry_millis,
            )
            return True

        if snapshot.is_canceled or snapshot.is_expired_at(self.clock.now_millis()):
            logger.warning(
                "sweep_subscription_canceled_or_expired",
                transaction_id=transaction.id,
                cancel_reason=snapshot.cancel_reason,
                expiry_time_millis=snapshot.expiry_time_millis,
            )
        return False

    def run_periodically(
        self,
        interval_seconds: int,
        horizon_days: int = 7,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """Run sweeps until ``stop_event`` is set.

        Args:
            interval_seconds: delay between sweep starts
            horizon_days: window for each sweep
            stop_event: set to stop after the current sweep

        Returns:
            Number of sweeps run
        """
        stop_event = stop_event or threading.Event()
        runs = 0
        while not stop_event.is_set():
            self.run_sweep(horizon_days)
            runs += 1
            stop_event.wait(interval_seconds)
        logger.info("sweep_loop_stopped", runs=runs)
        return runs
