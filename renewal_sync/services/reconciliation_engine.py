"""Reconciliation state machine for subscription entitlements.

Responsibilities:
- Decide the authoritative state and expiry from renewal events and polled snapshots
- Enforce idempotency via the last applied event ID
- Enforce monotonicity (renewals only move expiry forward, cancellations only back)
- Write through compare-and-set, retrying once when a concurrent writer wins
"""

from typing import NamedTuple, Optional

from renewal_sync.logging_config import get_logger
from renewal_sync.models.billing import BillingSnapshot
from renewal_sync.models.events import EventType, RenewalEvent
from renewal_sync.models.results import ReconciliationOutcome, ReconciliationResult
from renewal_sync.models.subscription import SubscriptionStatus, SubscriptionUser, Transaction
from renewal_sync.repositories.subscription_store import SubscriptionStore
from renewal_sync.services.billing_client import BillingQueryClient, BillingQueryError
from renewal_sync.services.clock import Clock
from renewal_sync.state_logger import (
    log_anomaly,
    log_duplicate_event,
    log_expiry_change,
    log_stale_event,
    log_subscription_state_change,
)
from renewal_sync.utils.tokens import mask_token, poll_event_id

logger = get_logger(__name__)


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    pass


class QueryFailedError(ReconciliationError):
    """The billing backend could not be queried. Nothing was written."""

    def __init__(self, message: str, cause: BillingQueryError):
        super().__init__(message)
        self.cause = cause

    @property
    def transient(self) -> bool:
        return self.cause.transient


class AnomalousTransitionError(ReconciliationError):
    """A computed transition moved expiry in the forbidden direction. Not applied."""

    pass


class PersistenceConflictError(ReconciliationError):
    """Compare-and-set lost to a concurrent writer on every attempt."""

    pass


class Direction:
    """Which way a transition class is allowed to move expiry."""

    FORWARD = "forward"  # renewal-class
    BACKWARD = "backward"  # cancellation-class
    UNCHANGED = "unchanged"  # suspension-class


class Transition(NamedTuple):
    """Planned write. ``state`` None means no write (see ``outcome``)."""

    outcome: ReconciliationOutcome
    state: Optional[SubscriptionStatus] = None
    expiry_millis: Optional[int] = None


INFORMATIONAL_EVENTS = frozenset(
    {
        EventType.PRICE_CHANGE,
        EventType.DEFERRED,
        EventType.PAUSE_SCHEDULE_CHANGED,
        EventType.PURCHASED,
        EventType.UNKNOWN,
    }
)

SUSPENSION_TARGETS = {
    EventType.ON_HOLD: SubscriptionStatus.ON_HOLD,
    EventType.PAUSED: SubscriptionStatus.PAUSED,
}


class ReconciliationEngine:
    """Applies renewal events and polled snapshots to SubscriptionUser records.

    Billing queries happen before the compare-and-set and never under the
    store lock. A lost compare-and-set re-runs the whole decision once.

    Args:
        store: persistence with ``cas_update``
        billing_client: authoritative expiry source
        clock: time source (defaults to the system clock)
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        store: SubscriptionStore,
        billing_client: BillingQueryClient,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.billing_client = billing_client
        self.clock = clock or Clock()

    # Push path

    def reconcile_event(self, event: RenewalEvent) -> ReconciliationResult:
        """Reconcile one decoded renewal event.

        Args:
            event: Normalized RTDN event

        Returns:
            ReconciliationResult describing what happened

        Raises:
            QueryFailedError: billing query failed; no state or idempotency marker written
            AnomalousTransitionError: transition violated monotonicity; not applied
            PersistenceConflictError: compare-and-set lost twice
        """
        if event.type in INFORMATIONAL_EVENTS:
            logger.info(
                "notification_ignored",
                event_id=event.event_id,
                event_type=event.type.value,
                notification_type=event.notification_type,
                subscription_id=event.product_id,
            )
            return ReconciliationResult(outcome=ReconciliationOutcome.IGNORED, event_id=event.event_id)

        transaction = self.store.find_active_transaction_by_token(event.purchase_token)
        if transaction is None:
            return self._no_match(event.event_id, event.purchase_token, event.product_id)

        if event.type == EventType.GRACE_PERIOD:
            return self._report_grace(transaction, event)

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            current = self.store.find_subscription_user(transaction.subscription_user_id)
            if current is None:
                return self._no_match(event.event_id, event.purchase_token, event.product_id)

            if current.last_applied_event_id == event.event_id:
                log_duplicate_event(current.id, event.event_id, event_type=event.type.value)
                return self._result(ReconciliationOutcome.DUPLICATE, current, event.event_id)

            if event.is_renewal:
                snapshot = self._query(event.package_name, event.product_id, event.purchase_token)
                transition = self._plan_renewal(current, snapshot.expiry_time_millis)
                direction = Direction.FORWARD
            elif event.is_cancellation:
                transition = self._plan_cancellation(current, self.clock.now_millis())
                direction = Direction.BACKWARD
            else:
                transition = self._plan_suspension(current, SUSPENSION_TARGETS[event.type])
                direction = Direction.UNCHANGED

            result = self._commit(
                transaction, current, transition, direction, event.event_id, reason=event.type.value
            )
            if result is not None:
                return result

            logger.warning(
                "reconciliation_cas_conflict",
                subscription_user_id=current.id,
                event_id=event.event_id,
                attempt=attempt,
            )

        raise PersistenceConflictError(
            f"Concurrent update on subscription user {transaction.subscription_user_id} "
            f"for event {event.event_id}"
        )

    # Poll path

    def reconcile_snapshot(self, transaction: Transaction, snapshot: BillingSnapshot) -> ReconciliationResult:
        """Reconcile a polled snapshot as a renewal-class probe.

        The idempotency key is the polled expiry, so re-polling the same expiry
        is a no-op.

        Raises:
            AnomalousTransitionError: snapshot would move expiry backward
            PersistenceConflictError: compare-and-set lost twice
        """
        event_id = poll_event_id(snapshot.expiry_time_millis)

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            current = self.store.find_subscription_user(transaction.subscription_user_id)
            if current is None:
                return self._no_match(event_id, transaction.purchase_token, transaction.product_id)

            if current.last_applied_event_id == event_id:
                log_duplicate_event(current.id, event_id, reason="sweep")
                return self._result(ReconciliationOutcome.DUPLICATE, current, event_id)

            transition = self._plan_poll(current, snapshot)
            result = self._commit(transaction, current, transition, Direction.FORWARD, event_id, reason="sweep")
            if result is not None:
                return result

            logger.warning(
                "reconciliation_cas_conflict",
                subscription_user_id=current.id,
                event_id=event_id,
                attempt=attempt,
            )

        raise PersistenceConflictError(
            f"Concurrent update on subscription user {transaction.subscription_user_id} during sweep"
        )

    # Planning

    @staticmethod
    def _plan_renewal(current: SubscriptionUser, new_expiry_millis: int) -> Transition:
        """Renewal-class: ACTIVE(new) iff expiry moves forward or state is not ACTIVE."""
        if new_expiry_millis > current.expiry_at_millis:
            return Transition(ReconciliationOutcome.APPLIED, SubscriptionStatus.ACTIVE, new_expiry_millis)
        if current.is_active:
            return Transition(ReconciliationOutcome.STALE, None, new_expiry_millis)
        return Transition(ReconciliationOutcome.APPLIED, SubscriptionStatus.ACTIVE, new_expiry_millis)

    @classmethod
    def _plan_poll(cls, current: SubscriptionUser, snapshot: BillingSnapshot) -> Transition:
        """Sweep probe: an inactive record is only reactivated by a later, uncanceled expiry.

        ON_HOLD and PAUSED keep their state until a RECOVERED or RESTARTED
        notification arrives.
        """
        if current.is_active or snapshot.expiry_time_millis < current.expiry_at_millis:
            return cls._plan_renewal(current, snapshot.expiry_time_millis)
        if snapshot.is_canceled:
            return Transition(ReconciliationOutcome.NO_CHANGE)
        if snapshot.expiry_time_millis == current.expiry_at_millis:
            return Transition(ReconciliationOutcome.STALE, None, snapshot.expiry_time_millis)
        return Transition(ReconciliationOutcome.APPLIED, SubscriptionStatus.ACTIVE, snapshot.expiry_time_millis)

    @staticmethod
    def _plan_cancellation(current: SubscriptionUser, now_millis: int) -> Transition:
        """Cancellation-class: EXPIRED(min(expiry, now)); never extends."""
        new_expiry = min(current.expiry_at_millis, now_millis)
        if current.state == SubscriptionStatus.EXPIRED and new_expiry == current.expiry_at_millis:
            return Transition(ReconciliationOutcome.NO_CHANGE)
        return Transition(ReconciliationOutcome.APPLIED, SubscriptionStatus.EXPIRED, new_expiry)

    @staticmethod
    def _plan_suspension(current: SubscriptionUser, target: SubscriptionStatus) -> Transition:
        """ON_HOLD / PAUSED: state only, expiry keeps counting down."""
        if current.state == target:
            return Transition(ReconciliationOutcome.NO_CHANGE)
        return Transition(ReconciliationOutcome.APPLIED, target, current.expiry_at_millis)

    @staticmethod
    def _violates_direction(direction: str, old_expiry: int, new_expiry: int) -> bool:
        if direction == Direction.FORWARD:
            return new_expiry < old_expiry
        if direction == Direction.BACKWARD:
            return new_expiry > old_expiry
        return new_expiry != old_expiry

    # Writing

    def _commit(
        self,
        transaction: Transaction,
        current: SubscriptionUser,
        transition: Transition,
        direction: str,
        event_id: str,
        reason: str,
    ) -> Optional[ReconciliationResult]:
        """Apply a planned transition.

        Returns:
            Result, or None if the compare-and-set lost and the caller should retry
        """
        if transition.state is None:
            if transition.outcome == ReconciliationOutcome.STALE:
                log_stale_event(
                    current.id,
                    current_expiry_millis=current.expiry_at_millis,
                    polled_expiry_millis=transition.expiry_millis,
                    event_id=event_id,
                    reason=reason,
                )
            else:
                logger.info(
                    "reconciliation_no_change",
                    subscription_user_id=current.id,
                    state=current.state.value,
                    event_id=event_id,
                    reason=reason,
                )
            return self._result(transition.outcome, current, event_id)

        if self._violates_direction(direction, current.expiry_at_millis, transition.expiry_millis):
            log_anomaly(
                current.id,
                reason=f"{reason} would move expiry {'forward' if direction == Direction.BACKWARD else 'backward'}",
                token=transaction.purchase_token,
                event_id=event_id,
                direction=direction,
                current_state=current.state.value,
                current_expiry_millis=current.expiry_at_millis,
                proposed_state=transition.state.value,
                proposed_expiry_millis=transition.expiry_millis,
            )
            raise AnomalousTransitionError(
                f"Rejected {reason} transition on subscription user {current.id}: "
                f"expiry {current.expiry_at_millis} -> {transition.expiry_millis} violates {direction} rule"
            )

        now_millis = self.clock.now_millis()
        written = self.store.cas_update(
            subscription_user_id=current.id,
            expected_version=current.version,
            new_state=transition.state,
            new_expiry_millis=transition.expiry_millis,
            event_id=event_id,
            applied_at_millis=now_millis,
        )
        if not written:
            return None

        if transition.state != current.state:
            log_subscription_state_change(
                current.id,
                old_state=current.state.value,
                new_state=transition.state.value,
                reason=reason,
                event_id=event_id,
                token=mask_token(transaction.purchase_token),
            )
        if transition.expiry_millis != current.expiry_at_millis:
            log_expiry_change(
                current.id,
                old_expiry_millis=current.expiry_at_millis,
                new_expiry_millis=transition.expiry_millis,
                reason=reason,
                event_id=event_id,
                transaction_id=transaction.id,
            )

        return ReconciliationResult(
            outcome=ReconciliationOutcome.APPLIED,
            event_id=event_id,
            subscription_user_id=current.id,
            previous_state=current.state,
            new_state=transition.state,
            previous_expiry_millis=current.expiry_at_millis,
            new_expiry_millis=transition.expiry_millis,
        )

    # Helpers

    def _query(self, package_name: str, product_id: str, purchase_token: str) -> BillingSnapshot:
        try:
            return self.billing_client.query(package_name, product_id, purchase_token)
        except BillingQueryError as e:
            logger.error(
                "billing_query_failed",
                subscription_id=product_id,
                token=mask_token(purchase_token),
                error=str(e),
                error_type=type(e).__name__,
                transient=e.transient,
            )
            raise QueryFailedError(f"Billing query failed: {e}", cause=e) from e

    def _report_grace(self, transaction: Transaction, event: RenewalEvent) -> ReconciliationResult:
        """GRACE_PERIOD is reported, not written; expiry keeps counting down."""
        current = self.store.find_subscription_user(transaction.subscription_user_id)
        if current is None:
            return self._no_match(event.event_id, event.purchase_token, event.product_id)

        logger.info(
            "subscription_in_grace_period",
            subscription_user_id=current.id,
            transaction_id=transaction.id,
            expiry_at_millis=current.expiry_at_millis,
            event_id=event.event_id,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.GRACE,
            event_id=event.event_id,
            subscription_user_id=current.id,
            previous_state=current.state,
            new_state=SubscriptionStatus.GRACE,
            previous_expiry_millis=current.expiry_at_millis,
            new_expiry_millis=current.expiry_at_millis,
        )

    @staticmethod
    def _no_match(event_id: str, purchase_token: str, product_id: str) -> ReconciliationResult:
        logger.info(
            "no_matching_subscription",
            event_id=event_id,
            token=mask_token(purchase_token),
            subscription_id=product_id,
        )
        return ReconciliationResult(outcome=ReconciliationOutcome.NO_MATCH, event_id=event_id)

    @staticmethod
    def _result(
        outcome: ReconciliationOutcome, current: SubscriptionUser, event_id: str
    ) -> ReconciliationResult:
        return ReconciliationResult(
            outcome=outcome,
            event_id=event_id,
            subscription_user_id=current.id,
            previous_state=current.state,
            new_state=current.state,
            previous_expiry_millis=current.expiry_at_millis,
            new_expiry_millis=current.expiry_at_millis,
        )
