"""Subscription store - in-memory persistence for transactions and entitlements.

Holds Transaction and SubscriptionUser records. Expiry changes go through
``cas_update``, a compare-and-set on the record version, so concurrent webhook
deliveries and sweeps cannot overwrite each other.
"""

import threading
from typing import Dict, List, Optional

from renewal_sync.models.subscription import (
    AgentType,
    SubscriptionStatus,
    SubscriptionUser,
    Transaction,
    TransactionStatus,
)


class SubscriptionUserNotFoundError(Exception):
    """Raised when a SubscriptionUser is not found in the store."""

    pass


class TransactionNotFoundError(Exception):
    """Raised when a Transaction is not found in the store."""

    pass


class SubscriptionStore:
    """Thread-safe in-memory store.

    Records are copied on the way in and out, so a caller holding a record
    holds a snapshot, never the stored row.
    """

    def __init__(self):
        self._transactions: Dict[str, Transaction] = {}
        self._subscription_users: Dict[str, SubscriptionUser] = {}
        self._lock = threading.RLock()

    # Transactions

    def add_transaction(self, transaction: Transaction) -> None:
        """Add a transaction.

        Raises:
            ValueError: If the transaction ID already exists
        """
        with self._lock:
            if transaction.id in self._transactions:
                raise ValueError(f"Transaction with id '{transaction.id}' already exists")
            self._transactions[transaction.id] = transaction.model_copy()

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Get transaction by ID.

        Raises:
            TransactionNotFoundError: If ID not found
        """
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
            return transaction.model_copy()

    def update_transaction_status(self, transaction_id: str, status: TransactionStatus) -> Transaction:
        """Change the status of a transaction (its only mutable field).

        Raises:
            TransactionNotFoundError: If ID not found
        """
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
            updated = transaction.model_copy(update={"status": status})
            self._transactions[transaction_id] = updated
            return updated.model_copy()

    def find_active_transaction_by_token(
        self, purchase_token: str, agent_type: Optional[AgentType] = AgentType.GOOGLE_PLAY
    ) -> Optional[Transaction]:
        """Find the reconcilable transaction for a purchase token.

        Only SUCCESS transactions linked to a SubscriptionUser qualify.

        Args:
            purchase_token: Purchase token from the notification
            agent_type: Store provider filter (None matches any)

        Returns:
            Transaction if found, None otherwise
        """
        with self._lock:
            for transaction in self._transactions.values():
                if (
                    transaction.purchase_token == purchase_token
                    and transaction.is_reconcilable
                    and (agent_type is None or transaction.agent_type == agent_type)
                ):
                    return transaction.model_copy()
            return None

    def find_subscriptions_expiring_within(
        self,
        window_millis: int,
        now_millis: int,
        agent_type: Optional[AgentType] = AgentType.GOOGLE_PLAY,
    ) -> List[Transaction]:
        """Find reconcilable transactions whose subscription expires in ``(now, now + window]``.

        Args:
            window_millis: Horizon length in milliseconds
            now_millis: Current time
            agent_type: Store provider filter (None matches any)

        Returns:
            Matching transactions ordered by subscription expiry
        """
        upper = now_millis + window_millis
        with self._lock:
            matches = []
            for transaction in self._transactions.values():
                if not transaction.is_reconcilable:
                    continue
                if agent_type is not None and transaction.agent_type != agent_type:
                    continue
                user = self._subscription_users.get(transaction.subscription_user_id)
                if user is None:
                    continue
                if now_millis < user.expiry_at_millis <= upper:
                    matches.append((user.expiry_at_millis, transaction.model_copy()))
            matches.sort(key=lambda item: item[0])
            return [transaction for _, transaction in matches]

    # Subscription users

    def add_subscription_user(self, subscription_user: SubscriptionUser) -> None:
        """Add a subscription user.

        Raises:
            ValueError: If the ID already exists
        """
        with self._lock:
            if subscription_user.id in self._subscription_users:
                raise ValueError(f"SubscriptionUser with id '{subscription_user.id}' already exists")
            self._subscription_users[subscription_user.id] = subscription_user.model_copy()

    def get_subscription_user(self, subscription_user_id: str) -> SubscriptionUser:
        """Get subscription user by ID.

        Raises:
            SubscriptionUserNotFoundError: If ID not found
        """
        with self._lock:
            user = self._subscription_users.get(subscription_user_id)
            if user is None:
                raise SubscriptionUserNotFoundError(
                    f"SubscriptionUser not found: {subscription_user_id}"
                )
            return user.model_copy()

    def find_subscription_user(self, subscription_user_id: str) -> Optional[SubscriptionUser]:
        """Find subscription user by ID (returns None if not found)."""
        with self._lock:
            user = self._subscription_users.get(subscription_user_id)
            return user.model_copy() if user is not None else None

    def cas_update(
        self,
        subscription_user_id: str,
        expected_version: int,
        new_state: SubscriptionStatus,
        new_expiry_millis: int,
        event_id: str,
        applied_at_millis: int,
    ) -> bool:
        """Compare-and-set the reconciled state of a subscription user.

        The write happens only if the stored version still equals
        ``expected_version``; the version is bumped on success.

        Args:
            subscription_user_id: Target SubscriptionUser ID
            expected_version: Version of the snapshot the caller decided on
            new_state: State to write
            new_expiry_millis: Expiry to write
            event_id: Idempotency key recorded as last applied
            applied_at_millis: Time of application

        Returns:
            True if written, False if the record changed since it was read

        Raises:
            SubscriptionUserNotFoundError: If ID not found
        """
        with self._lock:
            current = self._subscription_users.get(subscription_user_id)
            if current is None:
                raise SubscriptionUserNotFoundError(
                    f"SubscriptionUser not found: {subscription_user_id}"
                )
            if current.version != expected_version:
                return False
            self._subscription_users[subscription_user_id] = current.model_copy(
                update={
                    "state": new_state,
                    "expiry_at_millis": new_expiry_millis,
                    "last_applied_event_id": event_id,
                    "last_applied_at_millis": applied_at_millis,
                    "version": current.version + 1,
                }
            )
            return True

    # Maintenance

    def count(self) -> int:
        """Get number of subscription users."""
        with self._lock:
            return len(self._subscription_users)

    def clear(self) -> None:
        """Clear all records.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._transactions.clear()
            self._subscription_users.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get store statistics.

        Returns:
            Dictionary with transaction totals and subscription counts per state
        """
        with self._lock:
            users = list(self._subscription_users.values())
            stats = {
                "total_transactions": len(self._transactions),
                "reconcilable_transactions": sum(
                    1 for t in self._transactions.values() if t.is_reconcilable
                ),
                "total_subscriptions": len(users),
            }
            for state in SubscriptionStatus:
                stats[state.value] = sum(1 for u in users if u.state == state)
            return stats

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"SubscriptionStore(subscriptions={self.count()})"


# Global store instance
_store_instance: Optional[SubscriptionStore] = None
_store_lock = threading.Lock()


def get_subscription_store() -> SubscriptionStore:
    """Get global subscription store instance (singleton).

    Returns:
        SubscriptionStore instance
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = SubscriptionStore()
    return _store_instance


def reset_subscription_store() -> None:
    """Reset global subscription store (clears all data)."""
    get_subscription_store().clear()
