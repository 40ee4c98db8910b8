"""Load subscription records from a YAML seed file.

Format::

    transactions:
      - id: txn-1
        purchase_token: token-abc
        product_id: premium.monthly
        status: success
        subscription_user_id: sub-1
    subscription_users:
      - id: sub-1
        expiry_at_millis: 1731536000000
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from renewal_sync.config import ConfigurationError
from renewal_sync.logging_config import get_logger
from renewal_sync.models.subscription import SubscriptionUser, Transaction
from renewal_sync.repositories.subscription_store import SubscriptionStore

logger = get_logger(__name__)


def load_seed_file(store: SubscriptionStore, path: str) -> tuple[int, int]:
    """Add the records in ``path`` to ``store``.

    Returns:
        (transactions loaded, subscription users loaded)

    Raises:
        ConfigurationError: missing file, bad YAML, invalid or duplicate records
    """
    seed_path = Path(path)
    if not seed_path.exists():
        raise ConfigurationError(f"Seed file not found: {seed_path}")

    try:
        with open(seed_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse seed file: {e}") from e

    try:
        users = [SubscriptionUser(**item) for item in raw.get("subscription_users", [])]
        transactions = [Transaction(**item) for item in raw.get("transactions", [])]
        for user in users:
            store.add_subscription_user(user)
        for transaction in transactions:
            store.add_transaction(transaction)
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        raise ConfigurationError(f"Invalid seed file {seed_path}: {e}") from e

    logger.info(
        "store_seeded",
        path=str(seed_path),
        transactions=len(transactions),
        subscription_users=len(users),
    )
    return len(transactions), len(users)
