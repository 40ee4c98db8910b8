"""Process startup wiring.

Builds every collaborator once and hands the same instances to the push
endpoint, the pull listener and the sweep.
"""

from typing import Optional

from renewal_sync.logging_config import get_logger
from renewal_sync.models.settings import ServiceSettings
from renewal_sync.repositories.seed import load_seed_file
from renewal_sync.repositories.subscription_store import SubscriptionStore, get_subscription_store
from renewal_sync.services.billing_client import BillingQueryClient, GooglePlayBillingClient
from renewal_sync.services.clock import Clock
from renewal_sync.services.event_decoder import EventDecoder
from renewal_sync.services.notification_handler import NotificationHandler
from renewal_sync.services.reconciliation_engine import ReconciliationEngine
from renewal_sync.services.sweep_scheduler import SweepScheduler

logger = get_logger(__name__)


class Services:
    """Collaborators shared by the HTTP app and the CLI commands."""

    def __init__(
        self,
        settings: ServiceSettings,
        store: SubscriptionStore,
        billing_client: BillingQueryClient,
        clock: Clock,
    ):
        self.settings = settings
        self.store = store
        self.billing_client = billing_client
        self.clock = clock
        self.decoder = EventDecoder(default_package_name=settings.package_name)
        self.engine = ReconciliationEngine(store=store, billing_client=billing_client, clock=clock)
        self.handler = NotificationHandler(
            decoder=self.decoder,
            engine=self.engine,
            nack_transient_failures=settings.webhook.nack_transient_failures,
        )
        self.sweeper = SweepScheduler(
            store=store,
            billing_client=billing_client,
            engine=self.engine,
            package_name=settings.package_name,
            clock=clock,
        )


def build_services(
    settings: ServiceSettings,
    billing_client: Optional[BillingQueryClient] = None,
    store: Optional[SubscriptionStore] = None,
    clock: Optional[Clock] = None,
) -> Services:
    """Build the service graph.

    Args:
        settings: validated settings
        billing_client: injected client (built from ``settings.billing`` if omitted)
        store: injected store (global store, seeded from settings, if omitted)
        clock: injected clock (system clock if omitted)

    Raises:
        BillingAuthError: If billing credentials cannot be loaded
        ConfigurationError: If the seed file is invalid
    """
    if billing_client is None:
        billing_client = GooglePlayBillingClient.from_settings(settings.billing)

    if store is None:
        store = get_subscription_store()
        if settings.store.seed_file and store.count() == 0:
            load_seed_file(store, settings.store.seed_file)

    services = Services(
        settings=settings,
        store=store,
        billing_client=billing_client,
        clock=clock or Clock(),
    )
    logger.info("services_built", package_name=settings.package_name)
    return services
