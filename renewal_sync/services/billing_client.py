"""Billing backend queries via the Android Publisher API v3.

The client is built once at process startup from BillingSettings and passed
to the push handler and the sweep. Every request uses a fresh HTTP transport
with a bounded timeout; httplib2 connections are not shared across threads.
"""

from typing import Optional, Protocol

import google.auth
import google_auth_httplib2
import httplib2
from google.auth import exceptions as auth_exceptions
from google.auth.credentials import Credentials
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from renewal_sync.logging_config import get_logger
from renewal_sync.models.billing import BillingSnapshot
from renewal_sync.models.settings import BillingSettings
from renewal_sync.utils.tokens import mask_token

logger = get_logger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


class BillingQueryError(Exception):
    """Base exception for billing backend query failures."""

    transient = False


class SubscriptionNotFoundError(BillingQueryError):
    """The billing backend does not know the purchase token (404/410)."""

    pass


class BillingAuthError(BillingQueryError):
    """Credentials were rejected or could not be refreshed (401/403)."""

    pass


class TransientBillingError(BillingQueryError):
    """Timeout, transport failure, rate limit or 5xx. Safe to retry."""

    transient = True


class BillingQueryClient(Protocol):
    """Anything that can return the authoritative state of a subscription."""

    def query(self, package_name: str, product_id: str, purchase_token: str) -> BillingSnapshot:
        ...


class GooglePlayBillingClient:
    """``purchases.subscriptions.get`` wrapper.

    Args:
        credentials: Google credentials, or None for an unauthenticated endpoint
            such as a local IAP emulator
        timeout_seconds: network timeout per request
        api_endpoint: optional API root override
        num_retries: client-side retries on 5xx/429 responses
    """

    def __init__(
        self,
        credentials: Optional[Credentials],
        timeout_seconds: float = 10.0,
        api_endpoint: Optional[str] = None,
        num_retries: int = 0,
    ):
        self._credentials = credentials
        self._timeout_seconds = timeout_seconds
        self._api_endpoint = api_endpoint
        self._num_retries = num_retries

        client_options = {"api_endpoint": api_endpoint} if api_endpoint else None
        self._service = build(
            "androidpublisher",
            "v3",
            http=self._new_http(),
            client_options=client_options,
            cache_discovery=False,
        )

        logger.info(
            "billing_client_initialized",
            api_endpoint=api_endpoint or "default",
            authenticated=credentials is not None,
            timeout_seconds=timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> "GooglePlayBillingClient":
        """Build a client, resolving credentials from settings.

        Resolution order: service account file, then no credentials when an
        ``api_endpoint`` override is set, then application default credentials.

        Raises:
            BillingAuthError: If credentials cannot be loaded
        """
        credentials: Optional[Credentials]
        try:
            if settings.service_account_file:
                credentials = service_account.Credentials.from_service_account_file(
                    settings.service_account_file,
                    scopes=[ANDROID_PUBLISHER_SCOPE],
                )
            elif settings.api_endpoint:
                credentials = None
            else:
                credentials, _ = google.auth.default(scopes=[ANDROID_PUBLISHER_SCOPE])
        except (auth_exceptions.DefaultCredentialsError, OSError, ValueError) as e:
            raise BillingAuthError(f"Could not load billing credentials: {e}") from e

        return cls(
            credentials=credentials,
            timeout_seconds=settings.timeout_seconds,
            api_endpoint=settings.api_endpoint,
            num_retries=settings.num_retries,
        )

    def _new_http(self) -> httplib2.Http:
        http = httplib2.Http(timeout=self._timeout_seconds)
        if self._credentials is None:
            return http
        return google_auth_httplib2.AuthorizedHttp(self._credentials, http=http)

    def query(self, package_name: str, product_id: str, purchase_token: str) -> BillingSnapshot:
        """Fetch the authoritative subscription state.

        Args:
            package_name: Android package name
            product_id: Subscription product ID
            purchase_token: Purchase token

        Returns:
            BillingSnapshot

        Raises:
            SubscriptionNotFoundError: token unknown to the backend
            BillingAuthError: credentials rejected
            TransientBillingError: timeout, transport error, 429 or 5xx
            BillingQueryError: response without a usable expiry
        """
        request = (
            self._service.purchases()
            .subscriptions()
            .get(packageName=package_name, subscriptionId=product_id, token=purchase_token)
        )

        try:
            resource = request.execute(http=self._new_http(), num_retries=self._num_retries)
        except HttpError as e:
            raise self._map_http_error(e, product_id, purchase_token) from e
        except auth_exceptions.RefreshError as e:
            raise BillingAuthError(f"Credential refresh failed: {e}") from e
        except auth_exceptions.TransportError as e:
            raise TransientBillingError(f"Auth transport failed: {e}") from e
        except (OSError, httplib2.HttpLib2Error) as e:
            # socket timeouts are OSError subclasses
            raise TransientBillingError(f"Billing request failed: {type(e).__name__}: {e}") from e

        try:
            snapshot = BillingSnapshot.from_purchase_resource(resource)
        except (ValueError, TypeError) as e:
            raise BillingQueryError(f"Unexpected billing response: {e}") from e

        logger.debug(
            "billing_query_success",
            subscription_id=product_id,
            token=mask_token(purchase_token),
            expiry_time_millis=snapshot.expiry_time_millis,
            cancel_reason=snapshot.cancel_reason,
        )
        return snapshot

    @staticmethod
    def _map_http_error(error: HttpError, product_id: str, purchase_token: str) -> BillingQueryError:
        status = int(error.resp.status)
        logger.warning(
            "billing_query_http_error",
            status_code=status,
            subscription_id=product_id,
            token=mask_token(purchase_token),
        )
        if status in (404, 410):
            return SubscriptionNotFoundError(f"Subscription not found (HTTP {status})")
        if status in (401, 403):
            return BillingAuthError(f"Billing API rejected credentials (HTTP {status})")
        if status == 429 or status >= 500:
            return TransientBillingError(f"Billing API unavailable (HTTP {status})")
        return BillingQueryError(f"Billing API error (HTTP {status})")
