"""Operational endpoints.

Implements:
- POST /control/sweep
- GET /control/subscriptions/{subscriptionUserId}
- GET /control/stats
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from renewal_sync.api.dependencies import get_services
from renewal_sync.bootstrap import Services
from renewal_sync.logging_config import get_logger
from renewal_sync.models import SubscriptionUser, SweepReport

logger = get_logger(__name__)
router = APIRouter(prefix="/control", tags=["Control"])


@router.post("/sweep", response_model=SweepReport)
def trigger_sweep(
    horizon_days: int = Query(7, gt=0, description="Check subscriptions expiring within this many days"),
    services: Services = Depends(get_services),
) -> SweepReport:
    """Run a renewal sweep now and return its report."""
    logger.info("sweep_requested", horizon_days=horizon_days)
    return services.sweeper.run_sweep(horizon_days)


@router.get("/subscriptions/{subscriptionUserId}", response_model=SubscriptionUser)
def get_subscription_user(
    subscriptionUserId: str = Path(..., description="SubscriptionUser ID"),
    services: Services = Depends(get_services),
) -> SubscriptionUser:
    """Return the reconciled state of a subscription.

    Raises:
        404: Subscription user not found
    """
    subscription_user = services.store.find_subscription_user(subscriptionUserId)
    if subscription_user is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "message": f"Subscription user {subscriptionUserId} not found"},
        )
    return subscription_user


@router.get("/stats")
def get_stats(services: Services = Depends(get_services)) -> dict[str, int]:
    """Store statistics."""
    return services.store.get_statistics()
