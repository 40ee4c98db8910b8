"""Inbound RTDN push endpoint.

Implements:
- POST /webhooks/google-play
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from renewal_sync.api.dependencies import get_services
from renewal_sync.bootstrap import Services
from renewal_sync.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Webhooks"])


@router.post("/webhooks/google-play", summary="Google Play Real-time Developer Notification")
async def google_play_notification(
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Receive a Pub/Sub push delivery.

    Returns:
        200 {"success": true} for any well-formed payload, 400 {"error": ...}
        for a malformed envelope, 503 {"error": ...} for transient failures
        when configured to request redelivery
    """
    body = await request.body()
    # billing queries block; keep them off the event loop
    decision = await run_in_threadpool(services.handler.handle, body)

    logger.info("webhook_answered", status_code=decision.status_code)
    return JSONResponse(status_code=decision.status_code, content=decision.body)
