"""
app/api/bridge.py

Purpose: Relay endpoint called by the Mini App

- Receives the attribution record (JSON)
- Hands it to the relay service
- Answers the CORS preflight itself for clients that skip the Origin header
- Error responses are produced by the app-wide exception handlers
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.core.logging import get_logger
from app.schemas.bridge import BridgeAttribution, BridgeResponse
from app.services.relay_service import RelayService, get_relay_service

logger = get_logger(__name__)
router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept",
}


@router.post("/bridge-webhook", response_model=BridgeResponse)
async def bridge_webhook(
    record: BridgeAttribution,
    relay: RelayService = Depends(get_relay_service),
) -> BridgeResponse:
    """
    Forwards a Mini App attribution record to the CRM.

    Responses:
    - 200: contact processed
    - 400: telegram_id missing or body malformed
    - 401: initData signature rejected (only when a bot token is configured)
    - 404: user unknown to the CRM (new user from ads)
    - 502: CRM unreachable
    - 500: unexpected error
    """
    logger.info(
        f"📥 Attribution received: telegram_id={record.telegram_id}, "
        f"start_param={record.start_param}, platform={record.platform}"
    )
    return await relay.relay(record)


@router.options("/bridge-webhook")
async def bridge_webhook_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get("/bridge-webhook")
async def bridge_webhook_status():
    """Lets operators check the endpoint is deployed."""
    return {"status": "ok", "message": "Bridge endpoint is active"}
