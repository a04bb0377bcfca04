# routers/square.py - Square connection, webhook and status endpoints
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from database import get_db
from db_models import Location
from settings import get_settings
from services.integrations import (
    OAuthStateManager,
    SIGNATURE_HEADER,
    build_authorization_url,
    complete_authorization,
    delete_tokens,
    get_connection,
    handle_recorded_event,
    record_event,
    run_initial_sync_task,
    sync_merchant_task,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/square", tags=["Square"])


# Response models
class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SyncStatusResponse(CamelModel):
    status: Optional[str] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class StatusResponse(CamelModel):
    connected: bool
    provider_merchant_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None
    location_count: Optional[int] = None
    sync: Optional[SyncStatusResponse] = None


class DisconnectRequest(CamelModel):
    merchant_id: Optional[str] = None


class DisconnectResponse(BaseModel):
    success: bool
    message: str


class WebhookAck(BaseModel):
    received: bool


class SyncStartedResponse(BaseModel):
    started: bool


def landing_url(outcome: str) -> str:
    """Dashboard page the merchant lands on after the OAuth round trip"""
    base = get_settings().APP_BASE_URL.rstrip("/")
    if outcome == "success":
        return f"{base}/dashboard?square_connect=success&sync=started"
    return f"{base}/dashboard?square_connect={outcome}"


def require_merchant_id(merchant_id: Optional[str]) -> str:
    if not merchant_id or not merchant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="merchantId required"
        )
    return merchant_id.strip()


# ============ OAuth Flow Endpoints ============

# Sync handler: FastAPI runs it in the threadpool, off the event loop
@router.get("/connect")
def connect(merchant_id: Optional[str] = Query(None, alias="merchantId")):
    """
    Step 1: Redirect the merchant to Square's authorization page
    """
    merchant_id = require_merchant_id(merchant_id)
    return RedirectResponse(url=build_authorization_url(merchant_id))


@router.get("/callback")
async def oauth_callback(
    background_tasks: BackgroundTasks,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Step 2: OAuth callback handler
    Exchanges the code, stores the tokens and starts the initial sync in the
    background. Redirects back to the dashboard with the outcome.
    """
    if error:
        logger.info(f"Square OAuth denied: {error}")
        return RedirectResponse(url=landing_url("denied"))

    # The state store may be Redis; keep its blocking round trip off the event loop
    merchant_id = await run_in_threadpool(OAuthStateManager.validate_state, state)
    if not merchant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired state"
        )

    if not code:
        logger.warning(f"Square OAuth callback for merchant {merchant_id} without a code")
        return RedirectResponse(url=landing_url("error"))

    try:
        tokens = await complete_authorization(db, merchant_id, code)
    except Exception as e:
        logger.error(f"Square OAuth token exchange failed for merchant {merchant_id}: {e}")
        return RedirectResponse(url=landing_url("error"))

    background_tasks.add_task(
        run_initial_sync_task,
        merchant_id,
        tokens.square_merchant_id,
        tokens.access_token,
    )
    logger.info(f"Square connected for merchant {merchant_id}, initial sync queued")
    return RedirectResponse(url=landing_url("success"))


# ============ Webhooks ============

@router.post("/webhooks", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """
    Verify, log and acknowledge a Square webhook; processing happens after
    the response is sent.
    """
    body = await request.body()

    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("Square webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed webhook payload"
        )

    event, needs_processing = record_event(db, payload, body)
    if needs_processing:
        background_tasks.add_task(handle_recorded_event, event.id)

    return WebhookAck(received=True)


# ============ Connection Management ============

@router.get("/status", response_model=StatusResponse)
async def connection_status(
    merchant_id: Optional[str] = Query(None, alias="merchantId"),
    db: Session = Depends(get_db)
):
    """Connection and last-sync summary for a merchant"""
    merchant_id = require_merchant_id(merchant_id)

    connection = get_connection(db, merchant_id)
    if connection is None:
        return StatusResponse(connected=False)

    location_count = db.query(Location).filter(Location.merchant_id == merchant_id).count()

    return StatusResponse(
        connected=True,
        provider_merchant_id=connection.square_merchant_id,
        connected_at=connection.connected_at,
        token_expires_at=connection.expires_at,
        location_count=location_count,
        sync=SyncStatusResponse(
            status=connection.sync_status,
            completed_at=connection.sync_completed_at,
            error=connection.sync_error,
        ),
    )


@router.delete("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    payload: Optional[DisconnectRequest] = None,
    db: Session = Depends(get_db)
):
    """Remove the stored connection; reconnecting requires a new authorization"""
    merchant_id = require_merchant_id(payload.merchant_id if payload else None)

    removed = delete_tokens(db, merchant_id)
    logger.info(f"Merchant {merchant_id} disconnected Square (row removed: {removed})")
    return DisconnectResponse(success=True, message="Square connection removed")


@router.post("/sync", response_model=SyncStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    background_tasks: BackgroundTasks,
    merchant_id: Optional[str] = Query(None, alias="merchantId"),
    db: Session = Depends(get_db)
):
    """Re-run the full sync for a connected merchant in the background"""
    merchant_id = require_merchant_id(merchant_id)

    if get_connection(db, merchant_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Square is not connected for this merchant"
        )

    background_tasks.add_task(sync_merchant_task, merchant_id)
    return SyncStartedResponse(started=True)
