"""
Sponsorship payment endpoints.

Session flow: create (idle, returns payment URI) -> start (scanning/monitoring)
-> poll GET until completed or failed. DELETE cancels a session at any time.
One-shot checks are available without a session.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from pacefund.schemas.api_responses import (
    PaymentCheckResponse,
    PaymentSessionCreateRequest,
    PaymentSessionResponse,
    TransactionStatusResponse,
)
from pacefund.services.payment_monitor import (
    InvalidSessionState,
    PaymentMonitor,
    get_payment_monitor,
)
from pacefund.utils.errors import TransportError, UpstreamRejected, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("/sessions", response_model=PaymentSessionResponse, status_code=201)
async def create_payment_session(
    payload: PaymentSessionCreateRequest,
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    try:
        session = monitor.create_session(payload.target_address)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.to_dict()


@router.post("/sessions/{session_id}/start", response_model=PaymentSessionResponse)
async def start_payment_session(
    session_id: str,
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    try:
        session = monitor.start(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Payment session not found")
    except InvalidSessionState as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_dict()


@router.get("/sessions/{session_id}", response_model=PaymentSessionResponse)
async def get_payment_session(
    session_id: str,
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    session = monitor.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return session.to_dict()


@router.delete("/sessions/{session_id}", response_model=PaymentSessionResponse)
async def cancel_payment_session(
    session_id: str,
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    session = await monitor.cancel(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return session.to_dict()


@router.get("/check", response_model=PaymentCheckResponse)
async def check_payment(
    address: str = Query(..., min_length=1),
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    """Single scan of the lookback window for the sponsorship transfer."""
    try:
        transfer = await monitor.check_for_sponsorship_payment(address)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (TransportError, UpstreamRejected) as e:
        logger.warning("Payment check failed: %s", str(e))
        raise HTTPException(status_code=502, detail="Blockchain query failed")

    return PaymentCheckResponse(
        found=transfer is not None,
        target_address=address,
        transaction=transfer.to_dict() if transfer else None,
    )


@router.get("/transactions/{tx_hash}", response_model=TransactionStatusResponse)
async def get_transaction_status(
    tx_hash: str,
    monitor: PaymentMonitor = Depends(get_payment_monitor),
):
    try:
        result = await monitor.check_transaction_status(tx_hash)
    except (TransportError, UpstreamRejected) as e:
        logger.warning("Transaction status lookup failed for %s: %s", tx_hash, str(e))
        raise HTTPException(status_code=502, detail="Blockchain query failed")
    return TransactionStatusResponse(transaction_hash=tx_hash, **result)
