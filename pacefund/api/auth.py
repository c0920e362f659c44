"""
Strava OAuth completion - trade an authorization code for tokens.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from pacefund.schemas.api_responses import TokenExchangeRequest, TokenExchangeResponse
from pacefund.services.token_manager import TokenManager, get_token_manager
from pacefund.utils.errors import TransportError, UpstreamRejected

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/strava/token", response_model=TokenExchangeResponse)
async def exchange_strava_code(
    payload: TokenExchangeRequest,
    token_manager: TokenManager = Depends(get_token_manager),
):
    try:
        result = await token_manager.exchange_authorization_code(payload.code)
    except UpstreamRejected as e:
        logger.warning("Strava token exchange rejected: HTTP %s", e.status_code)
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        raise HTTPException(status_code=status, detail="Failed to exchange authorization code")
    except TransportError as e:
        logger.error("Strava token exchange unreachable: %s", str(e))
        raise HTTPException(status_code=504, detail="Strava did not respond")

    return TokenExchangeResponse(**result)
