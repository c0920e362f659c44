"""
API request/response schemas.
"""
from typing import Optional
from pydantic import BaseModel, Field


class WebhookAckResponse(BaseModel):
    success: bool = True
    event_id: str


class WebhookEventListResponse(BaseModel):
    events: list[dict]
    stats: dict
    filters: dict
    total_events: int
    source: str = "database"


class RetentionSweepResponse(BaseModel):
    success: bool = True
    cleared_count: int
    days_to_keep: int
    message: str


class TokenExchangeRequest(BaseModel):
    code: str = Field(min_length=1)
    scope: Optional[str] = None


class TokenExchangeResponse(BaseModel):
    principal_id: int
    expires_at: Optional[str] = None
    scope: Optional[str] = None
    athlete: dict


class PaymentSessionCreateRequest(BaseModel):
    target_address: str


class PaymentTransaction(BaseModel):
    transaction_hash: str
    block_number: int
    from_address: str
    to_address: str
    amount: str  # integer token units, as a string to survive JSON clients
    timestamp: Optional[int] = None


class PaymentSessionResponse(BaseModel):
    session_id: str
    status: str  # idle, scanning, monitoring, completed, failed
    target_address: str
    expected_amount: str
    payment_uri: str
    created_at: str
    window_end: Optional[str] = None
    transaction: Optional[PaymentTransaction] = None
    error: Optional[str] = None


class PaymentCheckResponse(BaseModel):
    found: bool
    target_address: str
    transaction: Optional[PaymentTransaction] = None


class TransactionStatusResponse(BaseModel):
    transaction_hash: str
    status: str  # pending, completed, failed
    block_number: Optional[int] = None
