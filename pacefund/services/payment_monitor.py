"""
Sponsorship payment monitor - watch for one fixed-amount USDC transfer.

Each PaymentSession walks idle -> scanning -> monitoring -> completed|failed:
- idle        created with a target address and the fixed sponsorship amount
- scanning    start() was called; the first poll of the lookback window runs
- monitoring  nothing matched yet; poll every payment_poll_interval_seconds
- completed   earliest transfer of exactly expected_amount found
- failed      RPC/transport error budget spent, window elapsed, or cancelled

Every poll scans the last payment_lookback_blocks blocks, never from genesis.
Amounts are integer token units; a transfer of any other amount is ignored.
The block timestamp is only fetched for the matching transfer.

Sessions live in process memory. They are re-derivable from the target
address and the fixed amount, so a restart just means starting a new one.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pacefund.config import get_settings
from pacefund.services.blockchain import (
    BlockchainClient,
    TokenTransfer,
    generate_payment_uri,
    get_blockchain_client,
    normalize_address,
)
from pacefund.utils.errors import NotFoundYet, TransportError, UpstreamRejected
from pacefund.utils.timezone import utcnow

logger = logging.getLogger(__name__)

# Finished sessions stay queryable this long before being pruned
FINISHED_SESSION_TTL = timedelta(hours=1)


class PaymentStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PAYMENT_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED}


class InvalidSessionState(Exception):
    """Raised when a session is asked to start from a state other than idle."""
    pass


@dataclass
class SponsorshipIntent:
    target_address: str
    expected_amount: int
    created_at: datetime
    window_end: Optional[datetime] = None


class PaymentSession:
    """One observation attempt for a sponsorship intent."""

    def __init__(self, intent: SponsorshipIntent, payment_uri: str):
        self.id = str(uuid.uuid4())
        self.intent = intent
        self.payment_uri = payment_uri
        self.status = PaymentStatus.IDLE
        self.transaction: Optional[TokenTransfer] = None
        self.error: Optional[str] = None
        self.error_count = 0
        self.finished_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    def complete(self, transfer: TokenTransfer) -> None:
        self.transaction = transfer
        self.status = PaymentStatus.COMPLETED
        self.finished_at = utcnow()

    def fail(self, error: str) -> None:
        self.error = error
        self.status = PaymentStatus.FAILED
        self.finished_at = utcnow()

    def to_dict(self) -> dict:
        return {
            "session_id": self.id,
            "status": self.status.value,
            "target_address": self.intent.target_address,
            "expected_amount": str(self.intent.expected_amount),
            "payment_uri": self.payment_uri,
            "created_at": self.intent.created_at.isoformat(),
            "window_end": self.intent.window_end.isoformat() if self.intent.window_end else None,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "error": self.error,
        }


class PaymentMonitor:
    """Registry and poll loops for payment sessions."""

    def __init__(
        self,
        chain: Optional[BlockchainClient] = None,
        expected_amount: Optional[int] = None,
        poll_interval: Optional[float] = None,
        lookback_blocks: Optional[int] = None,
        session_timeout: Optional[int] = None,
        max_errors: Optional[int] = None,
    ):
        settings = get_settings()
        self._chain = chain
        self.expected_amount = expected_amount if expected_amount is not None else settings.sponsorship_amount_units
        self.poll_interval = poll_interval if poll_interval is not None else settings.payment_poll_interval_seconds
        self.lookback_blocks = lookback_blocks if lookback_blocks is not None else settings.payment_lookback_blocks
        self.session_timeout = timedelta(
            seconds=session_timeout if session_timeout is not None else settings.payment_session_timeout_seconds
        )
        self.max_errors = max(1, max_errors if max_errors is not None else settings.payment_max_errors)
        self.chain_id = settings.chain_id
        self._sessions: dict[str, PaymentSession] = {}

    @property
    def chain(self) -> BlockchainClient:
        if self._chain is None:
            self._chain = get_blockchain_client()
        return self._chain

    # --- Session lifecycle ---

    def create_session(self, target_address: str) -> PaymentSession:
        """New idle session. Raises ValidationError for a malformed address."""
        address = normalize_address(target_address)
        self._prune()
        intent = SponsorshipIntent(
            target_address=address,
            expected_amount=self.expected_amount,
            created_at=utcnow(),
        )
        uri = generate_payment_uri(address, self.expected_amount, self.chain.token_address, self.chain_id)
        session = PaymentSession(intent, uri)
        self._sessions[session.id] = session
        logger.info(
            "Payment session created for %s", address,
            extra={"session_id": session.id},
        )
        return session

    def get_session(self, session_id: str) -> Optional[PaymentSession]:
        return self._sessions.get(session_id)

    def start(self, session_id: str) -> PaymentSession:
        """Begin observation. Starting an already running session is a no-op."""
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        if session.status in (PaymentStatus.SCANNING, PaymentStatus.MONITORING):
            return session
        if session.status is not PaymentStatus.IDLE:
            raise InvalidSessionState(
                f"Session {session_id} is {session.status.value}; create a new session to retry"
            )

        session.intent.window_end = utcnow() + self.session_timeout
        session.status = PaymentStatus.SCANNING
        session._task = asyncio.create_task(self._run(session))
        logger.info(
            "Payment monitoring started for %s until %s",
            session.intent.target_address, session.intent.window_end.isoformat(),
            extra={"session_id": session.id},
        )
        return session

    async def cancel(self, session_id: str) -> Optional[PaymentSession]:
        """Stop polling and drop the session. Returns its final state, or None if unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        await self._stop(session)
        if not session.is_terminal:
            session.fail("Cancelled by client")
        logger.info("Payment session cancelled", extra={"session_id": session.id})
        return session

    async def shutdown(self) -> None:
        """Cancel every running poll loop."""
        sessions = list(self._sessions.values())
        for session in sessions:
            await self._stop(session)
            if not session.is_terminal:
                session.fail("Monitor shut down")
        if sessions:
            logger.info("Payment monitor stopped %d sessions", len(sessions))

    async def _stop(self, session: PaymentSession) -> None:
        task = session._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _prune(self) -> None:
        cutoff = utcnow() - FINISHED_SESSION_TTL
        stale = [
            sid for sid, s in self._sessions.items()
            if s.is_terminal and s.finished_at and s.finished_at < cutoff
        ]
        for sid in stale:
            del self._sessions[sid]

    # --- Polling ---

    async def find_payment(self, target_address: str) -> TokenTransfer:
        """
        One poll of the lookback window.
        Returns the earliest exact-amount transfer or raises NotFoundYet.
        RPC failures propagate as TransportError / UpstreamRejected.
        """
        current = await self.chain.get_block_number()
        from_block = max(0, current - self.lookback_blocks)
        transfers = await self.chain.get_transfers(target_address, from_block, current)

        for transfer in transfers:
            if transfer.amount == self.expected_amount:
                transfer.timestamp = await self.chain.get_block_timestamp(transfer.block_number)
                return transfer

        raise NotFoundYet(
            f"No transfer of {self.expected_amount} units to {target_address} "
            f"in blocks {from_block}-{current}"
        )

    async def _run(self, session: PaymentSession) -> None:
        extra = {"session_id": session.id}
        try:
            while True:
                if utcnow() >= session.intent.window_end:
                    session.fail("No matching payment observed before the window closed")
                    logger.info("Payment window elapsed", extra=extra)
                    return

                try:
                    transfer = await self.find_payment(session.intent.target_address)
                except NotFoundYet:
                    if session.status is PaymentStatus.SCANNING:
                        session.status = PaymentStatus.MONITORING
                except (TransportError, UpstreamRejected) as e:
                    session.error_count += 1
                    logger.warning(
                        "Payment poll failed (%d/%d): %s",
                        session.error_count, self.max_errors, str(e),
                        extra=extra,
                    )
                    if session.error_count >= self.max_errors:
                        session.fail(f"Blockchain query failed: {e}")
                        return
                else:
                    session.complete(transfer)
                    logger.info(
                        "Sponsorship payment confirmed: tx %s in block %s",
                        transfer.transaction_hash, transfer.block_number,
                        extra=extra,
                    )
                    return

                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Payment session crashed: %s", str(e), exc_info=True, extra=extra)
            session.fail("Payment monitoring stopped unexpectedly")

    # --- One-shot checks ---

    async def check_for_sponsorship_payment(self, target_address: str) -> Optional[TokenTransfer]:
        """Single poll without a session. None when nothing matches yet."""
        address = normalize_address(target_address)
        try:
            return await self.find_payment(address)
        except NotFoundYet:
            return None

    async def check_transaction_status(self, tx_hash: str) -> dict:
        return await self.chain.get_transaction_status(tx_hash)


_monitor: Optional[PaymentMonitor] = None


def get_payment_monitor() -> PaymentMonitor:
    global _monitor
    if _monitor is None:
        _monitor = PaymentMonitor()
    return _monitor
