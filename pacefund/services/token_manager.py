"""
OAuth token lifecycle for Strava athletes.

ensure_valid(principal_id) returns an access token that is good for at least
the refresh buffer (5 minutes by default), refreshing it first when needed.

Refreshes for one athlete are serialized with principal_lock and the
credential is re-read once the lock is held, so concurrent callers that all
saw an expiring token trigger a single upstream refresh and then reuse its
result. access_token, refresh_token and token_expires_at are always written
in one UPDATE statement.

Failure mapping:
- Strava rejects the refresh token (400/401/403 or an `errors` payload) -> AuthRevoked
- any other upstream or transport failure                                -> RefreshError
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import update

from pacefund.config import get_settings
from pacefund.models.principal import Principal
from pacefund.services.strava import StravaClient, get_strava_client
from pacefund.utils.errors import (
    AuthRevoked,
    CredentialMissing,
    RefreshError,
    TransportError,
    UpstreamRejected,
)
from pacefund.utils.locks import principal_lock, LockTimeoutError
from pacefund.utils.logging import mask_secret
from pacefund.utils.timezone import utcnow, ensure_utc, from_epoch

logger = logging.getLogger(__name__)

REVOKED_STATUS_CODES = (400, 401, 403)


class TokenManager:
    """Obtains, refreshes and stores Strava credentials per principal."""

    def __init__(
        self,
        strava: Optional[StravaClient] = None,
        session_factory: Optional[Callable] = None,
        refresh_buffer_seconds: Optional[int] = None,
    ):
        if session_factory is None:
            from pacefund.database import async_session_factory
            session_factory = async_session_factory
        if refresh_buffer_seconds is None:
            refresh_buffer_seconds = get_settings().token_refresh_buffer_seconds
        self._strava = strava
        self._session_factory = session_factory
        self.refresh_buffer = timedelta(seconds=refresh_buffer_seconds)

    @property
    def strava(self) -> StravaClient:
        if self._strava is None:
            self._strava = get_strava_client()
        return self._strava

    def needs_refresh(self, expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        """True when the token is expired or expires within the buffer."""
        if expires_at is None:
            return True
        now = now or utcnow()
        return ensure_utc(expires_at) <= now + self.refresh_buffer

    async def _load(self, principal_id: int) -> Optional[Principal]:
        async with self._session_factory() as db:
            return await db.get(Principal, principal_id)

    async def ensure_valid(self, principal_id: int) -> str:
        """
        Return a usable access token for the principal.

        Raises CredentialMissing if the athlete never connected (or was
        deauthorized), AuthRevoked if Strava rejects the refresh token, and
        RefreshError for any other refresh failure.
        """
        principal = await self._load(principal_id)
        if principal is None or not principal.has_credential:
            raise CredentialMissing(f"No stored credential for principal {principal_id}")

        if not self.needs_refresh(principal.token_expires_at):
            return principal.access_token

        try:
            async with principal_lock(principal_id):
                # Another caller may have refreshed while we waited for the lock
                principal = await self._load(principal_id)
                if principal is None or not principal.has_credential:
                    raise CredentialMissing(f"No stored credential for principal {principal_id}")
                if not self.needs_refresh(principal.token_expires_at):
                    logger.debug(
                        "Token for principal %s refreshed by another caller", principal_id,
                        extra={"principal_id": principal_id},
                    )
                    return principal.access_token

                return await self._refresh(principal)
        except LockTimeoutError as e:
            raise RefreshError(f"Refresh already in progress elsewhere for principal {principal_id}") from e

    async def _refresh(self, principal: Principal) -> str:
        """Refresh and persist. Caller must hold principal_lock."""
        logger.info(
            "Refreshing Strava token for principal %s (refresh token %s)",
            principal.id, mask_secret(principal.refresh_token),
            extra={"principal_id": principal.id},
        )
        try:
            data = await self.strava.refresh_access_token(principal.refresh_token)
        except TransportError as e:
            raise RefreshError(f"Token refresh transport failure: {e}") from e
        except UpstreamRejected as e:
            if e.status_code in REVOKED_STATUS_CODES or (isinstance(e.body, dict) and e.body.get("errors")):
                logger.warning(
                    "Strava rejected refresh token for principal %s (HTTP %s)",
                    principal.id, e.status_code,
                    extra={"principal_id": principal.id, "error_code": "auth_revoked"},
                )
                raise AuthRevoked(
                    f"Refresh token rejected for principal {principal.id}",
                    status_code=e.status_code,
                    body=e.body,
                ) from e
            raise RefreshError(f"Token refresh failed: {e}") from e

        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        expires_at = _expiry_from_response(data)
        if not access_token or not refresh_token or expires_at is None:
            raise RefreshError("Token refresh response missing access_token, refresh_token or expiry")

        await self.store_credential(principal.id, access_token, refresh_token, expires_at)
        logger.info(
            "Refreshed Strava token for principal %s (expires %s)",
            principal.id, expires_at.isoformat(),
            extra={"principal_id": principal.id},
        )
        return access_token

    async def store_credential(
        self,
        principal_id: int,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        """Overwrite all three credential fields in one statement."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(Principal)
                .where(Principal.id == principal_id)
                .values(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    token_expires_at=expires_at,
                    updated_at=utcnow(),
                )
            )
            await db.commit()
        if not result.rowcount:
            raise CredentialMissing(f"Principal {principal_id} not found")

    async def clear_credential(self, principal_id: int) -> bool:
        """Drop tokens (deauthorization). The principal row itself is kept."""
        try:
            await self.store_credential(principal_id, None, None, None)
        except CredentialMissing:
            return False
        return True

    async def exchange_authorization_code(self, code: str) -> dict:
        """
        Complete the OAuth flow: trade the code for tokens and upsert the athlete.
        Returns the token metadata and athlete summary (no refresh token).
        """
        data = await self.strava.exchange_authorization_code(code)
        athlete = data.get("athlete") or {}
        if not data.get("access_token") or not data.get("refresh_token") or not athlete.get("id"):
            raise UpstreamRejected("Token exchange response missing required fields", body=None)

        expires_at = _expiry_from_response(data)
        principal_id = int(athlete["id"])

        async with self._session_factory() as db:
            principal = await db.get(Principal, principal_id)
            if principal is None:
                principal = Principal(id=principal_id)
                db.add(principal)
            principal.username = athlete.get("username")
            principal.first_name = athlete.get("firstname")
            principal.last_name = athlete.get("lastname")
            principal.access_token = data["access_token"]
            principal.refresh_token = data["refresh_token"]
            principal.token_expires_at = expires_at
            await db.commit()

        logger.info(
            "Strava account connected for principal %s", principal_id,
            extra={"principal_id": principal_id},
        )
        return {
            "principal_id": principal_id,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "scope": data.get("scope"),
            "athlete": {
                "id": principal_id,
                "username": athlete.get("username"),
                "firstname": athlete.get("firstname"),
                "lastname": athlete.get("lastname"),
                "city": athlete.get("city"),
                "country": athlete.get("country"),
                "profile": athlete.get("profile"),
            },
        }


def _expiry_from_response(data: dict) -> Optional[datetime]:
    """Prefer expires_in (relative); fall back to Strava's absolute expires_at."""
    expires_in = data.get("expires_in")
    if expires_in is not None:
        return utcnow() + timedelta(seconds=int(expires_in))
    return from_epoch(data.get("expires_at"))


_token_manager: Optional[TokenManager] = None


def get_token_manager() -> TokenManager:
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager()
    return _token_manager
