"""
Error taxonomy shared by the webhook processor, token manager and payment monitor.

TransportError   - network failure or timeout talking to Strava or the RPC node
UpstreamRejected - 4xx/5xx (or error payload) from an upstream service
AuthRevoked      - Strava says the grant is gone; caller should clean up
RefreshError     - could not obtain a fresh access token
ValidationError  - malformed inbound payload or address
NotFoundYet      - payment not observed in this poll (a normal state)
"""
from typing import Optional


class PacefundError(Exception):
    """Base class for all domain errors."""
    pass


class TransportError(PacefundError):
    """Network-level failure. `timeout` separates request timeouts from other I/O errors."""

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class UpstreamRejected(PacefundError):
    """Upstream answered with an error status or error body."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RefreshError(PacefundError):
    """Access token could not be refreshed."""
    pass


class AuthRevoked(RefreshError):
    """The refresh token was rejected by the provider - re-authorization required."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CredentialMissing(PacefundError):
    """No usable credential is stored for the principal."""
    pass


class ValidationError(PacefundError):
    """Inbound data failed validation."""
    pass


class NotFoundYet(PacefundError):
    """The expected transfer has not been observed yet."""
    pass
