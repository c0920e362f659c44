"""
Strava API client - OAuth token endpoint, activity fetch, push subscriptions.

Auth: client id/secret for OAuth and subscriptions; Bearer token for the API.
Docs: https://developers.strava.com/docs/
All calls use a finite timeout (strava_timeout_seconds). Errors surface as:
- TransportError    network failure / timeout (timeout=True)
- UpstreamRejected  non-2xx response or an `errors` payload; status_code kept
"""
import logging
from typing import Optional

import httpx

from pacefund.config import get_settings
from pacefund.utils.errors import TransportError, UpstreamRejected

logger = logging.getLogger(__name__)


def _error_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


class StravaClient:
    """Thin async wrapper over the Strava HTTP API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base_url: str = "https://www.strava.com/api/v3",
        oauth_url: str = "https://www.strava.com/oauth/token",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.oauth_url = oauth_url
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, translating httpx failures into TransportError."""
        headers = {"Accept": "application/json", **kwargs.pop("headers", {})}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Strava request timed out: {method} {url}", timeout=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Strava request failed: {method} {url}: {e}") from e

    def _json_or_raise(self, response: httpx.Response, what: str) -> dict | list:
        if response.status_code >= 400:
            raise UpstreamRejected(
                f"{what} failed: HTTP {response.status_code}",
                status_code=response.status_code,
                body=_error_body(response),
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamRejected(
                f"{what} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e
        if isinstance(data, dict) and data.get("errors"):
            raise UpstreamRejected(
                f"{what} returned errors",
                status_code=response.status_code,
                body=data,
            )
        return data

    # --- OAuth ---

    async def refresh_access_token(self, refresh_token: str) -> dict:
        """
        Exchange a refresh token for a new access token.
        Returns: {"access_token", "refresh_token", "expires_in", "expires_at", ...}
        """
        response = await self._request(
            "POST",
            self.oauth_url,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        return self._json_or_raise(response, "Token refresh")

    async def exchange_authorization_code(self, code: str) -> dict:
        """
        Exchange an OAuth authorization code for tokens plus the athlete summary.
        Returns: {"access_token", "refresh_token", "expires_in", "expires_at", "athlete": {...}, ...}
        """
        response = await self._request(
            "POST",
            self.oauth_url,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )
        return self._json_or_raise(response, "Authorization code exchange")

    # --- API ---

    async def fetch_activity(self, access_token: str, activity_id: int) -> dict:
        """GET /activities/{id}. A 401 keeps status_code=401 on the raised UpstreamRejected."""
        response = await self._request(
            "GET",
            f"{self.api_base_url}/activities/{activity_id}",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return self._json_or_raise(response, f"Activity {activity_id} fetch")

    # --- Push subscriptions ---

    async def create_subscription(self, callback_url: str, verify_token: str) -> dict:
        response = await self._request(
            "POST",
            f"{self.api_base_url}/push_subscriptions",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "callback_url": callback_url,
                "verify_token": verify_token,
            },
        )
        return self._json_or_raise(response, "Push subscription create")

    async def list_subscriptions(self) -> list:
        response = await self._request(
            "GET",
            f"{self.api_base_url}/push_subscriptions",
            params={"client_id": self.client_id, "client_secret": self.client_secret},
        )
        return self._json_or_raise(response, "Push subscription list")

    async def delete_subscription(self, subscription_id: int) -> None:
        response = await self._request(
            "DELETE",
            f"{self.api_base_url}/push_subscriptions/{subscription_id}",
            params={"client_id": self.client_id, "client_secret": self.client_secret},
        )
        if response.status_code >= 400:
            raise UpstreamRejected(
                f"Push subscription delete failed: HTTP {response.status_code}",
                status_code=response.status_code,
                body=_error_body(response),
            )


def get_strava_client() -> StravaClient:
    settings = get_settings()
    return StravaClient(
        client_id=settings.strava_client_id,
        client_secret=settings.strava_client_secret,
        api_base_url=settings.strava_api_base_url,
        oauth_url=settings.strava_oauth_url,
        timeout=settings.strava_timeout_seconds,
    )
