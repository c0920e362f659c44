"""
Tests for pacefund/services/strava.py — Strava HTTP client (httpx MockTransport, no network).
"""
import json
import httpx
import pytest

from pacefund.services.strava import StravaClient
from pacefund.utils.errors import TransportError, UpstreamRejected


def _client(handler) -> StravaClient:
    return StravaClient(
        client_id="12345",
        client_secret="secret",
        api_base_url="https://strava.test/api/v3",
        oauth_url="https://strava.test/oauth/token",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestRefreshAccessToken:
    @pytest.mark.asyncio
    async def test_posts_refresh_grant(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "access_token": "a", "refresh_token": "r", "expires_in": 21600,
            })

        data = await _client(handler).refresh_access_token("old_refresh")

        assert data["access_token"] == "a"
        assert seen["url"] == "https://strava.test/oauth/token"
        assert seen["body"]["grant_type"] == "refresh_token"
        assert seen["body"]["refresh_token"] == "old_refresh"
        assert seen["body"]["client_id"] == "12345"

    @pytest.mark.asyncio
    async def test_bad_request_keeps_status_and_body(self):
        def handler(request):
            return httpx.Response(400, json={"message": "Bad Request", "errors": [{"code": "invalid"}]})

        with pytest.raises(UpstreamRejected) as exc_info:
            await _client(handler).refresh_access_token("old_refresh")

        assert exc_info.value.status_code == 400
        assert exc_info.value.body["errors"][0]["code"] == "invalid"

    @pytest.mark.asyncio
    async def test_errors_payload_with_200_is_rejected(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"code": "invalid"}]})

        with pytest.raises(UpstreamRejected):
            await _client(handler).refresh_access_token("old_refresh")

    @pytest.mark.asyncio
    async def test_non_json_response_is_rejected(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(UpstreamRejected):
            await _client(handler).refresh_access_token("old_refresh")


class TestFetchActivity:
    @pytest.mark.asyncio
    async def test_uses_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": 555, "name": "Run"})

        data = await _client(handler).fetch_activity("access_abc", 555)

        assert data["id"] == 555
        assert seen["auth"] == "Bearer access_abc"
        assert seen["path"] == "/api/v3/activities/555"

    @pytest.mark.asyncio
    async def test_unauthorized_status_preserved(self):
        def handler(request):
            return httpx.Response(401, json={"message": "Authorization Error"})

        with pytest.raises(UpstreamRejected) as exc_info:
            await _client(handler).fetch_activity("expired", 555)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_timeout_is_flagged(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _client(handler).fetch_activity("access", 555)

        assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            await _client(handler).fetch_activity("access", 555)

        assert exc_info.value.timeout is False


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_create_subscription(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": 999})

        result = await _client(handler).create_subscription("https://app.test/api/v1/webhook/strava", "verify")

        assert result == {"id": 999}
        assert seen["method"] == "POST"
        assert seen["body"]["callback_url"] == "https://app.test/api/v1/webhook/strava"
        assert seen["body"]["verify_token"] == "verify"

    @pytest.mark.asyncio
    async def test_list_subscriptions(self):
        def handler(request):
            assert request.url.params["client_id"] == "12345"
            return httpx.Response(200, json=[{"id": 999, "callback_url": "https://app.test"}])

        subs = await _client(handler).list_subscriptions()

        assert subs[0]["id"] == 999

    @pytest.mark.asyncio
    async def test_delete_subscription(self):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.path == "/api/v3/push_subscriptions/999"
            return httpx.Response(204)

        await _client(handler).delete_subscription(999)

    @pytest.mark.asyncio
    async def test_delete_missing_subscription(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Record Not Found"})

        with pytest.raises(UpstreamRejected) as exc_info:
            await _client(handler).delete_subscription(999)

        assert exc_info.value.status_code == 404
