"""
OAuth client-credentials session tests.
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from landreg.services.oauth_session import AuthenticationError, OAuthSession

TOKEN_URL = "https://login.test/oauth2/v2.0/token"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _session(handler, clock=None, scope=None) -> OAuthSession:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OAuthSession(
        http, TOKEN_URL, "client-id", "client-secret",
        scope=scope, clock=clock or FakeClock(),
    )


class TestAccessToken:

    @pytest.mark.asyncio
    async def test_posts_client_credentials(self):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

        session = _session(handler, scope="https://graph.microsoft.com/.default")

        assert await session.access_token() == "tok-1"
        assert seen["form"]["grant_type"] == ["client_credentials"]
        assert seen["form"]["client_id"] == ["client-id"]
        assert seen["form"]["scope"] == ["https://graph.microsoft.com/.default"]

    @pytest.mark.asyncio
    async def test_token_is_reused_until_near_expiry(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(200, json={"access_token": f"tok-{calls['n']}", "expires_in": 600})

        clock = FakeClock()
        session = _session(handler, clock=clock)

        assert await session.access_token() == "tok-1"
        clock.now += 500
        assert await session.access_token() == "tok-1"
        # inside the 60s refresh skew
        clock.now += 50
        assert await session.access_token() == "tok-2"
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})

        session = _session(handler)
        tokens = await asyncio.gather(*(session.access_token() for _ in range(5)))

        assert tokens == ["tok"] * 5
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(200, json={"access_token": f"tok-{calls['n']}"})

        session = _session(handler)
        await session.access_token()
        session.invalidate()

        assert await session.access_token() == "tok-2"

    @pytest.mark.asyncio
    async def test_salesforce_instance_url_is_kept(self):
        session = _session(lambda request: httpx.Response(200, json={
            "access_token": "sf", "instance_url": "https://example.my.salesforce.com/",
        }))
        await session.access_token()
        assert session.instance_url == "https://example.my.salesforce.com"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        session = _session(lambda request: httpx.Response(401, json={"error": "invalid_client"}))
        with pytest.raises(AuthenticationError) as exc_info:
            await session.access_token()
        assert "HTTP 401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        session = _session(lambda request: httpx.Response(200, json={"token_type": "Bearer"}))
        with pytest.raises(AuthenticationError):
            await session.access_token()

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        session = _session(handler)
        with pytest.raises(AuthenticationError):
            await session.access_token()
