"""Tests for the identity provider client."""

import pytest
import requests

from authbot import auth_utils
from authbot.errors import AuthenticationError, RefreshError

from conftest import FakeMsalApp


@pytest.fixture
def msal_app(monkeypatch):
    app = FakeMsalApp()
    monkeypatch.setattr(auth_utils, "get_msal_app", lambda: app)
    return app


class TestBuildAuthUrl:
    def test_state_and_redirect_passed_through(self, msal_app):
        auth_utils.build_auth_url(state='{"channelId": "x"}')
        call = msal_app.auth_url_calls[0]
        assert call["state"] == '{"channelId": "x"}'
        assert call["redirect_uri"] == "https://authbot.example.com/api/OAuthCallback"
        assert call["scopes"] == ["User.Read"]


class TestGetTokenFromCode:
    @pytest.mark.asyncio
    async def test_redeems_code(self, msal_app):
        result = await auth_utils.get_token_from_code({"code": "abc", "state": "s"})
        assert msal_app.code_calls == ["abc"]
        assert result["id_token_claims"]["oid"] == "user-oid-1"

    @pytest.mark.asyncio
    async def test_provider_error_without_code(self, msal_app):
        with pytest.raises(AuthenticationError, match="access_denied"):
            await auth_utils.get_token_from_code({"error": "access_denied", "error_description": "User cancelled"})
        assert msal_app.code_calls == []

    @pytest.mark.asyncio
    async def test_error_in_token_result(self, msal_app):
        msal_app.token_result = {"error": "invalid_grant", "error_description": "AADSTS70008: expired code"}
        with pytest.raises(AuthenticationError, match="AADSTS70008"):
            await auth_utils.get_token_from_code({"code": "abc"})


class TestRefreshAccessToken:
    @pytest.mark.asyncio
    async def test_returns_new_tokens(self, msal_app):
        refreshed = await auth_utils.refresh_access_token("graph-refresh")
        assert refreshed.access_token == "crm-access"
        assert refreshed.refresh_token == "crm-refresh"
        assert refreshed.expires_in == 3600
        assert msal_app.refresh_calls == ["graph-refresh"]

    @pytest.mark.asyncio
    async def test_empty_refresh_token_rejected(self, msal_app):
        with pytest.raises(RefreshError):
            await auth_utils.refresh_access_token("")
        assert msal_app.refresh_calls == []

    @pytest.mark.asyncio
    async def test_error_in_body(self, msal_app):
        msal_app.refresh_result = {"error": "invalid_grant", "error_description": "AADSTS700082: expired"}
        with pytest.raises(RefreshError, match="AADSTS700082"):
            await auth_utils.refresh_access_token("stale")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, msal_app):
        msal_app.refresh_result = {"token_type": "Bearer"}
        with pytest.raises(RefreshError):
            await auth_utils.refresh_access_token("graph-refresh")

    @pytest.mark.asyncio
    async def test_network_failure(self, msal_app):
        msal_app.refresh_result = requests.exceptions.ConnectionError("unreachable")
        with pytest.raises(RefreshError, match="unreachable"):
            await auth_utils.refresh_access_token("graph-refresh")
