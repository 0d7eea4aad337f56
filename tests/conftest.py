"""Pytest configuration."""

import os

# Settings are read when authbot.config is imported; these must be set first.
os.environ.setdefault("MICROSOFT_REALM", "contoso.onmicrosoft.com")
os.environ.setdefault("MICROSOFT_CLIENT_ID", "11111111-2222-3333-4444-555555555555")
os.environ.setdefault("MICROSOFT_CLIENT_SECRET", "test-secret")
os.environ.setdefault("AUTHBOT_CALLBACKHOST", "https://authbot.example.com")
os.environ.setdefault("GRAPH_SCOPES", "User.Read")
os.environ.setdefault("CRM_SCOPES", "https://contoso.crm.dynamics.com/user_impersonation")
os.environ["MICROSOFT_APP_ID"] = ""

import httpx
import pytest

from authbot.connector import ChatConnector
from authbot.dialogs import AuthBot
from authbot.errors import RefreshError
from authbot.events import LoginEventBus
from authbot.models import Activity, ConversationAddress, PendingLogin, RefreshedTokens
from authbot.registry import InMemoryPendingLoginRegistry
from authbot.session_store import InMemorySessionStore

SIGNIN_URL = "https://authbot.example.com/login"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingConnector(ChatConnector):
    def __init__(self):
        self.sent = []
        self.fail_on = None

    async def send(self, address, reply):
        if reply.text == self.fail_on:
            raise httpx.ConnectError("channel unreachable")
        self.sent.append((address, reply))

    def texts(self, address=None):
        return [r.text for a, r in self.sent if address is None or a.key == address.key]


class FakeRefresher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def __call__(self, refresh_token: str) -> RefreshedTokens:
        self.calls.append(refresh_token)
        if self.fail:
            raise RefreshError("invalid_grant")
        return RefreshedTokens(access_token=f"crm-{len(self.calls)}", refresh_token=f"rotated-{len(self.calls)}")


class FakeMsalApp:
    """Stands in for msal.ConfidentialClientApplication."""

    def __init__(self, token_result=None, refresh_result=None):
        self.token_result = token_result if token_result is not None else {
            "access_token": "graph-access",
            "refresh_token": "graph-refresh",
            "id_token_claims": {"oid": "user-oid-1", "name": "Ada Lovelace"},
        }
        self.refresh_result = refresh_result if refresh_result is not None else {
            "access_token": "crm-access",
            "refresh_token": "crm-refresh",
            "expires_in": 3600,
        }
        self.auth_url_calls = []
        self.code_calls = []
        self.refresh_calls = []

    def get_authorization_request_url(self, scopes, state=None, redirect_uri=None, **kwargs):
        self.auth_url_calls.append({"scopes": scopes, "state": state, "redirect_uri": redirect_uri})
        return "https://login.microsoftonline.com/contoso/oauth2/v2.0/authorize?client_id=test"

    def acquire_token_by_authorization_code(self, code, scopes, redirect_uri=None, **kwargs):
        self.code_calls.append(code)
        return self.token_result

    def acquire_token_by_refresh_token(self, refresh_token, scopes, **kwargs):
        self.refresh_calls.append(refresh_token)
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        return self.refresh_result


def make_address(conversation_id: str = "conv-1", user_id: str = "user-1") -> ConversationAddress:
    return ConversationAddress.model_validate({
        "channelId": "msteams",
        "serviceUrl": "https://smba.trafficmanager.net/emea/",
        "conversation": {"id": conversation_id},
        "user": {"id": user_id, "name": "Ada"},
        "bot": {"id": "bot-1", "name": "AuthBot"},
    })


def make_activity(address: ConversationAddress, text: str) -> Activity:
    return Activity.model_validate({
        "type": "message",
        "text": text,
        "channelId": address.channel_id,
        "serviceUrl": address.service_url,
        "from": address.user.model_dump(exclude_none=True),
        "recipient": address.bot.model_dump(exclude_none=True),
        "conversation": address.conversation.model_dump(by_alias=True, exclude_none=True),
    })


def make_token_result(oid="user-oid-1", name="Ada Lovelace") -> dict:
    claims = {"name": name}
    if oid:
        claims["oid"] = oid
    return {
        "access_token": "graph-access",
        "refresh_token": "graph-refresh",
        "id_token_claims": claims,
    }


def make_pending(address: ConversationAddress, code: str = "ab12", created_at: float = 1_000_000.0) -> PendingLogin:
    return PendingLogin(
        magic_code=code,
        address=address,
        display_name="Ada Lovelace",
        access_token="graph-access",
        refresh_token="graph-refresh",
        created_at=created_at,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return InMemoryPendingLoginRegistry(ttl_seconds=300, clock=clock)


@pytest.fixture
def connector():
    return RecordingConnector()


@pytest.fixture
def refresher():
    return FakeRefresher()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def bus():
    return LoginEventBus()


@pytest.fixture
def bot(connector, store, registry, refresher):
    return AuthBot(
        connector=connector,
        store=store,
        registry=registry,
        refresh_tokens=refresher,
        signin_url=SIGNIN_URL,
        max_code_attempts=3,
        max_menu_retries=3,
    )


@pytest.fixture
def address():
    return make_address()
