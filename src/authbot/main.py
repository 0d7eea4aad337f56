# src/authbot/main.py

import asyncio
import time
import typing
import uuid
from pathlib import Path
from urllib.parse import urlencode

from fastapi import FastAPI, Depends, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .config import settings
from . import auth_utils
from .channel_auth import verify_channel_request, ChannelTokenData
from .connector import BotFrameworkConnector
from .dialogs import AuthBot
from .errors import AuthenticationError, InvalidStateError
from .events import LoginEventBus
from .models import Activity, ConversationAddress
from .oauth_callback import complete_login
from .registry import InMemoryPendingLoginRegistry
from .session_store import InMemorySessionStore

# --- Simple In-Memory Browser Session Store ---
# Only carries the expected OAuth `state` from /login to the callback.
_in_memory_session_data_storage: typing.Dict[str, dict] = {}
_session_created_at: typing.Dict[str, float] = {}

SESSION_COOKIE_NAME = "session_id"
SESSION_COOKIE_MAX_AGE = 60 * 15  # 15 minutes, enough to finish a sign-in


class SessionMiddlewareCustom(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        if not session_id or session_id not in _in_memory_session_data_storage:
            session_id = str(uuid.uuid4())
            _in_memory_session_data_storage[session_id] = {}
            _session_created_at[session_id] = time.time()
        request.state.session_id = session_id
        request.state.session = _in_memory_session_data_storage[session_id]
        response: StarletteResponse = await call_next(request)
        if not request.state.session:
            # Nothing to remember for this browser (e.g. the callback consumed the state).
            _drop_session(session_id)
            return response
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session_id,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            secure=False,  # Set to True in production with HTTPS
            samesite="lax",
        )
        return response


def _drop_session(session_id: str) -> None:
    _in_memory_session_data_storage.pop(session_id, None)
    _session_created_at.pop(session_id, None)


def purge_expired_sessions(now: typing.Optional[float] = None) -> int:
    """Drops browser sessions older than the cookie, e.g. sign-ins never finished."""
    if now is None:
        now = time.time()
    expired = [sid for sid, created in list(_session_created_at.items())
               if now - created >= SESSION_COOKIE_MAX_AGE]
    for session_id in expired:
        _drop_session(session_id)
    return len(expired)


# --- Handshake components ---
registry = InMemoryPendingLoginRegistry(ttl_seconds=settings.MAGIC_CODE_TTL_SECONDS)
store = InMemorySessionStore()
bus = LoginEventBus()
connector = BotFrameworkConnector(settings.MICROSOFT_APP_ID, settings.MICROSOFT_APP_PASSWORD)
bot = AuthBot(
    connector=connector,
    store=store,
    registry=registry,
    refresh_tokens=auth_utils.refresh_access_token,
    signin_url=settings.SIGNIN_URL,
    max_code_attempts=settings.MAX_CODE_ATTEMPTS,
    max_menu_retries=settings.MAX_MENU_RETRIES,
)
bus.subscribe(bot.on_login_completed)

# --- FastAPI App Setup ---
app = FastAPI(
    title="AuthBot API",
    description="Chat bot front-end that links a chat conversation to an Entra ID sign-in with a magic code.",
    version="0.1.0"
)

app.add_middleware(
    SessionMiddlewareCustom,
)

templates = Jinja2Templates(directory=Path(__file__).resolve().parent / "templates")


def _failure_page(request: Request, message: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "login_failed.html",
        {"message": message},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.get("/")
async def home():
    return {"message": "AuthBot is running!"}


# --- Authentication Routes ---
@app.get("/login")
async def login(request: Request, address: typing.Optional[str] = None):
    try:
        conversation_address = ConversationAddress.from_state(address)
    except InvalidStateError as e:
        print(f"MAIN: /login - {e}")
        return _failure_page(request, "This sign-in link is not valid. Please ask the bot for a new one.")

    state = conversation_address.to_state()
    request.state.session["auth_state"] = state  # Store state in the session
    auth_url = auth_utils.build_auth_url(state=state)

    print(f"MAIN: /login - Redirecting to auth URL for conversation {conversation_address.key}")
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@app.get("/api/OAuthCallback/")
@app.get("/api/OAuthCallback", include_in_schema=False)
async def oauth_callback(request: Request):
    returned_state = request.query_params.get("state")
    expected_state = request.state.session.pop("auth_state", None)

    try:
        address = ConversationAddress.from_state(returned_state)
    except InvalidStateError as e:
        print(f"MAIN: /api/OAuthCallback - Invalid state: {e}")
        return _failure_page(request, "We could not tell which conversation this sign-in belongs to.")

    try:
        if not expected_state or expected_state != returned_state:
            raise AuthenticationError("Authentication state mismatch or missing from session.")
        token_result = await auth_utils.get_token_from_code(request.query_params)
        pending = await complete_login(address, token_result, registry, bus)
    except AuthenticationError as e:
        print(f"MAIN: /api/OAuthCallback - Authentication failed for {address.key}: {e}")
        return RedirectResponse(
            url=f"/login?{urlencode({'address': returned_state})}",
            status_code=status.HTTP_302_FOUND,
        )

    print(f"MAIN: /api/OAuthCallback - Pending login stored for conversation {address.key}")
    return templates.TemplateResponse(
        request,
        "magic_code.html",
        {"display_name": pending.display_name, "magic_code": pending.magic_code},
    )


# --- Chat Channel Endpoint ---
@app.post("/api/messages", status_code=status.HTTP_202_ACCEPTED)
async def messages(
        activity: Activity,
        channel: typing.Optional[ChannelTokenData] = Depends(verify_channel_request),
):
    if activity.type != "message":
        print(f"MAIN: /api/messages - Ignoring activity of type {activity.type}")
        return Response(status_code=status.HTTP_202_ACCEPTED)
    await bot.on_message(activity)
    return Response(status_code=status.HTTP_202_ACCEPTED)


# --- Background tasks ---
async def sweep_expired_logins():
    while True:
        await asyncio.sleep(settings.PENDING_SWEEP_INTERVAL_SECONDS)
        removed = registry.sweep()
        if removed:
            print(f"MAIN: Swept {removed} expired pending login(s)")
        purged = purge_expired_sessions()
        if purged:
            print(f"MAIN: Purged {purged} abandoned browser session(s)")


@app.on_event("startup")
async def startup_event():
    print("--- AuthBot (FastAPI) Starting Up ---")
    print(f"Client ID: {settings.MICROSOFT_CLIENT_ID}")
    print(f"Authority: {settings.AUTHORITY}")
    print(f"Redirect URI: {settings.REDIRECT_URI}")
    print(f"Sign-in URL: {settings.SIGNIN_URL}")
    print(f"Magic code TTL: {settings.MAGIC_CODE_TTL_SECONDS}s, max code attempts: {settings.MAX_CODE_ATTEMPTS}")
    if not settings.MICROSOFT_APP_ID:
        print("WARNING: MICROSOFT_APP_ID is not set. Channel requests are not authenticated (emulator mode).")
    app.state.background_tasks = [
        asyncio.create_task(bus.run()),
        asyncio.create_task(sweep_expired_logins()),
    ]
    print("-------------------------------------------")


@app.on_event("shutdown")
async def shutdown_event():
    for task in getattr(app.state, "background_tasks", []):
        task.cancel()
