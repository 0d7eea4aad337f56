# src/authbot/oauth_callback.py

import secrets
import time
import typing

from .errors import AuthenticationError
from .events import LoginCompleted, LoginEventBus
from .models import ConversationAddress, PendingLogin
from .registry import PendingLoginRegistry

MAGIC_CODE_BYTES = 4
MAX_CODE_GENERATION_ATTEMPTS = 5


def generate_magic_code() -> str:
    return secrets.token_hex(MAGIC_CODE_BYTES)


async def complete_login(
        address: ConversationAddress,
        token_result: dict,
        registry: PendingLoginRegistry,
        bus: LoginEventBus,
        clock: typing.Callable[[], float] = time.time,
) -> PendingLogin:
    """
    Turns a redeemed authorization code into a pending login for `address`.

    The login is stored before the completion event is published, so the chat
    side never prompts for a code that cannot be claimed yet.
    """
    claims = token_result.get("id_token_claims") or {}
    subject = claims.get("oid") or claims.get("sub")
    if not subject:
        raise AuthenticationError("No oid found in the id token claims.")

    access_token = token_result.get("access_token")
    refresh_token = token_result.get("refresh_token")
    if not access_token or not refresh_token:
        raise AuthenticationError("The identity provider did not return both an access and a refresh token.")

    display_name = claims.get("name") or claims.get("preferred_username") or "there"

    for _ in range(MAX_CODE_GENERATION_ATTEMPTS):
        pending = PendingLogin(
            magic_code=generate_magic_code(),
            address=address,
            display_name=display_name,
            access_token=access_token,
            refresh_token=refresh_token,
            created_at=clock(),
        )
        if registry.put(pending):
            break
    else:
        raise AuthenticationError("Could not allocate a unique magic code.")

    await bus.publish(LoginCompleted(address=address))
    return pending
