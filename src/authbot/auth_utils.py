# src/authbot/auth_utils.py
import typing

import msal
import requests
from fastapi.concurrency import run_in_threadpool

from .config import settings
from .errors import AuthenticationError, RefreshError
from .models import RefreshedTokens

# --- MSAL Confidential Client Application ---
# Created on first use: msal runs authority discovery over the network in its constructor.
msal_app = None


def get_msal_app() -> msal.ConfidentialClientApplication:
    global msal_app
    if not msal_app:
        msal_app = msal.ConfidentialClientApplication(
            client_id=settings.MICROSOFT_CLIENT_ID,
            authority=settings.AUTHORITY,
            client_credential=settings.MICROSOFT_CLIENT_SECRET,
        )
    return msal_app


# --- OIDC Flow Functions ---

def build_auth_url(state: str, scopes: list = None) -> str:
    """
    Builds the authorization URL.
    `state` is the serialized conversation address; the provider hands it back
    unchanged on the callback so the login can be tied to its conversation.
    """
    if not scopes:
        scopes = settings.GRAPH_SCOPES

    auth_url = get_msal_app().get_authorization_request_url(
        scopes=scopes,
        state=state,
        redirect_uri=settings.REDIRECT_URI,
    )
    print(f"AUTH_UTILS: build_auth_url - Generated auth URL. Redirect URI: {settings.REDIRECT_URI}")
    return auth_url


async def get_token_from_code(query_params: typing.Mapping[str, str]) -> dict:
    """
    Redeems the authorization code. msal validates the returned id token and
    exposes its claims as `id_token_claims` in the result.
    """
    auth_code = query_params.get("code")
    if not auth_code:
        error = query_params.get("error")
        error_description = query_params.get("error_description")
        raise AuthenticationError(f"Authentication failed at Entra ID: {error} - {error_description}")

    print(f"AUTH_UTILS: get_token_from_code - Acquiring token with code. Scopes: {settings.GRAPH_SCOPES}")
    try:
        token_result = await run_in_threadpool(
            get_msal_app().acquire_token_by_authorization_code,
            code=auth_code,
            scopes=settings.GRAPH_SCOPES,
            redirect_uri=settings.REDIRECT_URI,
        )
    except requests.exceptions.RequestException as e:
        raise AuthenticationError(f"Could not reach the identity provider: {e}") from e

    if "error" in token_result:
        print(f"AUTH_UTILS: get_token_from_code - Error acquiring token: {token_result.get('error_description')}")
        raise AuthenticationError(f"Failed to acquire token: {token_result.get('error_description')}")

    print(
        f"AUTH_UTILS: get_token_from_code - Token acquired successfully. User claims name: {token_result.get('id_token_claims', {}).get('name', 'No name in claims')}")
    return token_result


# --- Token Refresh ---

async def refresh_access_token(refresh_token: str, scopes: list = None) -> RefreshedTokens:
    """
    Exchanges a refresh token for a fresh access token (CRM scopes by default).
    A single attempt: an invalid refresh token does not get better by retrying.
    """
    if not refresh_token:
        raise RefreshError("No refresh token available.")
    if not scopes:
        scopes = settings.CRM_SCOPES

    try:
        result = await run_in_threadpool(
            get_msal_app().acquire_token_by_refresh_token,
            refresh_token,
            scopes=scopes,
        )
    except (requests.exceptions.RequestException, ValueError) as e:
        print(f"AUTH_UTILS: refresh_access_token - Request failed: {e}")
        raise RefreshError(f"Token refresh request failed: {e}") from e

    if "error" in result:
        print(f"AUTH_UTILS: refresh_access_token - Provider error: {result.get('error')}")
        raise RefreshError(result.get("error_description") or result["error"])
    if not result.get("access_token"):
        raise RefreshError("Token refresh returned no access token.")

    return RefreshedTokens(
        access_token=result["access_token"],
        refresh_token=result.get("refresh_token"),
        expires_in=result.get("expires_in"),
    )
