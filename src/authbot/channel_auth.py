# src/authbot/channel_auth.py

from typing import Dict, Optional

import requests
from fastapi import Header, HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel

from .config import settings

# --- Token Validation for requests posted by the chat channel ---
CHANNEL_ISSUER = "https://api.botframework.com"
CHANNEL_JWKS_URI = "https://login.botframework.com/v1/.well-known/keys"
JWKS_CACHE_CHANNEL: Dict[str, Dict] = {}


class ChannelTokenData(BaseModel):
    iss: Optional[str] = None
    aud: Optional[str] = None
    serviceurl: Optional[str] = None


def get_jwks_channel() -> Dict:
    if not JWKS_CACHE_CHANNEL.get(CHANNEL_JWKS_URI):
        try:
            response = requests.get(CHANNEL_JWKS_URI, timeout=10)
            response.raise_for_status()
            JWKS_CACHE_CHANNEL[CHANNEL_JWKS_URI] = response.json()
        except requests.exceptions.RequestException as e:
            print(f"CHANNEL_AUTH: Error fetching JWKS for channel token: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not retrieve signing keys for channel token.",
            )
    return JWKS_CACHE_CHANNEL[CHANNEL_JWKS_URI]


def get_signing_key_channel(token: str) -> Dict:
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid channel token header: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if "kid" not in unverified_header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Channel token header missing 'kid'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    for key in get_jwks_channel()["keys"]:
        if key["kid"] == unverified_header["kid"]:
            return {k: key[k] for k in ("kty", "kid", "use", "n", "e", "x5c") if k in key}

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Unable to find appropriate signing key for channel token (kid: {unverified_header['kid']})",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_channel_request(authorization: Optional[str] = Header(None)) -> Optional[ChannelTokenData]:
    """
    Dependency for /api/messages. Plain `def` so FastAPI runs the JWKS fetch in
    its threadpool. Returns None when no app id is configured (emulator).
    """
    if not settings.MICROSOFT_APP_ID:
        return None

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated (no channel token)",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = authorization.split("Bearer ")[1]

    try:
        payload = jwt.decode(
            token,
            get_signing_key_channel(token),
            algorithms=["RS256"],
            audience=settings.MICROSOFT_APP_ID,
            issuer=CHANNEL_ISSUER,
        )
    except JWTError as e:
        print(f"CHANNEL_AUTH: JWT Validation Error for channel token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate channel credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return ChannelTokenData(**payload)
