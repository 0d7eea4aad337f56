# src/authbot/config.py

from pydantic import field_validator, AnyHttpUrl, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Union, Any
from pathlib import Path
from dotenv import load_dotenv

# .env is at the project root, two levels up from src/authbot/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    print(f"AuthBot: Successfully loaded .env file from: {ENV_FILE_PATH}")
else:
    print(
        f"AuthBot: Warning: .env file not found at {ENV_FILE_PATH}. Relying on environment variables."
    )


class Settings(BaseSettings):
    # === Entra ID application used for the user sign-in ===
    MICROSOFT_REALM: str
    MICROSOFT_CLIENT_ID: str
    MICROSOFT_CLIENT_SECRET: str
    AUTHBOT_CALLBACKHOST: AnyHttpUrl
    # Comma separated in the env, parsed into List[str] by the validator below
    GRAPH_SCOPES: Union[str, List[str]]
    CRM_SCOPES: Union[str, List[str]]

    # === Chat channel (Bot Framework) credentials ===
    # Empty app id means the emulator: no inbound token check, no outbound token.
    MICROSOFT_APP_ID: str = ""
    MICROSOFT_APP_PASSWORD: str = ""

    # === Magic code handshake ===
    MAGIC_CODE_TTL_SECONDS: int = 300
    PENDING_SWEEP_INTERVAL_SECONDS: int = 60
    MAX_CODE_ATTEMPTS: int = 3
    MAX_MENU_RETRIES: int = 3

    @property
    def AUTHORITY(self) -> str:
        return f"https://login.microsoftonline.com/{self.MICROSOFT_REALM}"

    @property
    def CALLBACK_HOST(self) -> str:
        return str(self.AUTHBOT_CALLBACKHOST).rstrip("/")

    @property
    def REDIRECT_URI(self) -> str:
        return f"{self.CALLBACK_HOST}/api/OAuthCallback"

    @property
    def SIGNIN_URL(self) -> str:
        return f"{self.CALLBACK_HOST}/login"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("GRAPH_SCOPES", "CRM_SCOPES", mode='before')
    @classmethod
    def parse_comma_separated_scopes(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            if not v.strip():
                return []
            return [scope.strip() for scope in v.split(',') if scope.strip()]
        if isinstance(v, list):
            return v  # Already a list
        if v is not None:
            raise TypeError('Scopes: Expected a comma-separated string or a list.')
        raise ValueError("Scopes are required and were not found or were None.")

    @model_validator(mode='after')
    def check_final_scopes_type(self) -> 'Settings':
        for name in ("GRAPH_SCOPES", "CRM_SCOPES"):
            scopes = getattr(self, name)
            if not isinstance(scopes, list):
                raise ValueError(f"{name} ended up as {type(scopes)}, expected list.")
            if not all(isinstance(item, str) for item in scopes):
                raise ValueError(f"All items in {name} must be strings.")
        if self.MAX_CODE_ATTEMPTS < 1:
            raise ValueError("MAX_CODE_ATTEMPTS must be at least 1.")
        return self


try:
    settings = Settings()
    print(f"AuthBot Authority: {settings.AUTHORITY}")
    print(f"AuthBot Redirect URI: {settings.REDIRECT_URI}")
    print(f"Graph Scopes: {settings.GRAPH_SCOPES}, CRM Scopes: {settings.CRM_SCOPES}")

except Exception as e:
    print(f"AuthBot: Error instantiating Settings: {e}")
    import traceback
    traceback.print_exc()
    raise
