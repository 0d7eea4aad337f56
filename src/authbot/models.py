# src/authbot/models.py

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidStateError


class ChannelAccount(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None


class ConversationAccount(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    is_group: Optional[bool] = Field(default=None, alias="isGroup")


class ConversationAddress(BaseModel):
    """
    Routing handle for one chat conversation, as supplied by the channel.
    Serialized with the channel's camelCase names so it can be embedded in the
    sign-in link and round-tripped through the identity provider's `state`.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    channel_id: str = Field(alias="channelId")
    service_url: str = Field(alias="serviceUrl")
    conversation: ConversationAccount
    user: ChannelAccount
    bot: Optional[ChannelAccount] = None

    @property
    def key(self) -> str:
        return f"{self.channel_id}:{self.conversation.id}"

    def to_state(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_state(cls, raw: Optional[str]) -> "ConversationAddress":
        if not raw:
            raise InvalidStateError("No conversation address was supplied.")
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise InvalidStateError(f"Malformed conversation address: {e.error_count()} error(s)") from e


class Activity(BaseModel):
    """Inbound activity posted by the chat channel to /api/messages."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    id: Optional[str] = None
    text: Optional[str] = None
    channel_id: str = Field(alias="channelId")
    service_url: str = Field(alias="serviceUrl")
    from_: ChannelAccount = Field(alias="from")
    recipient: Optional[ChannelAccount] = None
    conversation: ConversationAccount

    @property
    def address(self) -> ConversationAddress:
        return ConversationAddress(
            channel_id=self.channel_id,
            service_url=self.service_url,
            conversation=self.conversation,
            user=self.from_,
            bot=self.recipient,
        )


class PendingLogin(BaseModel):
    """A browser-completed login waiting for its magic code to be typed in chat."""
    magic_code: str
    address: ConversationAddress
    display_name: str
    access_token: str
    refresh_token: str
    created_at: float


class SessionTokens(BaseModel):
    user_name: str
    access_token: str
    refresh_token: str
    access_token_crm: Optional[str] = None


class RefreshedTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class DialogState(str, enum.Enum):
    NOT_LOGGED_IN = "not_logged_in"
    AWAITING_BROWSER_LOGIN = "awaiting_browser_login"
    AWAITING_MAGIC_CODE = "awaiting_magic_code"
    VALIDATING = "validating"
    LOGGED_IN = "logged_in"
    QUIT_REQUESTED = "quit_requested"


class ConversationState(BaseModel):
    address: ConversationAddress
    dialog: DialogState = DialogState.NOT_LOGGED_IN
    code_attempts: int = 0
    menu_retries: int = 0
    tokens: Optional[SessionTokens] = None

    @property
    def key(self) -> str:
        return self.address.key
