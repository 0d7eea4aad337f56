# src/authbot/connector.py

import abc
import typing

import httpx
import msal
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from .models import ConversationAddress

BOT_FRAMEWORK_AUTHORITY = "https://login.microsoftonline.com/botframework.com"
BOT_FRAMEWORK_SCOPES = ["https://api.botframework.com/.default"]


class Reply(BaseModel):
    text: str
    signin_link: typing.Optional[str] = None
    choices: typing.List[str] = []
    end_conversation: bool = False


class ChatConnector(abc.ABC):
    @abc.abstractmethod
    async def send(self, address: ConversationAddress, reply: Reply) -> None:
        ...


def build_activities(address: ConversationAddress, reply: Reply) -> typing.List[dict]:
    """Renders a reply as Bot Framework activities addressed to the conversation."""
    activity = {
        "type": "message",
        "text": reply.text,
        "conversation": address.conversation.model_dump(by_alias=True, exclude_none=True),
        "recipient": address.user.model_dump(exclude_none=True),
    }
    if address.bot:
        activity["from"] = address.bot.model_dump(exclude_none=True)
    if reply.signin_link:
        activity["attachments"] = [{
            "contentType": "application/vnd.microsoft.card.signin",
            "content": {
                "text": reply.text,
                "buttons": [{"type": "signin", "title": "Sign-In", "value": reply.signin_link}],
            },
        }]
    elif reply.choices:
        activity["attachments"] = [{
            "contentType": "application/vnd.microsoft.card.hero",
            "content": {
                "title": reply.text,
                "buttons": [{"type": "imBack", "title": c, "value": c} for c in reply.choices],
            },
        }]

    activities = [activity]
    if reply.end_conversation:
        activities.append({
            "type": "endOfConversation",
            "conversation": activity["conversation"],
            "recipient": activity["recipient"],
        })
    return activities


class BotFrameworkConnector(ChatConnector):
    def __init__(self, app_id: str = "", app_password: str = ""):
        self.app_id = app_id
        self.app_password = app_password
        self._msal_app = None

    def _get_msal_app(self) -> msal.ConfidentialClientApplication:
        if not self._msal_app:
            self._msal_app = msal.ConfidentialClientApplication(
                client_id=self.app_id,
                authority=BOT_FRAMEWORK_AUTHORITY,
                client_credential=self.app_password,
            )
        return self._msal_app

    async def _get_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if not self.app_id:
            return headers  # emulator
        # msal keeps the client credentials token in its in-memory cache.
        result = await run_in_threadpool(
            self._get_msal_app().acquire_token_for_client, scopes=BOT_FRAMEWORK_SCOPES
        )
        if "access_token" not in result:
            raise RuntimeError(f"Could not acquire a channel token: {result.get('error_description')}")
        headers["Authorization"] = f"Bearer {result['access_token']}"
        return headers

    async def send(self, address: ConversationAddress, reply: Reply) -> None:
        url = f"{address.service_url.rstrip('/')}/v3/conversations/{address.conversation.id}/activities"
        headers = await self._get_headers()
        async with httpx.AsyncClient() as client:
            for activity in build_activities(address, reply):
                try:
                    response = await client.post(url, headers=headers, json=activity, timeout=10.0)
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    print(f"CONNECTOR: HTTP error sending to {address.key}: {e.response.status_code} - {e.response.text}")
                    raise
                except httpx.RequestError as e:
                    print(f"CONNECTOR: Request error sending to {address.key}: {str(e)}")
                    raise
