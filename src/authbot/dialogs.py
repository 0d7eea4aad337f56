# src/authbot/dialogs.py

import typing
from urllib.parse import urlencode

from .connector import ChatConnector, Reply
from .errors import CodeExpiredOrConsumedError, CodeMismatchError, RefreshError
from .events import LoginCompleted
from .models import (
    Activity,
    ConversationAddress,
    ConversationState,
    DialogState,
    PendingLogin,
    RefreshedTokens,
    SessionTokens,
)
from .registry import PendingLoginRegistry
from .session_store import SessionStore

QUIT_COMMAND = "quit"

ACCOUNT_LABEL = "Account"
LOGOUT_LABEL = "Logout"
MENU_CHOICES = [ACCOUNT_LABEL, LOGOUT_LABEL]

SIGNIN_CARD_TEXT = "Let's get started! Please sign-in below..."
SIGNIN_PROMPT = "You must first sign into your account."
CLICK_LINK_PROMPT = "Please click the signin link."
CODE_PROMPT = "Please enter the code you received or type 'quit' to end."
INVALID_CODE = "hmm... Looks like that was an invalid code. Please try again."
EXPIRED_CODE = "That code has expired or was already used. Let's sign in again."
TOO_MANY_CODES = "Too many invalid codes. Send me a message whenever you want to try again."
REFRESH_FAILED = "Something happened and I lost your sign-in. Please sign in again."
MENU_PROMPT = "What would you like to do?"
INVALID_CHOICE = "Not a valid option"
TOO_MANY_CHOICES = "Ooops! Too many attempts. But don't worry, you can try again!"
GOODBYE = "Goodbye!"
LOGGED_OUT = "Goodbye! You have been logged out."

RefreshTokens = typing.Callable[[str], typing.Awaitable[RefreshedTokens]]


def build_signin_link(signin_url: str, address: ConversationAddress) -> str:
    return f"{signin_url}?{urlencode({'address': address.to_state()})}"


class AuthBot:
    """
    Chat side of the magic code handshake.

    NOT_LOGGED_IN -> AWAITING_BROWSER_LOGIN -> AWAITING_MAGIC_CODE -> VALIDATING -> LOGGED_IN,
    with `quit` leaving through QUIT_REQUESTED and a bounded retry edge from
    VALIDATING back to AWAITING_MAGIC_CODE. Every turn runs under the
    conversation's lock, including the login-completed events coming from the
    web callback.
    """

    def __init__(
            self,
            connector: ChatConnector,
            store: SessionStore,
            registry: PendingLoginRegistry,
            refresh_tokens: RefreshTokens,
            signin_url: str,
            max_code_attempts: int = 3,
            max_menu_retries: int = 3,
    ):
        self.connector = connector
        self.store = store
        self.registry = registry
        self.refresh_tokens = refresh_tokens
        self.signin_url = signin_url
        self.max_code_attempts = max_code_attempts
        self.max_menu_retries = max_menu_retries

    async def _send(self, state: ConversationState, text: str, **kwargs) -> None:
        await self.connector.send(state.address, Reply(text=text, **kwargs))

    # --- Entry points ---

    async def on_message(self, activity: Activity) -> None:
        address = activity.address
        text = (activity.text or "").strip()
        async with self.store.lock(address.key):
            state = await self.store.load(address)
            print(f"DIALOGS: Message for {address.key} in state {state.dialog.value}")

            # Saved even when a send fails: a claimed login must not be lost with the turn.
            try:
                if state.dialog == DialogState.AWAITING_BROWSER_LOGIN:
                    await self._awaiting_browser_login(state, text)
                elif state.dialog == DialogState.AWAITING_MAGIC_CODE:
                    await self._awaiting_magic_code(state, text)
                elif state.dialog == DialogState.LOGGED_IN:
                    await self._menu_choice(state, text)
                else:
                    await self._begin(state)
            finally:
                await self.store.save(state)

    async def on_login_completed(self, event: LoginCompleted) -> None:
        key = event.address.key
        async with self.store.lock(key):
            state = await self.store.load(event.address)
            if state.dialog not in (DialogState.AWAITING_BROWSER_LOGIN, DialogState.AWAITING_MAGIC_CODE):
                # Nobody is waiting for this login any more (quit, logout, finished).
                print(f"DIALOGS: Login completed for {key} in state {state.dialog.value}; releasing it.")
                self.registry.release(key)
                return
            state.dialog = DialogState.AWAITING_MAGIC_CODE
            state.code_attempts = 0
            await self.store.save(state)
            await self._send(state, CODE_PROMPT)

    # --- Sign-in ---

    async def _begin(self, state: ConversationState) -> None:
        if state.tokens and state.tokens.refresh_token:
            try:
                await self._refresh(state)
            except RefreshError as e:
                print(f"DIALOGS: Silent refresh failed for {state.key}: {e}")
                state.tokens = None
                await self._send(state, REFRESH_FAILED)
                await self._prompt_signin(state)
                return
            await self._welcome(state)
            return
        await self._prompt_signin(state)

    async def _prompt_signin(self, state: ConversationState) -> None:
        link = build_signin_link(self.signin_url, state.address)
        await self._send(state, SIGNIN_CARD_TEXT, signin_link=link)
        await self._send(state, SIGNIN_PROMPT)
        state.dialog = DialogState.AWAITING_BROWSER_LOGIN
        state.code_attempts = 0

    async def _awaiting_browser_login(self, state: ConversationState, text: str) -> None:
        if text.lower() == QUIT_COMMAND:
            await self._quit(state)
            return
        await self._send(state, CLICK_LINK_PROMPT)

    async def _awaiting_magic_code(self, state: ConversationState, text: str) -> None:
        if text.lower() == QUIT_COMMAND:
            await self._quit(state)
            return

        state.dialog = DialogState.VALIDATING
        try:
            login = self._claim(state.key, text)
        except CodeMismatchError:
            state.code_attempts += 1
            if state.code_attempts >= self.max_code_attempts:
                print(f"DIALOGS: Too many invalid codes for {state.key}")
                self.registry.release(state.key)
                state.dialog = DialogState.NOT_LOGGED_IN
                state.code_attempts = 0
                await self._send(state, TOO_MANY_CODES, end_conversation=True)
                return
            await self._send(state, INVALID_CODE)
            await self._send(state, CODE_PROMPT)
            state.dialog = DialogState.AWAITING_MAGIC_CODE
            return
        except CodeExpiredOrConsumedError:
            await self._send(state, EXPIRED_CODE)
            await self._prompt_signin(state)
            return

        await self._signed_in(state, login)

    def _claim(self, conversation_key: str, code: str) -> PendingLogin:
        login = self.registry.take(conversation_key, code)
        if login is not None:
            return login
        if self.registry.has_pending(conversation_key):
            raise CodeMismatchError()
        raise CodeExpiredOrConsumedError()

    async def _signed_in(self, state: ConversationState, login: PendingLogin) -> None:
        # Codes from other sign-in attempts in this conversation are now useless.
        self.registry.release(state.key)
        state.tokens = SessionTokens(
            user_name=login.display_name,
            access_token=login.access_token,
            refresh_token=login.refresh_token,
        )
        try:
            await self._refresh(state)
        except RefreshError as e:
            print(f"DIALOGS: Refresh after sign-in failed for {state.key}: {e}")
            state.tokens = None
            state.dialog = DialogState.NOT_LOGGED_IN
            await self._send(state, REFRESH_FAILED, end_conversation=True)
            return
        print(f"DIALOGS: User '{login.display_name}' signed in on {state.key}")
        await self._welcome(state)

    async def _refresh(self, state: ConversationState) -> None:
        refreshed = await self.refresh_tokens(state.tokens.refresh_token)
        state.tokens.access_token_crm = refreshed.access_token
        if refreshed.refresh_token:
            state.tokens.refresh_token = refreshed.refresh_token

    async def _quit(self, state: ConversationState) -> None:
        self.registry.release(state.key)
        state.dialog = DialogState.QUIT_REQUESTED
        state.code_attempts = 0
        await self._send(state, GOODBYE, end_conversation=True)

    # --- Menu ---

    async def _welcome(self, state: ConversationState) -> None:
        state.dialog = DialogState.LOGGED_IN
        state.menu_retries = 0
        await self._send(state, f"Welcome {state.tokens.user_name}!")
        await self._show_menu(state)

    async def _show_menu(self, state: ConversationState) -> None:
        state.dialog = DialogState.LOGGED_IN
        await self._send(state, MENU_PROMPT, choices=MENU_CHOICES)

    async def _menu_choice(self, state: ConversationState, text: str) -> None:
        choice = text.lower()
        if choice == ACCOUNT_LABEL.lower():
            state.menu_retries = 0
            await self._send(state, f"You are signed in as {state.tokens.user_name}.")
            await self._next_menu_cycle(state)
        elif choice == LOGOUT_LABEL.lower():
            await self._logout(state)
        else:
            state.menu_retries += 1
            if state.menu_retries > self.max_menu_retries:
                state.menu_retries = 0
                state.dialog = DialogState.NOT_LOGGED_IN
                await self._send(state, TOO_MANY_CHOICES)
                return
            await self._send(state, INVALID_CHOICE)
            await self._show_menu(state)

    async def _next_menu_cycle(self, state: ConversationState) -> None:
        """Each menu action ends at dialog entry, which renews the CRM token."""
        try:
            await self._refresh(state)
        except RefreshError as e:
            print(f"DIALOGS: Refresh between menu actions failed for {state.key}: {e}")
            state.tokens = None
            await self._send(state, REFRESH_FAILED)
            await self._prompt_signin(state)
            return
        await self._show_menu(state)

    async def _logout(self, state: ConversationState) -> None:
        print(f"DIALOGS: User '{state.tokens.user_name}' logged out of {state.key}")
        self.registry.release(state.key)
        state.tokens = None
        state.dialog = DialogState.NOT_LOGGED_IN
        await self._send(state, LOGGED_OUT, end_conversation=True)
