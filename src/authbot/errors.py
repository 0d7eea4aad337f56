# src/authbot/errors.py


class AuthBotError(Exception):
    """Base class for failures in the chat sign-in handshake."""


class AuthenticationError(AuthBotError):
    """The identity provider rejected the login or returned no stable subject."""


class InvalidStateError(AuthBotError):
    """The `state`/`address` round-tripped through the browser is missing or malformed."""


class RefreshError(AuthBotError):
    """The refresh-token exchange failed. Not transient: the user must sign in again."""


class CodeMismatchError(AuthBotError):
    """The typed code does not match any login pending for the conversation."""


class CodeExpiredOrConsumedError(AuthBotError):
    """No login is pending for the conversation: it expired or was already claimed."""
