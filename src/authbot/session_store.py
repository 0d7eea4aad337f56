# src/authbot/session_store.py

import abc
import asyncio
import typing

from .models import ConversationAddress, ConversationState


class SessionStore(abc.ABC):
    """Per-conversation state: dialog position and the signed-in user's tokens."""

    def __init__(self):
        self._locks: typing.Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        """One turn at a time per conversation; hold this around load/save."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def forget_lock(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    @abc.abstractmethod
    async def load(self, address: ConversationAddress) -> ConversationState:
        ...

    @abc.abstractmethod
    async def save(self, state: ConversationState) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        ...


class InMemorySessionStore(SessionStore):
    # Stores serialized copies so callers never share a live object between turns.

    def __init__(self):
        super().__init__()
        self._data: typing.Dict[str, dict] = {}

    async def load(self, address: ConversationAddress) -> ConversationState:
        data = self._data.get(address.key)
        if data is None:
            return ConversationState(address=address)
        state = ConversationState.model_validate(data)
        # The channel may move a conversation to a new service URL.
        state.address = address
        return state

    async def save(self, state: ConversationState) -> None:
        self._data[state.key] = state.model_dump(mode="json", by_alias=True)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self.forget_lock(key)
