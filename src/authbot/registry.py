# src/authbot/registry.py

import abc
import threading
import time
import typing

from .models import PendingLogin


class PendingLoginRegistry(abc.ABC):
    """
    Holds browser-completed logins until their magic code is typed in chat.

    Entries are keyed by (conversation key, magic code): a code can only be
    claimed from the conversation that requested the sign-in link.
    """

    @abc.abstractmethod
    def put(self, login: PendingLogin) -> bool:
        """Stores `login`. Returns False if its key is already taken."""

    @abc.abstractmethod
    def take(self, conversation_key: str, magic_code: str) -> typing.Optional[PendingLogin]:
        """Removes and returns the matching login. At most one caller wins."""

    @abc.abstractmethod
    def has_pending(self, conversation_key: str) -> bool:
        ...

    @abc.abstractmethod
    def release(self, conversation_key: str) -> int:
        """Drops every login pending for the conversation."""

    @abc.abstractmethod
    def sweep(self) -> int:
        """Drops expired logins."""


class InMemoryPendingLoginRegistry(PendingLoginRegistry):
    # take() is called from the event loop while callbacks may put() from the
    # threadpool, so every access goes through one lock.

    def __init__(self, ttl_seconds: float, clock: typing.Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: typing.Dict[typing.Tuple[str, str], PendingLogin] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, login: PendingLogin) -> bool:
        return self.clock() - login.created_at >= self.ttl_seconds

    def put(self, login: PendingLogin) -> bool:
        key = (login.address.key, login.magic_code)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and not self._expired(existing):
                return False
            self._entries[key] = login
        print(f"REGISTRY: Stored pending login for conversation {login.address.key}")
        return True

    def take(self, conversation_key: str, magic_code: str) -> typing.Optional[PendingLogin]:
        with self._lock:
            login = self._entries.pop((conversation_key, magic_code), None)
        if login is None or self._expired(login):
            return None
        print(f"REGISTRY: Pending login claimed for conversation {conversation_key}")
        return login

    def has_pending(self, conversation_key: str) -> bool:
        with self._lock:
            return any(
                key[0] == conversation_key and not self._expired(login)
                for key, login in self._entries.items()
            )

    def release(self, conversation_key: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key[0] == conversation_key]
            for key in keys:
                del self._entries[key]
        if keys:
            print(f"REGISTRY: Released {len(keys)} pending login(s) for conversation {conversation_key}")
        return len(keys)

    def sweep(self) -> int:
        with self._lock:
            keys = [key for key, login in self._entries.items() if self._expired(login)]
            for key in keys:
                del self._entries[key]
        return len(keys)
