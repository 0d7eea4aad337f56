# src/authbot/events.py

import asyncio
import typing

from pydantic import BaseModel

from .models import ConversationAddress


class LoginCompleted(BaseModel):
    """Published by the OAuth callback once the pending login is stored. Carries no tokens."""
    address: ConversationAddress


LoginHandler = typing.Callable[[LoginCompleted], typing.Awaitable[None]]


class LoginEventBus:
    """
    Hands login-completed events from the web callback over to the chat side.
    The publisher never waits for the dialog; the consumer loop started at
    application startup delivers events to subscribers in publish order.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[LoginCompleted]" = asyncio.Queue()
        self._subscribers: typing.List[LoginHandler] = []

    def subscribe(self, handler: LoginHandler) -> None:
        self._subscribers.append(handler)

    async def publish(self, event: LoginCompleted) -> None:
        self._queue.put_nowait(event)
        print(f"EVENTS: Published login completed for conversation {event.address.key}")

    def pending(self) -> int:
        return self._queue.qsize()

    async def deliver(self, event: LoginCompleted) -> None:
        for handler in self._subscribers:
            try:
                await handler(event)
            except Exception as e:
                # One broken conversation must not stop delivery for the others.
                print(f"EVENTS: Subscriber failed for conversation {event.address.key}: {e!r}")

    async def run(self) -> None:
        print("EVENTS: Login event consumer started.")
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()
