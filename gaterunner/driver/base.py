"""Driver identity interface.

The driver is the account that talks to responders: it resolves them,
sends the trigger, joins gating channels and presses inline buttons.
Implementations translate platform errors into ``gaterunner.errors``:

- ``FloodWaitError(seconds)`` when a join is rate limited
- ``AlreadyMemberError`` when already in the channel
- ``JoinError`` for any other join failure
- ``NoAcknowledgmentError`` when a callback query is not answered
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional

from ..models import CallbackAnswer, Choice, MediaItem, Responder


class Driver(ABC):
    """Abstract driver identity."""

    @abstractmethod
    async def resolve(self, target_name: str) -> Optional[Responder]:
        """Resolve a username to a responder, or None if it does not exist."""
        ...

    @abstractmethod
    def listen(self, responder: Responder) -> AbstractAsyncContextManager[asyncio.Queue]:
        """Attach an inbound listener for one responder.

        Yields a queue of ``InboundMessage``. The listener is detached when
        the context exits, whatever the exit path.
        """
        ...

    @abstractmethod
    async def send_command(self, responder: Responder, text: str) -> None:
        """Send a text command (the trigger) to a responder."""
        ...

    @abstractmethod
    async def join_channel(self, url: str) -> None:
        """Join the channel a gating choice points at."""
        ...

    @abstractmethod
    async def press(self, responder: Responder, message_id: int, choice: Choice) -> CallbackAnswer:
        """Press an inline callback button on a responder message."""
        ...

    @abstractmethod
    async def forward_to_user(self, media: MediaItem, user_id: int) -> None:
        """Forward media straight to a user chat."""
        ...

    @abstractmethod
    async def forward_to_relay(self, media: MediaItem) -> None:
        """Forward media into the relay bot's chat, dropping captions."""
        ...
