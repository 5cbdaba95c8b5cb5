"""Pytest configuration and shared fixtures.

``FakeDriver`` plays scripted responders: each responder has a list of
``(delay, InboundMessage)`` items delivered after the trigger, and a list of
press results (an answer, an exception, or an answer plus follow-up items).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import pytest

from gaterunner.channels.base import Messenger
from gaterunner.config import GateRunnerSettings
from gaterunner.context import AppContext
from gaterunner.driver.base import Driver
from gaterunner.models import (
    CallbackAnswer,
    Choice,
    InboundMessage,
    MediaItem,
    MediaKind,
    MessageKind,
    Responder,
)


# ── Message builders ─────────────────────────────────────────

def media_msg(message_id: int, sender_id: int, kind: MediaKind = MediaKind.PHOTO, grouped_id=None) -> InboundMessage:
    return InboundMessage(
        kind=MessageKind.MEDIA,
        message_id=message_id,
        sender_id=sender_id,
        media=MediaItem(
            message_id=message_id,
            chat_id=sender_id,
            kind=kind,
            grouped_id=grouped_id,
            file_id=f"file-{message_id}",
        ),
    )


def gate_msg(message_id: int, sender_id: int, channels: int = 2) -> InboundMessage:
    choices = [Choice(text=f"Channel {i}", url=f"https://t.me/channel{i}") for i in range(1, channels + 1)]
    choices.append(Choice(text="✅ Done", data=b"confirm"))
    return InboundMessage(
        kind=MessageKind.CHOICES,
        message_id=message_id,
        sender_id=sender_id,
        text="Join our channels first",
        choices=tuple(choices),
    )


def text_msg(message_id: int, sender_id: int, text: str) -> InboundMessage:
    return InboundMessage(kind=MessageKind.TEXT, message_id=message_id, sender_id=sender_id, text=text)


# ── Fakes ────────────────────────────────────────────────────

class FakeDriver(Driver):
    """In-memory driver identity with scripted responders."""

    def __init__(self):
        self.responders: dict[str, Responder] = {}
        self.scripts: dict[str, list] = {}
        self.press_results: dict[str, list] = {}
        self.join_errors: dict[str, Exception] = {}
        self.commands: list[tuple[str, str]] = []
        self.joins: list[str] = []
        self.presses: list[tuple[str, int, Choice]] = []
        self.relayed: list[MediaItem] = []
        self.forwarded: list[tuple[MediaItem, int]] = []
        self.listeners: dict[int, asyncio.Queue] = {}
        self.listen_count = 0
        self.send_error: Optional[Exception] = None
        self._tasks: set[asyncio.Task] = set()

    def add_responder(self, name: str, responder_id: int, script=(), presses=()) -> Responder:
        responder = Responder(id=responder_id, name=name)
        self.responders[name] = responder
        self.scripts[name] = list(script)
        self.press_results[name] = list(presses)
        return responder

    def deliver(self, responder_id: int, items):
        for delay, item in items:
            task = asyncio.create_task(self._deliver_later(responder_id, delay, item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver_later(self, responder_id: int, delay: float, item: InboundMessage):
        await asyncio.sleep(delay)
        queue = self.listeners.get(responder_id)
        if queue is not None:
            queue.put_nowait(item)

    async def resolve(self, target_name: str) -> Optional[Responder]:
        return self.responders.get(target_name)

    @asynccontextmanager
    async def listen(self, responder: Responder):
        queue: asyncio.Queue = asyncio.Queue()
        self.listeners[responder.id] = queue
        self.listen_count += 1
        try:
            yield queue
        finally:
            self.listeners.pop(responder.id, None)

    async def send_command(self, responder: Responder, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.commands.append((responder.name, text))
        self.deliver(responder.id, self.scripts.get(responder.name, []))

    async def join_channel(self, url: str) -> None:
        self.joins.append(url)
        error = self.join_errors.get(url)
        if error is not None:
            raise error

    async def press(self, responder: Responder, message_id: int, choice: Choice) -> CallbackAnswer:
        self.presses.append((responder.name, message_id, choice))
        results = self.press_results.get(responder.name) or []
        result = results.pop(0) if results else CallbackAnswer()
        if isinstance(result, Exception):
            raise result
        if isinstance(result, tuple):
            answer, followups = result
            self.deliver(responder.id, followups)
            return answer
        return result

    async def forward_to_user(self, media: MediaItem, user_id: int) -> None:
        self.forwarded.append((media, user_id))

    async def forward_to_relay(self, media: MediaItem) -> None:
        self.relayed.append(media)


class FakeMessenger(Messenger):
    """Records everything sent; message ids count up from 1000."""

    def __init__(self):
        self.sent: list[tuple[int, int, str]] = []
        self.edits: list[tuple[int, int, str]] = []
        self.deleted: list[tuple[int, int]] = []
        self.media: list[tuple[int, int, MediaItem]] = []
        self._next_id = 1000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def texts(self, chat_id: int) -> list[str]:
        return [text for cid, _, text in self.sent if cid == chat_id]

    async def send_text(self, chat_id: int, text: str) -> Optional[int]:
        message_id = self._new_id()
        self.sent.append((chat_id, message_id, text))
        return message_id

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> bool:
        self.edits.append((chat_id, message_id, text))
        return True

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        self.deleted.append((chat_id, message_id))
        return True

    async def send_media(self, chat_id: int, media: MediaItem) -> Optional[int]:
        message_id = self._new_id()
        self.media.append((chat_id, message_id, media))
        return message_id


# ── Fixtures ─────────────────────────────────────────────────

FAST_TIMINGS = dict(
    response_timeout=0.3,
    join_delay=0.01,
    settle_delay=0.02,
    confirm_retry_delay=0.02,
    silence_window=0.12,
    cleanup_delay=0.05,
    sweep_interval=0.05,
)


def make_settings(**overrides) -> GateRunnerSettings:
    values = dict(FAST_TIMINGS)
    values.update(overrides)
    return GateRunnerSettings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def relay():
    return FakeMessenger()


@pytest.fixture
def ctx(settings, driver, relay):
    return AppContext(settings=settings, driver=driver, relay=relay)
