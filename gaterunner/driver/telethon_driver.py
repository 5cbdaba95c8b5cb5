"""Telethon adapter for the driver identity (a Telegram user account)."""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from telethon import TelegramClient, errors, events
from telethon.tl.functions.channels import JoinChannelRequest
from telethon.tl.functions.messages import GetBotCallbackAnswerRequest, ImportChatInviteRequest
from telethon.tl.types import (
    KeyboardButtonCallback,
    KeyboardButtonUrl,
    MessageEntityTextUrl,
    MessageEntityUrl,
    ReplyInlineMarkup,
    User,
)

from ..channels.base import Messenger
from ..errors import AlreadyMemberError, FloodWaitError, JoinError, NoAcknowledgmentError
from ..links import extract_links
from ..models import (
    CallbackAnswer,
    Choice,
    InboundMessage,
    MediaItem,
    MediaKind,
    MessageKind,
    Request,
    RequestOrigin,
    Responder,
)
from .base import Driver

logger = logging.getLogger("gaterunner.driver")

_CHANNEL_URL_RE = re.compile(
    r"(?:https?://)?(?:www\.)?(?:t|telegram)\.(?:me|dog)/(\+|joinchat/)?([A-Za-z0-9_\-]+)",
    re.IGNORECASE,
)


def parse_channel_url(url: str) -> Optional[tuple[str, str]]:
    """Split a channel link into ("invite", hash) or ("username", name)."""
    match = _CHANNEL_URL_RE.search(url or "")
    if not match:
        return None
    if match.group(1):
        return "invite", match.group(2)
    return "username", match.group(2)


def _choices(markup) -> tuple[Choice, ...]:
    """Flatten an inline keyboard: URL buttons above the last row, then its first button."""
    if not isinstance(markup, ReplyInlineMarkup) or not markup.rows:
        return ()
    choices = []
    for row in markup.rows[:-1]:
        for button in row.buttons:
            if isinstance(button, KeyboardButtonUrl):
                choices.append(Choice(text=button.text, url=button.url))
    last_row = markup.rows[-1].buttons
    if last_row:
        button = last_row[0]
        if isinstance(button, KeyboardButtonCallback):
            choices.append(Choice(text=button.text, data=button.data))
        elif isinstance(button, KeyboardButtonUrl):
            choices.append(Choice(text=button.text, url=button.url))
    return tuple(choices)


def _media_kind(message) -> Optional[MediaKind]:
    if message.photo:
        return MediaKind.PHOTO
    if message.video:
        return MediaKind.VIDEO
    if message.document:
        return MediaKind.DOCUMENT
    return None


def to_inbound(message) -> InboundMessage:
    """Tag a Telethon message by shape."""
    choices = _choices(message.reply_markup)
    if choices and choices[-1].data is not None:
        return InboundMessage(
            kind=MessageKind.CHOICES,
            message_id=message.id,
            sender_id=message.sender_id,
            text=message.message or "",
            choices=choices,
        )
    kind = _media_kind(message)
    if kind is not None:
        return InboundMessage(
            kind=MessageKind.MEDIA,
            message_id=message.id,
            sender_id=message.sender_id,
            text=message.message or "",
            media=MediaItem(
                message_id=message.id,
                chat_id=message.chat_id,
                kind=kind,
                grouped_id=message.grouped_id,
                raw=message,
            ),
        )
    return InboundMessage(
        kind=MessageKind.TEXT,
        message_id=message.id,
        sender_id=message.sender_id,
        text=message.message or "",
    )


class TelethonDriver(Driver):
    """Driver identity backed by a logged-in Telethon client."""

    def __init__(self, client: TelegramClient, relay_username: Optional[str] = None):
        self.client = client
        self.relay_username = relay_username
        self._request_handler = None

    async def resolve(self, target_name: str) -> Optional[Responder]:
        try:
            entity = await self.client.get_entity(target_name)
        except (ValueError, errors.UsernameNotOccupiedError, errors.UsernameInvalidError):
            return None
        if not isinstance(entity, User):
            logger.warning(f"@{target_name} is not a user or bot account")
            return None
        return Responder(id=entity.id, name=target_name, entity=entity)

    @asynccontextmanager
    async def listen(self, responder: Responder) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue()

        async def handler(event):
            if event.sender_id != responder.id:
                return
            try:
                queue.put_nowait(to_inbound(event.message))
            except Exception as e:
                logger.error(f"Error in media handler: {e}")

        event_filter = events.NewMessage(incoming=True)
        self.client.add_event_handler(handler, event_filter)
        logger.info(f"Registered message listener for bot {responder.id}")
        try:
            yield queue
        finally:
            self.client.remove_event_handler(handler, event_filter)
            logger.debug(f"Removed message listener for bot {responder.id}")

    async def send_command(self, responder: Responder, text: str) -> None:
        await self.client.send_message(responder.entity or responder.id, text)

    async def join_channel(self, url: str) -> None:
        parsed = parse_channel_url(url)
        if parsed is None:
            raise JoinError(f"Could not parse channel URL: {url}")
        kind, value = parsed
        try:
            if kind == "invite":
                logger.info(f"Joining channel via invite link: {value}")
                await self.client(ImportChatInviteRequest(value))
            else:
                logger.info(f"Joining channel: {value}")
                await self.client(JoinChannelRequest(value))
        except errors.UserAlreadyParticipantError as e:
            raise AlreadyMemberError(str(e)) from e
        except errors.FloodWaitError as e:
            logger.info(f"📊 Raw Telegram flood wait value: {e.seconds} seconds")
            raise FloodWaitError(e.seconds) from e
        except (errors.RPCError, ValueError) as e:
            raise JoinError(str(e)) from e

    async def press(self, responder: Responder, message_id: int, choice: Choice) -> CallbackAnswer:
        try:
            answer = await self.client(GetBotCallbackAnswerRequest(
                peer=responder.entity or responder.id,
                msg_id=message_id,
                data=choice.data,
            ))
        except errors.BotResponseTimeoutError as e:
            raise NoAcknowledgmentError(str(e)) from e
        return CallbackAnswer(alert=bool(answer.alert), message=answer.message or "")

    async def forward_to_user(self, media: MediaItem, user_id: int) -> None:
        await self.client.forward_messages(user_id, media.message_id, from_peer=media.chat_id)

    async def forward_to_relay(self, media: MediaItem) -> None:
        if not self.relay_username:
            raise RuntimeError("Relay bot username is not known yet")
        await self.client.forward_messages(
            self.relay_username,
            media.message_id,
            from_peer=media.chat_id,
            drop_media_captions=True,
        )

    # ── Requests sent straight to the driver account ─────────

    def watch_requests(self, submit: Callable[[Request], Awaitable[Optional[int]]]):
        """Turn private messages with start links into driver-origin requests."""
        if self._request_handler is not None:
            return

        async def handler(event):
            try:
                sender = await event.get_sender()
                if getattr(sender, "bot", False):
                    return
                text = event.raw_text or ""
                urls = []
                for entity, inner_text in event.message.get_entities_text():
                    if isinstance(entity, MessageEntityTextUrl):
                        urls.append(entity.url)
                    elif isinstance(entity, MessageEntityUrl):
                        urls.append(inner_text)
                links = extract_links(text, urls)
                if not links:
                    return
                for link in links:
                    logger.info(f"Bot link detected: {link.target_name} (start={link.start_token})")
                await submit(Request(
                    requester_id=event.sender_id,
                    chat_id=event.chat_id,
                    targets=tuple(links),
                    origin=RequestOrigin.DRIVER,
                    username=getattr(sender, "username", None) or "unknown",
                ))
            except Exception as e:
                logger.error(f"Error processing message: {e}", exc_info=True)

        self._request_handler = handler
        self.client.add_event_handler(handler, events.NewMessage(incoming=True, func=lambda e: e.is_private))
        logger.info("Message monitoring started")


class TelethonMessenger(Messenger):
    """Status messages sent from the driver account (driver-origin requests)."""

    def __init__(self, client: TelegramClient):
        self.client = client

    async def send_text(self, chat_id: int, text: str) -> Optional[int]:
        try:
            message = await self.client.send_message(chat_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return None
        return message.id

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> bool:
        try:
            await self.client.edit_message(chat_id, message_id, text)
        except Exception as e:
            logger.error(f"Failed to edit message {message_id} in {chat_id}: {e}")
            return False
        return True

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.client.delete_messages(chat_id, [message_id])
        except Exception as e:
            logger.error(f"Failed to delete message: {e}")
            return False
        return True

    async def send_media(self, chat_id: int, media: MediaItem) -> Optional[int]:
        # Only items built by to_inbound() carry the Telethon message
        if media.raw is None or getattr(media.raw, "media", None) is None:
            logger.error(f"Cannot re-send {media.kind.value} (message {media.message_id}): no Telethon media attached")
            return None
        try:
            message = await self.client.send_file(chat_id, media.raw.media)
        except Exception as e:
            logger.error(f"Failed to send {media.kind.value} to {chat_id}: {e}")
            return None
        return message.id
