"""Relay bot (python-telegram-bot).

End users talk to this bot. It accepts start links, hands group requests
over to a private chat through a deep link, and re-sends media that the
driver account forwards into it.
"""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, MessageEntity, MessageOriginUser, Update
from telegram.constants import ChatType
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from ..errors import DeepLinkError, DeepLinkTooLongError
from ..links import decode_deep_link, encode_deep_link, extract_links
from ..models import MediaItem, MediaKind, Request, RequestOrigin, TargetLink
from .base import Messenger

if TYPE_CHECKING:
    from ..coordinator import RequestCoordinator

logger = logging.getLogger("gaterunner.relay")

RECENT_MESSAGES = 100

WELCOME_TEXT = """🤖 *Welcome to GateRunner!*

Send me any message containing Telegram bot start links, and I'll:
1️⃣ Join any required channels
2️⃣ Click the start button
3️⃣ Retrieve the content
4️⃣ Send it back to you

*Example:*
`https://t.me/SomeBot?start=parameter`

Use /help for more information."""

HELP_TEXT = """📖 *How to Use*

*Step 1:* Send me a message with a Telegram bot start link
*Step 2:* Wait while I process it
*Step 3:* Receive your content!

*Supported Links:*
• `https://t.me/BotName?start=parameter`
• Multiple links in one message

*Commands:*
/start - Welcome message
/help - This help message
/queue - Your position in the queue

Media is deleted automatically a short while after delivery."""

NO_LINKS_TEXT = """❌ No bot links found in your message.

Please send a message containing Telegram bot start links like:
`https://t.me/BotName?start=parameter`"""

INVALID_DEEP_LINK = "❌ Invalid or expired link. Please try getting a new link from the group."
GROUP_FALLBACK = "❌ Failed to process links. Please try sending them directly to the bot in private chat."
GROUP_BUTTON_TEXT = "🔗 Detected join link\n\nClick Start to process in private chat with the bot."


def entity_urls(message: Message) -> list[str]:
    """URLs carried by text or caption entities, hidden text links included."""
    types = [MessageEntity.URL, MessageEntity.TEXT_LINK]
    found = {**message.parse_entities(types), **message.parse_caption_entities(types)}
    urls = [entity.url if entity.type == MessageEntity.TEXT_LINK else text for entity, text in found.items()]
    return [u for u in urls if u]


def media_item(message: Message) -> Optional[MediaItem]:
    """Describe the media in a bot-API message by file id."""
    if message.photo:
        kind, file_id = MediaKind.PHOTO, message.photo[-1].file_id
    elif message.video:
        kind, file_id = MediaKind.VIDEO, message.video.file_id
    elif message.document:
        kind, file_id = MediaKind.DOCUMENT, message.document.file_id
    else:
        return None
    return MediaItem(
        message_id=message.message_id,
        chat_id=message.chat_id,
        kind=kind,
        grouped_id=message.media_group_id,
        file_id=file_id,
    )


class RelayBot(Messenger):
    """Telegram bot front end for requesters."""

    def __init__(self, bot_token: str, driver_user_id: Optional[int] = None):
        self.bot_token = bot_token
        self.driver_user_id = driver_user_id
        self.app: Optional[Application] = None
        self.username: Optional[str] = None
        self._coordinator: Optional["RequestCoordinator"] = None
        self._recent: deque[str] = deque(maxlen=RECENT_MESSAGES)

    def attach(self, coordinator: "RequestCoordinator"):
        self._coordinator = coordinator

    def _register_handlers(self):
        self.app.add_handler(CommandHandler("start", self._cmd_start))
        self.app.add_handler(CommandHandler("help", self._cmd_help))
        self.app.add_handler(CommandHandler("queue", self._cmd_queue))
        self.app.add_handler(MessageHandler(filters.FORWARDED, self._handle_forwarded))
        self.app.add_handler(MessageHandler(~filters.COMMAND & ~filters.FORWARDED, self._handle_message))
        self.app.add_error_handler(self._handle_error)

    async def start(self):
        """Start polling."""
        self.app = Application.builder().token(self.bot_token).build()
        self._register_handlers()

        logger.info("Starting relay bot...")
        for attempt in range(5):
            try:
                await self.app.initialize()
                break
            except Exception as e:
                if attempt < 4:
                    delay = [2, 5, 10, 15][attempt]
                    logger.warning(
                        f"Telegram init failed (attempt {attempt + 1}/5): {type(e).__name__}: {e}. Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    raise
        self.username = self.app.bot.username
        await self.app.start()
        await self.app.updater.start_polling(drop_pending_updates=True, allowed_updates=["message"])

        from telegram import BotCommand
        await self.app.bot.set_my_commands([
            BotCommand("start", "Welcome message"),
            BotCommand("help", "How to use this bot"),
            BotCommand("queue", "Your position in the queue"),
        ])
        logger.info(f"Relay bot @{self.username} started.")

    async def stop(self):
        if self.app:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
            logger.info("Relay bot stopped.")

    # ── Messenger ────────────────────────────────────────────

    async def send_text(self, chat_id: int, text: str) -> Optional[int]:
        try:
            message = await self.app.bot.send_message(chat_id=chat_id, text=text)
        except Exception as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return None
        return message.message_id

    async def edit_text(self, chat_id: int, message_id: int, text: str) -> bool:
        try:
            await self.app.bot.edit_message_text(chat_id=chat_id, message_id=message_id, text=text)
        except Exception as e:
            logger.error(f"Failed to edit message {message_id} in {chat_id}: {e}")
            return False
        return True

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.app.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except Exception as e:
            logger.error(f"Failed to delete message: {e}")
            return False
        logger.info(f"Deleted message {message_id} from chat {chat_id}")
        return True

    async def send_media(self, chat_id: int, media: MediaItem) -> Optional[int]:
        """Re-send media by file id, without caption."""
        bot = self.app.bot
        if media.kind == MediaKind.PHOTO:
            message = await bot.send_photo(chat_id=chat_id, photo=media.file_id)
        elif media.kind == MediaKind.VIDEO:
            message = await bot.send_video(chat_id=chat_id, video=media.file_id)
        else:
            message = await bot.send_document(chat_id=chat_id, document=media.file_id)
        return message.message_id

    # ── Command handlers ─────────────────────────────────────

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start, with or without a deep-link payload."""
        message = update.effective_message
        chat = update.effective_chat
        if context.args and chat.type == ChatType.PRIVATE:
            try:
                targets = decode_deep_link(context.args[0])
            except DeepLinkError as e:
                logger.warning(f"Failed to decode start parameter: {e}")
                await message.reply_text(INVALID_DEEP_LINK)
                return
            logger.info(f"Processing {len(targets)} link(s) from deep link parameter")
            await self._submit(update, targets)
            return

        await message.reply_text(WELCOME_TEXT, parse_mode="Markdown")

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.effective_message.reply_text(HELP_TEXT, parse_mode="Markdown")

    async def _cmd_queue(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /queue: show the caller's position."""
        user = update.effective_user
        position = self._coordinator.get_position(user.id) if self._coordinator else None
        if position is None and self._coordinator and self._coordinator.is_processing(user.id):
            text = "🔄 Your request is being processed now."
        elif position is None:
            text = "📭 You have no requests waiting in the queue."
        else:
            text = f"⏳ Your request is number {position} in the queue."
        await update.effective_message.reply_text(text)

    # ── Message handlers ─────────────────────────────────────

    def _seen(self, message: Message) -> bool:
        key = f"{message.chat_id}_{message.message_id}"
        if key in self._recent:
            logger.debug(f"Skipping duplicate message {message.message_id}")
            return True
        self._recent.append(key)
        return False

    async def _handle_forwarded(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Media the driver account forwarded from a responder bot."""
        message = update.effective_message
        sender = update.effective_user
        if self.driver_user_id is None or sender is None or sender.id != self.driver_user_id:
            logger.debug(f"Ignoring forwarded message {message.message_id} from {sender.id if sender else '?'}")
            return

        origin = message.forward_origin
        if not isinstance(origin, MessageOriginUser):
            logger.warning(f"Forwarded message {message.message_id} has no user origin")
            return

        media = media_item(message)
        if media is None:
            logger.warning(f"Unknown media type in message {message.message_id}")
            return

        responder_id = origin.sender_user.id
        logger.info(f"Received forwarded message from bot {responder_id}")
        if self._coordinator:
            await self._coordinator.relay_media_received(responder_id, media)

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        if message is None or update.effective_user is None or update.effective_user.is_bot:
            return

        # Only the captioned first member of an album carries the links
        if message.media_group_id and not (message.caption or message.text or message.caption_entities):
            logger.debug(f"Skipping media group message {message.message_id} without caption")
            return

        if self._seen(message):
            return

        text = message.text or message.caption or ""
        targets = extract_links(text, entity_urls(message))
        is_private = update.effective_chat.type == ChatType.PRIVATE
        logger.info(f"Found {len(targets)} bot link(s) in {update.effective_chat.type} chat")

        if not targets:
            if is_private:
                await message.reply_text(NO_LINKS_TEXT, parse_mode="Markdown")
            return

        if is_private:
            await self._submit(update, targets)
        else:
            await self._offer_private_start(message, targets)

    async def _offer_private_start(self, message: Message, targets: list[TargetLink]):
        """Reply in a group with a button that opens a private chat carrying the links."""
        try:
            payload, dropped = encode_deep_link(targets)
        except DeepLinkTooLongError as e:
            logger.error(f"Failed to encode links to parameter: {e}")
            await message.reply_text(GROUP_FALLBACK)
            return
        if dropped:
            logger.info(f"Using only first link due to parameter size limit ({dropped} dropped)")

        deep_link = f"https://t.me/{self.username}?start={payload}"
        keyboard = InlineKeyboardMarkup([[InlineKeyboardButton("▶️ Start", url=deep_link)]])
        try:
            await message.reply_text(GROUP_BUTTON_TEXT, reply_markup=keyboard)
            logger.info(f"Sent deep link button for group chat {message.chat_id}, message {message.message_id}")
        except Exception as e:
            logger.error(f"Failed to send button message: {e}")

    async def _submit(self, update: Update, targets: list[TargetLink]):
        if self._coordinator is None:
            logger.error("Relay bot has no coordinator attached")
            return
        user = update.effective_user
        request = Request(
            requester_id=user.id,
            chat_id=update.effective_chat.id,
            targets=tuple(targets),
            origin=RequestOrigin.RELAY,
            username=user.username or "unknown",
        )
        logger.info(f"Received {len(targets)} bot link(s) from user {user.id}")
        await self._coordinator.submit(request)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error(f"Relay bot error: {context.error}", exc_info=context.error)
