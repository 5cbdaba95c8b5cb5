"""Request coordinator: bridges the queue to the interaction engine.

For each started request it walks the targets one by one, keeps a single
status message up to date, relays media back to the requester and, for
relay-bot requests, deletes delivered media after a short delay.
"""

import asyncio
import logging
from typing import Optional

from . import formatting as fmt
from .channels.base import Messenger
from .context import AppContext
from .engine import DeliveryRoute, InteractionEngine, InteractionEvents
from .errors import ErrorKind, QueueFullError, RateLimitedError, classify_error
from .models import InteractionOutcome, MediaItem, Request, RequestOrigin
from .request_queue import RequestQueue
from .tracker import CorrelationTracker

logger = logging.getLogger("gaterunner.coordinator")


class StatusMessage:
    """One message per request, created once and edited in place."""

    def __init__(self, messenger: Messenger, chat_id: int):
        self._messenger = messenger
        self._chat_id = chat_id
        self.message_id: Optional[int] = None
        self.text: Optional[str] = None
        self.history: list[str] = []

    async def update(self, text: str):
        if text == self.text:
            return
        self.text = text
        self.history.append(text)
        try:
            if self.message_id is None:
                self.message_id = await self._messenger.send_text(self._chat_id, text)
            else:
                await self._messenger.edit_text(self._chat_id, self.message_id, text)
        except Exception as e:
            logger.error(f"Failed to update status: {e}")


class _RequestEvents(InteractionEvents):
    """Maps engine progress onto the status message and tracks forwards."""

    def __init__(self, status: StatusMessage):
        self.status = status
        self.forwards: list[asyncio.Task] = []

    async def on_join_progress(self, current: int, total: int):
        await self.status.update(fmt.joining(current, total))

    async def on_media(self, media: MediaItem, count: int, forwarding: asyncio.Task):
        self.forwards.append(forwarding)
        await self.status.update(fmt.receiving(count))

    async def on_rate_limited(self, wait_seconds: int, joined: int, total: int):
        await self.status.update(fmt.rate_limited(wait_seconds, joined, total))


class RequestCoordinator:
    """Owns the queue callbacks, the correlation sweep and relay cleanup."""

    def __init__(
        self,
        ctx: AppContext,
        queue: RequestQueue,
        engine: InteractionEngine,
        tracker: CorrelationTracker,
    ):
        self.ctx = ctx
        self.settings = ctx.settings
        self.queue = queue
        self.engine = engine
        self.tracker = tracker
        # chat_id → relay message ids delivered there, pending deletion
        self._delivered: dict[int, list[int]] = {}
        # request id → number of files forwarded through the relay
        self._forwarded: dict[str, int] = {}
        self._cleanup_tasks: set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None
        queue.set_callbacks(
            on_started=self._handle_request,
            on_completed=self._on_completed,
            on_failed=self._on_failed,
        )

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self):
        """Start the periodic correlation sweep."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("Request coordinator started")

    async def stop(self):
        tasks = list(self._cleanup_tasks)
        if self._sweep_task:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        await self.queue.close()
        logger.info("Request coordinator stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            try:
                self.tracker.sweep(self.settings.correlation_ttl_ms)
            except Exception as e:
                logger.error(f"Correlation sweep failed: {e}", exc_info=True)

    # ── Submission ───────────────────────────────────────────

    def messenger_for(self, request: Request) -> Messenger:
        if request.origin == RequestOrigin.DRIVER and self.ctx.driver_messenger is not None:
            return self.ctx.driver_messenger
        return self.ctx.relay

    async def submit(self, request: Request) -> Optional[int]:
        """Enqueue a request. Returns its position, or None if rejected."""
        request.deadline_ms = self.settings.request_timeout_ms
        try:
            return self.queue.enqueue(request)
        except QueueFullError:
            await self.messenger_for(request).send_text(request.chat_id, fmt.QUEUE_FULL)
            return None

    def get_position(self, requester_id: int) -> Optional[int]:
        return self.queue.get_position(requester_id)

    def is_processing(self, requester_id: int) -> bool:
        return self.queue.is_processing(requester_id)

    # ── Processing ───────────────────────────────────────────

    async def _handle_request(self, request: Request):
        """Queue ``on_started`` handler: process, then settle the request."""
        status = StatusMessage(self.messenger_for(request), request.chat_id)
        try:
            halted = await self.process(request, status)
        except Exception as e:
            logger.error(f"Error handling request {request.id}: {e}", exc_info=True)
            await status.update(f"❌ An error occurred: {classify_error(e)}\n\nPlease try again later.")
            self.queue.mark_failed(e)
            return

        if halted is not None:
            self.queue.mark_failed(RateLimitedError(halted.flood_wait_seconds))
        else:
            self.queue.mark_complete()

    async def process(self, request: Request, status: StatusMessage) -> Optional[InteractionOutcome]:
        """Run every target in order. Returns the halting outcome on a rate limit."""
        messenger = self.messenger_for(request)
        via_relay = request.origin == RequestOrigin.RELAY
        route = DeliveryRoute(requester_id=request.requester_id, via_relay=via_relay)
        events = _RequestEvents(status)
        total = len(request.targets)

        await status.update(fmt.starting())

        for index, target in enumerate(request.targets, start=1):
            logger.info(f"Processing bot link {index}/{total}: {target.target_name}")

            responder = await self.engine.resolve(target.target_name)
            if responder is None:
                outcome = self.engine.not_found(target)
            else:
                if via_relay:
                    self.tracker.add(responder.id, request.requester_id, request.chat_id)
                outcome = await self.engine.interact(target, route, events, responder=responder)

            logger.info(
                f"Bot interaction completed: {'SUCCESS' if outcome.success else 'FAILURE'} - {target.target_name}"
            )

            if outcome.halts_request:
                await status.update(
                    fmt.rate_limited(outcome.flood_wait_seconds, outcome.joined, outcome.total_joins)
                )
                return outcome

            if not outcome.success:
                await messenger.send_text(request.chat_id, fmt.target_failed(target.target_name, outcome.error))

        forwards = events.forwards
        delivered = 0
        if forwards:
            logger.info(f"Waiting for {len(forwards)} media forward(s) to complete...")
            await status.update(fmt.forwarding(len(forwards)))
            results = await asyncio.gather(*forwards, return_exceptions=True)
            delivered = sum(1 for result in results if result is True)
            if delivered < len(forwards):
                logger.warning(f"Only {delivered}/{len(forwards)} media forward(s) succeeded")
        if via_relay:
            self._forwarded[request.id] = delivered
        await status.update(fmt.done(delivered))
        return None

    async def _on_completed(self, request: Request):
        forwarded = self._forwarded.pop(request.id, 0)
        if request.origin != RequestOrigin.RELAY:
            return
        if forwarded or self._delivered.get(request.chat_id):
            task = asyncio.create_task(self._cleanup_chat(request.chat_id))
            self._cleanup_tasks.add(task)
            task.add_done_callback(self._cleanup_tasks.discard)

    async def _on_failed(self, request: Request, error: BaseException):
        self._forwarded.pop(request.id, None)
        kind = getattr(error, "kind", ErrorKind.INTERNAL)
        logger.info(f"Reporting failure of request {request.id} ({kind.value})")
        if isinstance(error, RateLimitedError):
            # Already shown in the status message
            return
        await self.messenger_for(request).send_text(request.chat_id, fmt.request_failed(classify_error(error)))

    # ── Relay-side delivery ──────────────────────────────────

    async def relay_media_received(self, responder_id: int, media: MediaItem) -> Optional[int]:
        """Media forwarded to the relay bot from a responder: send it to whoever asked.

        Returns the id of the message delivered to the requester.
        """
        entry = self.tracker.get(responder_id)
        if entry is None:
            logger.warning(f"No request found for bot {responder_id}")
            return None

        logger.info(f"Forwarding media from bot {responder_id} to user {entry.requester_id} without caption")
        try:
            message_id = await self.ctx.relay.send_media(entry.requester_chat_id, media)
        except Exception as e:
            logger.error(f"Failed to forward to end user: {e}")
            return None
        if message_id:
            self._delivered.setdefault(entry.requester_chat_id, []).append(message_id)
            logger.info(f"Tracked media message {message_id} for auto-deletion in chat {entry.requester_chat_id}")
        return message_id

    async def _cleanup_chat(self, chat_id: int):
        """Warn, wait, then delete every delivered media message in the chat. Best-effort."""
        relay = self.ctx.relay
        delay = self.settings.cleanup_delay
        warning_id = await relay.send_text(chat_id, fmt.cleanup_warning(delay))
        logger.info(f"Sent deletion warning to chat {chat_id}, scheduling deletion in {delay:g} seconds")

        await asyncio.sleep(delay)

        message_ids = self._delivered.pop(chat_id, [])
        if warning_id:
            message_ids.append(warning_id)
        deleted = 0
        for message_id in message_ids:
            try:
                if await relay.delete_message(chat_id, message_id):
                    deleted += 1
            except Exception as e:
                logger.error(f"Failed to delete message {message_id} in chat {chat_id}: {e}")
        logger.info(f"Deleted {deleted}/{len(message_ids)} message(s) from chat {chat_id}")
