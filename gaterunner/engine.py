"""Interaction engine: drives one responder through its gating flow.

Phases per target:

    Resolving → AwaitingInitialResponse → {Gating | DirectMedia}
              → Confirming → CollectingMedia → Done | Failed

Every wait is a receive on the responder's inbound queue racing a timer,
so media that arrives during joins or delays is still forwarded the moment
it is seen. The listener is attached before the trigger is sent and is
always detached on exit. ``interact()`` never raises: every fault becomes
an ``InteractionOutcome``.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from .context import AppContext, EngineTimings
from .errors import AlreadyMemberError, ErrorKind, FloodWaitError, NoAcknowledgmentError
from .formatting import format_wait_time
from .models import (
    CallbackAnswer,
    Choice,
    InboundMessage,
    InteractionOutcome,
    JoinResult,
    JoinStatus,
    MediaItem,
    MessageKind,
    Responder,
    TargetLink,
)

logger = logging.getLogger("gaterunner.engine")


@dataclass(frozen=True)
class DeliveryRoute:
    """Where collected media goes.

    via_relay: forward into the relay bot's chat (it re-sends caption-less
    to the requester); otherwise forward straight to requester_id.
    """
    requester_id: int
    via_relay: bool = True


class InteractionEvents:
    """Progress hooks. The coordinator overrides what it needs."""

    async def on_join_progress(self, current: int, total: int):
        pass

    async def on_media(self, media: MediaItem, count: int, forwarding: asyncio.Task):
        pass

    async def on_rate_limited(self, wait_seconds: int, joined: int, total: int):
        pass


class _Inbox:
    """Responder queue plus items set aside while gating was in progress."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue
        self._deferred: deque[InboundMessage] = deque()

    def defer(self, item: InboundMessage):
        self._deferred.append(item)

    async def receive(self, timeout: float) -> Optional[InboundMessage]:
        """Next live item, or None when the timeout elapses."""
        if timeout <= 0:
            try:
                return self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def get(self, timeout: float) -> Optional[InboundMessage]:
        """Deferred items first, then live ones."""
        if self._deferred:
            return self._deferred.popleft()
        return await self.receive(timeout)


@dataclass
class _Run:
    """Mutable state of one target invocation."""
    target: TargetLink
    responder: Responder
    route: DeliveryRoute
    events: InteractionEvents
    media_count: int = 0
    loopbacks: int = 0
    joined: int = 0
    total_joins: int = 0
    gated: bool = False
    anomaly: bool = False
    summary: str = ""


class InteractionEngine:
    """Runs the per-target protocol against the driver identity."""

    def __init__(self, ctx: AppContext, timings: Optional[EngineTimings] = None):
        self.driver = ctx.driver
        self.timings = timings or ctx.timings
        self.membership_keywords = [k.lower() for k in ctx.settings.membership_keywords]

    async def interact(
        self,
        target: TargetLink,
        route: DeliveryRoute,
        events: Optional[InteractionEvents] = None,
        responder: Optional[Responder] = None,
    ) -> InteractionOutcome:
        """Run the full protocol for one target.

        Args:
            target: Responder name and start token
            route: Delivery path for collected media
            events: Progress hooks (optional)
            responder: Already-resolved responder, skips the lookup

        Returns:
            Exactly one outcome; never raises except on cancellation
        """
        events = events or InteractionEvents()
        try:
            return await self._run(target, route, events, responder)
        except Exception as e:
            logger.error(f"Bot interaction failed for {target.target_name}: {e}", exc_info=True)
            return InteractionOutcome(
                target_name=target.target_name,
                success=False,
                error=str(e) or type(e).__name__,
                error_kind=ErrorKind.INTERNAL,
            )

    async def resolve(self, target_name: str) -> Optional[Responder]:
        try:
            responder = await self.driver.resolve(target_name)
        except Exception as e:
            logger.error(f"Failed to resolve bot {target_name}: {e}")
            return None
        if responder is None:
            logger.error(f"Bot not found: {target_name}")
        return responder

    def not_found(self, target: TargetLink) -> InteractionOutcome:
        return InteractionOutcome(
            target_name=target.target_name,
            success=False,
            error="Bot not found",
            error_kind=ErrorKind.NOT_FOUND,
        )

    # ── Phases ───────────────────────────────────────────────

    async def _run(
        self,
        target: TargetLink,
        route: DeliveryRoute,
        events: InteractionEvents,
        responder: Optional[Responder],
    ) -> InteractionOutcome:
        responder = responder or await self.resolve(target.target_name)
        if responder is None:
            return self.not_found(target)

        run = _Run(target=target, responder=responder, route=route, events=events)

        async with self.driver.listen(responder) as queue:
            inbox = _Inbox(queue)
            command = f"/start {target.start_token}"
            await self.driver.send_command(responder, command)
            logger.info(f"Sent command to bot @{target.target_name}: {command}")

            first = await inbox.get(self.timings.response_timeout)
            if first is None:
                logger.error(f"Bot response timeout ({self.timings.response_timeout:g} seconds)")
                return self._outcome(
                    run,
                    success=False,
                    error="Bot response timeout - no message received",
                    error_kind=ErrorKind.RESPONSE_TIMEOUT,
                )

            if first.kind == MessageKind.MEDIA:
                logger.info("Bot answered with media directly")
                await self._accept_media(run, first)
            elif first.kind == MessageKind.CHOICES:
                logger.info("Bot response has interactive choices")
                halted = await self._pass_gate(run, inbox, first)
                if halted is not None:
                    return halted
            else:
                # Unexpected shape: no choices, no media yet. Collect whatever follows.
                logger.info("No interactive choices in bot response, collecting media directly")
                run.anomaly = True
                run.summary = first.text

            return await self._collect(run, inbox)

    async def _pass_gate(self, run: _Run, inbox: _Inbox, message: InboundMessage) -> Optional[InteractionOutcome]:
        """Join every gating channel, then confirm. Returns an outcome only if halted."""
        run.gated = True
        wait_seconds = await self._join_all(run, inbox, message.join_choices)
        if wait_seconds is not None:
            await self._emit(run.events.on_rate_limited, wait_seconds, run.joined, run.total_joins)
            return self._outcome(
                run,
                success=False,
                summary=(
                    f"Rate limited: Please wait {format_wait_time(wait_seconds)}. "
                    f"Joined {run.joined} channels."
                ),
                error=f"FLOOD_WAIT: {format_wait_time(wait_seconds)}",
                error_kind=ErrorKind.RATE_LIMITED,
                flood_wait_seconds=wait_seconds,
            )
        await self._confirm(run, inbox, message)
        return None

    async def _join_all(self, run: _Run, inbox: _Inbox, choices: list[Choice]) -> Optional[int]:
        """Join channels in order. Returns the flood wait if a rate limit stopped the loop."""
        total = len(choices)
        joined = 0
        run.total_joins = total
        run.joined = 0
        logger.info(f"Found {total} channel choice(s) to join")

        for index, choice in enumerate(choices, start=1):
            await self._emit(run.events.on_join_progress, index, total)
            result = await self._join(choice)
            if result.ok:
                joined += 1
                run.joined = joined
            if result.status == JoinStatus.RATE_LIMITED:
                logger.warning(
                    f"⚠️ Stopping channel joins due to rate limit "
                    f"({format_wait_time(result.wait_seconds)} wait required)"
                )
                return result.wait_seconds
            if index < total:
                await self._pause(run, inbox, self.timings.join_delay)

        logger.info(f"Successfully joined {joined}/{total} channels")
        if total:
            logger.info("Waiting for channel joins to be registered...")
            await self._pause(run, inbox, self.timings.settle_delay)
        return None

    async def _join(self, choice: Choice) -> JoinResult:
        try:
            await self.driver.join_channel(choice.url)
        except AlreadyMemberError:
            logger.info(f"ℹ️ Already a member of channel: {choice.text}")
            return JoinResult(JoinStatus.ALREADY_MEMBER)
        except FloodWaitError as e:
            logger.warning(f"⏳ Telegram rate limit: must wait {format_wait_time(e.seconds)} before joining more channels")
            return JoinResult(JoinStatus.RATE_LIMITED, wait_seconds=e.seconds)
        except Exception as e:
            logger.error(f"Failed to join channel from {choice.url}: {e}")
            return JoinResult(JoinStatus.TRANSIENT_FAILURE)
        logger.info(f"✅ Joined channel: {choice.text}")
        return JoinResult(JoinStatus.JOINED)

    async def _confirm(self, run: _Run, inbox: _Inbox, message: InboundMessage):
        answer = await self._press(run, message)
        if answer is None or not answer.alert:
            return
        logger.warning(f"⚠️ Bot popup alert: {answer.message}")
        if not self._is_membership_popup(answer.message):
            return
        logger.info("Waiting additional time for channel joins to process...")
        await self._pause(run, inbox, self.timings.confirm_retry_delay)
        logger.info("Retrying confirm choice...")
        await self._press(run, message)

    async def _press(self, run: _Run, message: InboundMessage) -> Optional[CallbackAnswer]:
        choice = message.confirm_choice
        if choice is None:
            return None
        logger.info(f"Pressing confirm choice: {choice.text}")
        try:
            answer = await self.driver.press(run.responder, message.message_id, choice)
        except NoAcknowledgmentError:
            # Many responders answer with media instead of a callback answer
            logger.info("✅ Confirm pressed (no acknowledgment, bot will send media)")
            return CallbackAnswer()
        except Exception as e:
            logger.error(f"Failed to press confirm choice: {e}")
            return None
        if answer.message and not answer.alert:
            logger.info(f"Bot callback response: {answer.message}")
        return answer

    def _is_membership_popup(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(keyword in lowered for keyword in self.membership_keywords)

    async def _collect(self, run: _Run, inbox: _Inbox) -> InteractionOutcome:
        """Collect media until the trailing-silence window elapses."""
        loop = asyncio.get_running_loop()
        window = self.timings.silence_window
        deadline = loop.time() + window

        while True:
            item = await inbox.get(deadline - loop.time())
            if item is None:
                break
            if item.kind == MessageKind.MEDIA:
                await self._accept_media(run, item)
                deadline = loop.time() + window
            elif item.kind == MessageKind.CHOICES:
                if run.loopbacks >= 1:
                    logger.warning("Bot sent gating choices again after a retry; finishing with collected media")
                    break
                run.loopbacks += 1
                logger.warning("⚠️ Bot sent gating choices again - channels may not have been joined properly")
                halted = await self._pass_gate(run, inbox, item)
                if halted is not None:
                    return halted
                deadline = loop.time() + window
            else:
                logger.debug(f"Message from bot has no media - text: {item.text[:50]!r}")

        logger.info(f"Media collection complete: {run.media_count} media message(s) from @{run.target.target_name}")
        if run.gated:
            summary = "Channels joined, confirmed, and media forwarded"
        elif run.summary:
            summary = run.summary
        else:
            summary = f"Media forwarded ({run.media_count} file(s))"
        kind = ErrorKind.PROTOCOL_ANOMALY if run.anomaly else None
        return self._outcome(run, success=True, summary=summary, error_kind=kind)

    async def _pause(self, run: _Run, inbox: _Inbox, seconds: float):
        """Sleep while still forwarding media; other items wait for collection."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            item = await inbox.receive(remaining)
            if item is None:
                return
            if item.kind == MessageKind.MEDIA:
                await self._accept_media(run, item)
            else:
                inbox.defer(item)

    # ── Media delivery ───────────────────────────────────────

    async def _accept_media(self, run: _Run, item: InboundMessage):
        media = item.media
        if media is None:
            return
        run.media_count += 1
        group = f" [group: {media.grouped_id}]" if media.grouped_id else ""
        logger.info(f"📥 Received {media.kind.value} from bot ({run.media_count} total){group}")
        forwarding = asyncio.create_task(self._forward(media, run.route))
        await self._emit(run.events.on_media, media, run.media_count, forwarding)

    async def _forward(self, media: MediaItem, route: DeliveryRoute) -> bool:
        try:
            if route.via_relay:
                await self.driver.forward_to_relay(media)
                logger.info(f"📤 Forwarded {media.kind.value} to relay bot without caption")
            else:
                await self.driver.forward_to_user(media, route.requester_id)
                logger.info(f"📤 Forwarded {media.kind.value} to user {route.requester_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to forward {media.kind.value} (message {media.message_id}): {e}")
            return False

    # ── Helpers ──────────────────────────────────────────────

    async def _emit(self, hook, *args):
        try:
            await hook(*args)
        except Exception as e:
            logger.warning(f"Progress hook {getattr(hook, '__name__', hook)} failed: {e}")

    def _outcome(self, run: _Run, success: bool, **kwargs) -> InteractionOutcome:
        return InteractionOutcome(
            target_name=run.target.target_name,
            success=success,
            joined=run.joined,
            total_joins=run.total_joins,
            media_count=run.media_count,
            **kwargs,
        )
