"""Error hierarchy and user-facing error classification.

Platform adapters (Telethon driver, relay bot) translate their library
exceptions into these types, so the engine, queue and coordinator never
import platform exception classes.
"""

import asyncio
from enum import Enum


class ErrorKind(str, Enum):
    """Failure taxonomy carried on interaction outcomes."""
    NOT_FOUND = "not_found"
    RESPONSE_TIMEOUT = "response_timeout"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_JOIN_FAILURE = "transient_join_failure"
    PROTOCOL_ANOMALY = "protocol_anomaly"
    QUEUE_FULL = "queue_full"
    INTERNAL = "internal"
    TIMEOUT = "timeout"


# ════════════════════════════════════════════════════════
# Application errors
# ════════════════════════════════════════════════════════

class GateRunnerError(Exception):
    """Base class for all gaterunner errors."""
    kind = ErrorKind.INTERNAL

class ConfigError(GateRunnerError):
    """Missing or invalid configuration."""
    pass

class QueueFullError(GateRunnerError):
    """Request rejected because the queue is at capacity."""
    kind = ErrorKind.QUEUE_FULL

    def __init__(self, capacity: int):
        super().__init__(f"Queue is full ({capacity})")
        self.capacity = capacity

class QueueClosedError(GateRunnerError):
    """Request dropped because the queue shut down before it finished."""

    def __init__(self):
        super().__init__("Queue closed before the request finished")

class RequestTimeoutError(GateRunnerError):
    """Request was not settled before its deadline."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, deadline_ms: int):
        super().__init__(f"Request timeout after {deadline_ms / 1000:.0f}s")
        self.deadline_ms = deadline_ms

class RateLimitedError(GateRunnerError):
    """Platform rate limit halted the request."""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, wait_seconds: int):
        super().__init__(f"Rate limited, wait {wait_seconds}s")
        self.wait_seconds = max(0, wait_seconds)

class DeepLinkError(GateRunnerError):
    """Deep-link payload could not be encoded or decoded."""
    pass

class DeepLinkTooLongError(DeepLinkError):
    """Even a single target does not fit in a deep-link payload."""
    pass


# ════════════════════════════════════════════════════════
# Driver signals, raised by Driver implementations
# ════════════════════════════════════════════════════════

class DriverError(GateRunnerError):
    """Base class for errors raised by a driver identity."""
    pass

class FloodWaitError(DriverError):
    """Platform demands a wait before the action may be repeated."""
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, seconds: int):
        super().__init__(f"A wait of {seconds} seconds is required")
        self.seconds = max(0, int(seconds))

class AlreadyMemberError(DriverError):
    """The driver account is already a participant of the channel."""
    pass

class JoinError(DriverError):
    """Joining a channel failed for a non rate-limit reason."""
    kind = ErrorKind.TRANSIENT_JOIN_FAILURE

class NoAcknowledgmentError(DriverError):
    """Responder did not answer the callback query in time."""
    pass


def classify_error(e: BaseException) -> str:
    """Classify any exception into a short user-facing message."""
    if isinstance(e, RateLimitedError):
        from .formatting import format_wait_time
        return f"Telegram rate limit reached. Please wait {format_wait_time(e.wait_seconds)}."
    if isinstance(e, FloodWaitError):
        from .formatting import format_wait_time
        return f"Telegram rate limit reached. Please wait {format_wait_time(e.seconds)}."
    if isinstance(e, QueueFullError):
        return "Queue is full. Please try again later."
    if isinstance(e, RequestTimeoutError):
        return "Request timed out. Please try again later."
    if isinstance(e, QueueClosedError):
        return "The service is shutting down. Please try again later."
    if isinstance(e, DeepLinkError):
        return "Invalid or expired link. Please get a new link from the group."
    if isinstance(e, ConfigError):
        return f"Configuration error: {e}"
    if isinstance(e, JoinError):
        return "Could not join a required channel."
    if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
        return "Timed out waiting for Telegram. Please try again."
    if isinstance(e, (ConnectionError, OSError)):
        return "Connection to Telegram failed. Please try again later."

    # Fallback: include type name
    type_name = type(e).__name__
    return f"Something went wrong ({type_name}). Check logs for details."
