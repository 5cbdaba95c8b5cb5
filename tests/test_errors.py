"""Tests for classify_error()."""

import asyncio

from gaterunner.errors import (
    ConfigError,
    DeepLinkError,
    ErrorKind,
    GateRunnerError,
    FloodWaitError,
    JoinError,
    QueueClosedError,
    QueueFullError,
    RateLimitedError,
    RequestTimeoutError,
    classify_error,
)


class TestClassifyError:
    def test_rate_limit(self):
        assert "Please wait 02:05" in classify_error(RateLimitedError(125))
        assert "Please wait 30 seconds" in classify_error(FloodWaitError(30))

    def test_queue_errors(self):
        assert classify_error(QueueFullError(100)) == "Queue is full. Please try again later."
        assert "timed out" in classify_error(RequestTimeoutError(300_000))
        assert "shutting down" in classify_error(QueueClosedError())

    def test_domain_errors(self):
        assert "Invalid or expired link" in classify_error(DeepLinkError("bad"))
        assert "Configuration error" in classify_error(ConfigError("missing token"))
        assert "join" in classify_error(JoinError("CHANNEL_PRIVATE"))

    def test_network_errors(self):
        assert "Timed out" in classify_error(asyncio.TimeoutError())
        assert "Connection" in classify_error(ConnectionResetError())

    def test_fallback_includes_type(self):
        assert "(KeyError)" in classify_error(KeyError("x"))

    def test_wait_never_negative(self):
        assert RateLimitedError(-3).wait_seconds == 0
        assert FloodWaitError(-3).seconds == 0


class TestErrorKind:
    def test_kinds(self):
        assert QueueFullError(1).kind == ErrorKind.QUEUE_FULL
        assert RequestTimeoutError(1000).kind == ErrorKind.TIMEOUT
        assert RateLimitedError(5).kind == ErrorKind.RATE_LIMITED
        assert FloodWaitError(5).kind == ErrorKind.RATE_LIMITED
        assert JoinError("CHANNEL_PRIVATE").kind == ErrorKind.TRANSIENT_JOIN_FAILURE

    def test_default_is_internal(self):
        assert GateRunnerError("x").kind == ErrorKind.INTERNAL
        assert QueueClosedError().kind == ErrorKind.INTERNAL
