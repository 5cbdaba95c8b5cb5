"""Tests for status message formatting."""

from gaterunner import formatting as fmt


class TestFormatWaitTime:
    def test_seconds(self):
        assert fmt.format_wait_time(0) == "0 seconds"
        assert fmt.format_wait_time(45) == "45 seconds"
        assert fmt.format_wait_time(59) == "59 seconds"

    def test_minutes(self):
        assert fmt.format_wait_time(60) == "01:00"
        assert fmt.format_wait_time(125) == "02:05"
        assert fmt.format_wait_time(3600) == "60:00"

    def test_negative_clamped(self):
        assert fmt.format_wait_time(-5) == "0 seconds"


class TestStatusVocabulary:
    def test_progress(self):
        assert fmt.joining(2, 3) == "🔗 Joining channel 2/3..."
        assert fmt.receiving(4) == "📥 Receiving media 4..."
        assert fmt.forwarding(2) == "📤 Forwarding 2 file(s)..."
        assert fmt.done(0) == "✅ Done! Forwarded 0 file(s)."

    def test_rate_limited_with_counts(self):
        text = fmt.rate_limited(125, joined=1, total=3)
        assert "Joined 1/3 channels." in text
        assert text.endswith("Please wait 02:05 before trying again.")

    def test_rate_limited_without_counts(self):
        assert "Joined" not in fmt.rate_limited(30)

    def test_failures(self):
        assert fmt.target_failed("Bot", "Bot not found") == "❌ Error with bot @Bot:\nBot not found"
        assert fmt.target_failed("Bot", None).endswith("Unknown error")
        assert fmt.request_failed("x") == "❌ Request failed: x"

    def test_cleanup_warning(self):
        assert fmt.cleanup_warning(20) == "⚠️ Media will be automatically deleted in 20 seconds."
