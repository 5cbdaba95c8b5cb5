"""Status message vocabulary shown to the requester.

One status message per request is edited in place with these strings.
"""

from typing import Optional

CLEANUP_WARNING = "⚠️ Media will be automatically deleted in {seconds} seconds."
QUEUE_FULL = "❌ Queue is full. Please try again later."


def format_wait_time(seconds: int) -> str:
    """Format a wait duration: ``MM:SS`` from one minute up, else ``N seconds``."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds} seconds"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes:02d}:{remaining:02d}"


def starting() -> str:
    return "🔄 Starting..."


def joining(current: int, total: int) -> str:
    return f"🔗 Joining channel {current}/{total}..."


def receiving(count: int) -> str:
    return f"📥 Receiving media {count}..."


def rate_limited(wait_seconds: int, joined: Optional[int] = None, total: Optional[int] = None) -> str:
    text = "⏳ Telegram rate limit reached!\n\n"
    if joined is not None and total:
        text += f"Joined {joined}/{total} channels.\n"
    return text + f"Please wait {format_wait_time(wait_seconds)} before trying again."


def forwarding(count: int) -> str:
    return f"📤 Forwarding {count} file(s)..."


def done(count: int) -> str:
    return f"✅ Done! Forwarded {count} file(s)."


def target_failed(target_name: str, error: Optional[str]) -> str:
    return f"❌ Error with bot @{target_name}:\n{error or 'Unknown error'}"


def request_failed(reason: str) -> str:
    return f"❌ Request failed: {reason}"


def cleanup_warning(seconds: float) -> str:
    return CLEANUP_WARNING.format(seconds=int(seconds))
