"""Start-link extraction and deep-link payload codec.

Start links look like ``https://t.me/SomeBot?start=token``. The deep-link
codec packs a list of targets into a Telegram ``/start`` parameter so a
request seen in a group can be handed over to a private chat:

    [{"b": target_name, "s": start_token}, ...]  →  JSON  →  urlsafe base64, no padding

Telegram caps the parameter at 64 characters.
"""

import base64
import binascii
import json
import logging
import re
from typing import Iterable, Optional

from .errors import DeepLinkError, DeepLinkTooLongError
from .models import TargetLink

logger = logging.getLogger("gaterunner.links")

ALLOWED_HOSTS = ("t.me", "telegram.me", "telegram.dog")
MAX_DEEP_LINK_LENGTH = 64

_HOST_PATTERN = "|".join(re.escape(h) for h in ALLOWED_HOSTS)
_START_LINK_RE = re.compile(
    rf"https?://(?:www\.)?(?:{_HOST_PATTERN})/([A-Za-z0-9_]+)\?start=([A-Za-z0-9_-]+)",
    re.IGNORECASE,
)


def parse_start_link(url: str) -> Optional[TargetLink]:
    """Parse a single URL into a TargetLink, or None if it is not a start link."""
    if not url or not isinstance(url, str):
        return None
    match = _START_LINK_RE.search(url)
    if not match:
        return None
    return TargetLink(target_name=match.group(1), start_token=match.group(2))


def dedupe_links(links: Iterable[TargetLink]) -> list[TargetLink]:
    """Drop repeated ``name:token`` pairs, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for link in links:
        if link.key in seen:
            continue
        seen.add(link.key)
        unique.append(link)
    return unique


def extract_links(text: Optional[str], entity_urls: Iterable[str] = ()) -> list[TargetLink]:
    """Extract start links from entity URLs first, then from plain text.

    Args:
        text: Message text or caption
        entity_urls: URLs carried by rich-text entities (hidden text links)

    Returns:
        Ordered, de-duplicated list of targets
    """
    links: list[TargetLink] = []
    for url in entity_urls:
        link = parse_start_link(url)
        if link:
            links.append(link)
    if text:
        for match in _START_LINK_RE.finditer(text):
            links.append(TargetLink(target_name=match.group(1), start_token=match.group(2)))
    return dedupe_links(links)


# ── Deep-link payload ────────────────────────────────────────

def _pack(targets: list[TargetLink]) -> str:
    compact = [{"b": t.target_name, "s": t.start_token} for t in targets]
    raw = json.dumps(compact, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def encode_deep_link(targets: list[TargetLink]) -> tuple[str, int]:
    """Encode targets into a deep-link parameter.

    Falls back to the first target alone when the full list is too long.

    Returns:
        Tuple of (payload, dropped_count)

    Raises:
        DeepLinkError: if targets is empty
        DeepLinkTooLongError: if even a single target exceeds the limit
    """
    if not targets:
        raise DeepLinkError("No targets to encode")

    payload = _pack(list(targets))
    if len(payload) <= MAX_DEEP_LINK_LENGTH:
        logger.debug(f"Encoded {len(targets)} link(s) to deep-link parameter ({len(payload)} chars)")
        return payload, 0

    logger.warning(
        f"Encoded parameter length ({len(payload)}) exceeds Telegram limit "
        f"({MAX_DEEP_LINK_LENGTH}). Truncating to first link only."
    )
    single = _pack([targets[0]])
    if len(single) > MAX_DEEP_LINK_LENGTH:
        raise DeepLinkTooLongError(
            f"Even a single link exceeds the parameter limit ({len(single)} chars)"
        )
    return single, len(targets) - 1


def decode_deep_link(payload: str) -> list[TargetLink]:
    """Decode a deep-link parameter back into targets.

    Accepts payloads with or without base64 padding.

    Raises:
        DeepLinkError: on any malformed payload
    """
    if not payload:
        raise DeepLinkError("Empty deep-link parameter")
    padded = payload.strip() + "=" * (-len(payload.strip()) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        compact = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise DeepLinkError(f"Malformed deep-link parameter: {e}") from e

    if not isinstance(compact, list):
        raise DeepLinkError("Deep-link parameter is not a list")

    targets = []
    for entry in compact:
        if not isinstance(entry, dict) or not entry.get("b") or not entry.get("s"):
            raise DeepLinkError(f"Invalid deep-link entry: {entry!r}")
        targets.append(TargetLink(target_name=str(entry["b"]), start_token=str(entry["s"])))
    logger.debug(f"Decoded parameter to {len(targets)} link(s)")
    return targets
