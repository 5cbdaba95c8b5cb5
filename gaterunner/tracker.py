"""Correlation between responder identities and the users who triggered them.

When the driver account forwards a responder's media into the relay bot's
chat, the relay bot only knows which responder the media originally came
from. This tracker answers "which requester asked for it".
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("gaterunner.tracker")

DEFAULT_TTL_MS = 600_000


@dataclass(frozen=True)
class CorrelationEntry:
    requester_id: int
    requester_chat_id: int
    created_at: float   # clock() seconds


class CorrelationTracker:
    """Responder id → requester map with TTL expiry.

    Entries are swept periodically by the coordinator; lookups also ignore
    anything past its TTL so an entry never outlives it between sweeps.
    """

    def __init__(self, ttl_ms: int = DEFAULT_TTL_MS, clock: Callable[[], float] = time.monotonic):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[int, CorrelationEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, responder_id: int, requester_id: int, requester_chat_id: int):
        self._entries[int(responder_id)] = CorrelationEntry(
            requester_id=requester_id,
            requester_chat_id=requester_chat_id,
            created_at=self._clock(),
        )
        logger.info(f"Tracking request: responder {responder_id} -> user {requester_id}")

    def get(self, responder_id: int) -> Optional[CorrelationEntry]:
        entry = self._entries.get(int(responder_id))
        if entry is None:
            return None
        if self._age_ms(entry) > self.ttl_ms:
            self._entries.pop(int(responder_id), None)
            return None
        return entry

    def remove(self, responder_id: int) -> bool:
        """Remove an entry. Idempotent; returns whether one existed."""
        removed = self._entries.pop(int(responder_id), None) is not None
        if removed:
            logger.info(f"Removed tracking for responder {responder_id}")
        return removed

    def sweep(self, max_age_ms: Optional[int] = None) -> int:
        """Drop entries older than max_age_ms (default: the TTL). Returns count removed."""
        limit = self.ttl_ms if max_age_ms is None else max_age_ms
        expired = [rid for rid, entry in self._entries.items() if self._age_ms(entry) > limit]
        for rid in expired:
            del self._entries[rid]
            logger.info(f"Cleaned up old request for responder {rid}")
        return len(expired)

    def _age_ms(self, entry: CorrelationEntry) -> float:
        return (self._clock() - entry.created_at) * 1000
