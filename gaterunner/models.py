"""Core data types shared by the queue, engine and coordinator."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import ErrorKind

DEFAULT_DEADLINE_MS = 300_000


@dataclass(frozen=True)
class TargetLink:
    """A responder username plus the start token to trigger it with."""
    target_name: str
    start_token: str

    @property
    def key(self) -> str:
        return f"{self.target_name}:{self.start_token}"

    @property
    def url(self) -> str:
        return f"https://t.me/{self.target_name}?start={self.start_token}"


class RequestStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RequestOrigin(str, Enum):
    """Which identity received the request from the end user."""
    RELAY = "relay"
    DRIVER = "driver"


def _request_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class Request:
    requester_id: int
    chat_id: int
    targets: tuple[TargetLink, ...]
    origin: RequestOrigin = RequestOrigin.RELAY
    username: str = "unknown"
    deadline_ms: int = DEFAULT_DEADLINE_MS
    id: str = field(default_factory=_request_id)
    submitted_at: float = field(default_factory=time.time)
    status: RequestStatus = RequestStatus.QUEUED

    def __post_init__(self):
        # Targets are frozen once the request exists
        self.targets = tuple(self.targets)


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"


@dataclass(frozen=True)
class MediaItem:
    message_id: int
    chat_id: int
    kind: MediaKind
    grouped_id: Optional[int] = None   # album marker
    file_id: Optional[str] = None      # relay-side file reference
    raw: Any = field(default=None, compare=False, repr=False)


class MessageKind(str, Enum):
    TEXT = "text"
    CHOICES = "choices"
    MEDIA = "media"


@dataclass(frozen=True)
class Choice:
    text: str
    url: Optional[str] = None
    data: Optional[bytes] = None


@dataclass(frozen=True)
class InboundMessage:
    """One message from a responder, tagged by shape."""
    kind: MessageKind
    message_id: int
    sender_id: int
    text: str = ""
    choices: tuple[Choice, ...] = ()
    media: Optional[MediaItem] = None

    @property
    def join_choices(self) -> list[Choice]:
        """All choices except the last that carry a joinable URL."""
        return [c for c in self.choices[:-1] if c.url]

    @property
    def confirm_choice(self) -> Optional[Choice]:
        return self.choices[-1] if self.choices else None


@dataclass(frozen=True)
class Responder:
    """A resolved responder identity."""
    id: int
    name: str
    entity: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class CallbackAnswer:
    alert: bool = False
    message: str = ""


class JoinStatus(str, Enum):
    JOINED = "joined"
    ALREADY_MEMBER = "already_member"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class JoinResult:
    status: JoinStatus
    wait_seconds: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (JoinStatus.JOINED, JoinStatus.ALREADY_MEMBER)


@dataclass(frozen=True)
class InteractionOutcome:
    target_name: str
    success: bool
    summary: str = ""
    error: Optional[str] = None
    flood_wait_seconds: int = 0
    error_kind: Optional[ErrorKind] = None
    joined: int = 0
    total_joins: int = 0
    media_count: int = 0

    @property
    def halts_request(self) -> bool:
        return self.error_kind == ErrorKind.RATE_LIMITED
