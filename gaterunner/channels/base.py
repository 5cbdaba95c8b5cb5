"""Platform-agnostic messaging interface.

Both identities (the relay bot and the driver account) can talk to end
users; the coordinator only sees this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import MediaItem


class Messenger(ABC):
    """Sends, edits and deletes messages in a user's chat."""

    @abstractmethod
    async def send_text(self, chat_id: int, text: str) -> Optional[int]:
        """Send a message. Returns the new message id, or None on failure."""
        ...

    @abstractmethod
    async def edit_text(self, chat_id: int, message_id: int, text: str) -> bool:
        ...

    @abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        ...

    @abstractmethod
    async def send_media(self, chat_id: int, media: MediaItem) -> Optional[int]:
        """Re-send media without caption. Returns the new message id, or None on failure."""
        ...
