"""Driver session persistence.

The Telethon string session is kept in a small JSON file readable only by
the owner.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("gaterunner.session")


class SessionStore:
    """Load/save the driver's string session at a fixed path."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def load(self) -> Optional[str]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load session: {e}")
            return None
        return data.get("string_session") or None

    def save(self, string_session: str) -> bool:
        data = {
            "string_session": string_session,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.error(f"Failed to save session: {e}")
            return False
        return True

    def clear(self) -> bool:
        try:
            if os.path.exists(self.path):
                os.remove(self.path)
        except OSError as e:
            logger.error(f"Failed to clear session: {e}")
            return False
        return True
