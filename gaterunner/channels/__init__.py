"""User-facing channels: the relay bot and the shared Messenger interface."""

from .base import Messenger

__all__ = ["Messenger"]
