"""Driver identity adapters."""

from .base import Driver

__all__ = ["Driver"]
