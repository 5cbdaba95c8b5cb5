"""Application context, built once at startup and passed to constructors."""

from dataclasses import dataclass
from typing import Optional

from .channels.base import Messenger
from .config import GateRunnerSettings
from .driver.base import Driver


@dataclass(frozen=True)
class EngineTimings:
    """Interaction timings in seconds."""
    response_timeout: float = 30.0
    join_delay: float = 3.0
    settle_delay: float = 5.0
    confirm_retry_delay: float = 5.0
    silence_window: float = 10.0

    @classmethod
    def from_settings(cls, settings: GateRunnerSettings) -> "EngineTimings":
        return cls(
            response_timeout=settings.response_timeout,
            join_delay=settings.join_delay,
            settle_delay=settings.settle_delay,
            confirm_retry_delay=settings.confirm_retry_delay,
            silence_window=settings.silence_window,
        )


@dataclass
class AppContext:
    settings: GateRunnerSettings
    driver: Driver
    relay: Messenger
    # Messenger used for requests that arrive on the driver account itself
    driver_messenger: Optional[Messenger] = None

    @property
    def timings(self) -> EngineTimings:
        return EngineTimings.from_settings(self.settings)
