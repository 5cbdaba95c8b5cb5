"""GateRunner: automates Telegram bots that gate content behind channel joins."""

__version__ = "0.1.0"
