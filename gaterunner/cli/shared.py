"""Shared utilities for GateRunner CLI commands."""

from rich.console import Console

console = Console()
