"""User-facing call notices (connection status, recognizer errors, server messages)."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.markup import escape


class NoticeSink(Protocol):
    """Presents short notices to whoever is on the call."""

    def info(self, title: str, message: str) -> None:
        """Show an informational notice."""

    def error(self, title: str, message: str) -> None:
        """Show an error notice."""


class ConsoleNoticeSink:
    """Prints notices to the terminal and mirrors them into the log."""

    def __init__(self, console: Console | None = None, logger: logging.Logger | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._logger = logger or logging.getLogger("voice_call.notices")

    def info(self, title: str, message: str) -> None:
        self._logger.debug("notice_info", extra={"title": title})
        self._console.print(f"[bold cyan]{escape(title)}[/]: {escape(message)}")

    def error(self, title: str, message: str) -> None:
        self._logger.debug("notice_error", extra={"title": title})
        self._console.print(f"[bold red]{escape(title)}[/]: {escape(message)}")
