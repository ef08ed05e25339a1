"""Logging helpers for nodebuild."""
from __future__ import annotations

import logging
from typing import Iterable, Literal

from rich.logging import RichHandler


class CapturedLog:
    """Append-only record of everything a build printed, kept for failure diagnosis."""

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._sealed = False

    def append(self, line: str) -> None:
        if self._sealed:
            raise RuntimeError("Captured log is sealed and can no longer be written")
        self._lines.append(line.rstrip("\n"))

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def lines(self) -> tuple[str, ...]:
        return tuple(self._lines)

    def text(self) -> str:
        return "\n".join(self._lines)

    def __len__(self) -> int:
        return len(self._lines)


class CapturedLogHandler(logging.Handler):
    """Mirror log records into a :class:`CapturedLog` while it is open."""

    def __init__(self, captured: CapturedLog, level: int = logging.DEBUG) -> None:
        super().__init__(level=level)
        self.captured = captured
        self.previous_level: int | None = None
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        if self.captured.sealed:
            return
        try:
            self.captured.extend(self.format(record).splitlines() or [""])
        except Exception:  # noqa: BLE001
            self.handleError(record)


def configure_logging(level: str | Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO") -> None:
    """Configure root logging with Rich formatting."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(level=numeric, rich_tracebacks=True, markup=False, show_path=False)],
        force=True,
    )


def attach_capture(captured: CapturedLog, logger_name: str = "nodebuild") -> CapturedLogHandler:
    """Capture every record below ``logger_name``, including DEBUG, for the diagnoser."""
    handler = CapturedLogHandler(captured)
    logger = logging.getLogger(logger_name)
    handler.previous_level = logger.level
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > logging.DEBUG:
        logger.setLevel(logging.DEBUG)
    return handler


def detach_capture(handler: CapturedLogHandler, logger_name: str = "nodebuild") -> None:
    logger = logging.getLogger(logger_name)
    logger.removeHandler(handler)
    if handler.previous_level is not None:
        logger.setLevel(handler.previous_level)
