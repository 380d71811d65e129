"""Logging utilities for covpipe runs."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "covpipe"

# Prefix of the progress lines that mark pipeline stages in CI output.
STAGE_MARKER = "----> "


class ConsoleFormatter(logging.Formatter):
    """Console format that prints stage markers as bare progress lines.

    ``----> ran 3 test(s)`` at INFO level renders as ``[covpipe] ----> ran 3
    test(s)``; every other record carries its level name.
    """

    def __init__(self) -> None:
        super().__init__("[covpipe] %(levelname)s %(message)s")
        self._marker_style = logging.Formatter("[covpipe] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.INFO and str(record.msg).startswith(STAGE_MARKER):
            return self._marker_style.format(record)
        return super().format(record)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the covpipe hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure console output and an optional timestamped file sink.

    ``verbose`` switches to DEBUG, which also echoes every command executed.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter())
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["STAGE_MARKER", "ConsoleFormatter", "configure_logging", "get_logger"]
