"""Package logger with optional message prefixes."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

LOGGER_NAME = "vulnstore"

_base_logger = logging.getLogger(LOGGER_NAME)
_base_logger.setLevel(logging.DEBUG)


class _LoggerState:
    """Holds the logger that package-level helpers write to."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        self.logger = logger


_state = _LoggerState(_base_logger)


class PrefixAdapter(logging.LoggerAdapter):
    """Logger adapter that puts "[prefix] " in front of every message."""

    def __init__(
        self,
        logger: logging.Logger | logging.LoggerAdapter,
        prefix: str = "",
    ) -> None:
        super().__init__(logger, {})
        self.prefix = prefix

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            msg = f"[{self.prefix}] {msg}"
        return msg, kwargs


def with_prefix(prefix: str) -> PrefixAdapter:
    """Return a logger over the current default logger that prefixes messages."""
    return PrefixAdapter(_state.logger, prefix)


def set_logger(logger: logging.Logger | logging.LoggerAdapter) -> None:
    """Replace the default logger; raise TypeError for anything that is not a logger."""
    if not isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        raise TypeError(f"expected a logger, got {type(logger).__name__}")
    _state.logger = logger


def get_logger() -> logging.Logger | logging.LoggerAdapter:
    """Return the default logger."""
    return _state.logger