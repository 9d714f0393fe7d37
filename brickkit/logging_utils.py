"""Context-aware logging on top of the stdlib `logging` module."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from typing import Any

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"

_CONTEXT_ORDER = ("mod_id", "mod_component_id", "deployment_id", "brick_id", "brick_version", "label")


class ContextLogger(logging.LoggerAdapter):
    """Logger that carries a message context (mod, component, brick, ...).

    The context is attached to every record as ``record.brickkit_context`` and
    summarized as a suffix on the message.
    """

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any] | None = None):
        super().__init__(logger, {})
        self._context: dict[str, Any] = {k: v for k, v in (context or {}).items() if v is not None}

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def child_logger(self, context: Mapping[str, Any] | None = None, **extra: Any) -> "ContextLogger":
        merged = dict(self._context)
        for key, value in {**(context or {}), **extra}.items():
            if value is not None:
                merged[key] = value
        return ContextLogger(self.logger, merged)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["brickkit_context"] = dict(self._context)
        kwargs["extra"] = extra

        tokens = [f"{key}={self._context[key]}" for key in _CONTEXT_ORDER if key in self._context]
        if tokens:
            suffix = ", ".join(tokens).replace("%", "%%")
            msg = f"{msg} ({suffix})"
        return msg, kwargs


def get_context_logger(name: str = "brickkit", context: Mapping[str, Any] | None = None) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), context)


def setup_operational_logger(
    name: str = "brickkit",
    *,
    level: int | str = logging.INFO,
    log_dir: str | None = None,
    run_id: str | None = None,
) -> tuple[logging.Logger, str | None]:
    """
    Configure a logger that writes to stderr and, optionally, to a UTF-8 file.
    Returns the logger and the log file path (None when no log_dir is given).
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    log_file: str | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{run_id or 'brickkit'}_oplog.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.debug("Operational log file: %s", log_file)
    return logger, log_file
