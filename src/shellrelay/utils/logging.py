"""Logging setup for shellrelay.

All package modules log under the ``shellrelay`` logger namespace; this
module attaches the handlers for it once per process.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from shellrelay.config.settings import LoggingConfig

# Libraries that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Configure the ``shellrelay`` logger from ``config``.

    Handlers installed by an earlier call are replaced, so calling this
    again (for example after ``--verbose``) never duplicates lines.
    Output goes to stderr, leaving stdout to the CLI's tool output.

    Args:
        config: Logging configuration. If None, uses defaults
                (INFO level, stderr output).

    Returns:
        The configured package logger.
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)
    package_logger = logging.getLogger("shellrelay")
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    package_logger.debug("Logging initialized at %s level", config.level)
    return package_logger
