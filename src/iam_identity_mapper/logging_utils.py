"""Logging helpers for the identity mapper."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Iterable

from iam_identity_mapper.config import load_settings
from iam_identity_mapper.utils.masking import ScrubbingFilter

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(scrubbed_accounts: Iterable[str] = ()) -> None:
    """Configure logging; every handler scrubs ARNs of scrubbed accounts.

    ``scrubbed_accounts`` adds to the accounts named in the settings.
    """
    global _logging_configured

    settings = load_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    scrub_filter = ScrubbingFilter(
        [*settings.mapper.scrubbed_accounts, *scrubbed_accounts]
    )

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    handlers.append(stream_handler)

    if settings.logging.file:
        try:
            Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.logging.file)
            file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.logging.file, exc)

    for handler in handlers:
        handler.addFilter(scrub_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
