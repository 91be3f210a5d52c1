"""Logging configuration for captcha-bridge.

Sets up a dual-handler logging pipeline on the root logger:

1. **Console** -- plain :class:`logging.StreamHandler` on stdout.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/captcha_bridge.log`` with gzip rotation (10 MiB per file,
   5 backups).

Both handlers carry a :class:`SecretRedactingFilter` so the solving
service key never reaches a log line, even when a request payload is
logged at debug level.

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG", secrets=[settings.capmonster_api_key])
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
REDACTED = "***"


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, 'rb') as f_in:
            with gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SecretRedactingFilter(logging.Filter):
    """Replace configured secret strings in log records with ``***``.

    The record message is rendered once with its arguments, scrubbed, and
    stored back with empty ``args`` so formatters do not re-interpolate.
    """

    def __init__(self, secrets: Iterable[Optional[str]] = ()) -> None:
        super().__init__()
        self.secrets: List[str] = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = os.path.join("logs", "captcha_bridge.log"),
    secrets: Iterable[Optional[str]] = (),
) -> None:
    """Configure the root logger with console and file handlers.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
            Unknown names fall back to ``INFO``.
        log_file: Path of the rotating log file, or ``None`` to log to
            the console only.
        secrets: Strings to mask in every record.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    redactor = SecretRedactingFilter(secrets)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            CompressedRotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            )
        )
    for handler in handlers:
        handler.addFilter(redactor)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
