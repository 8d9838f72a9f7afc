"""Centralized logging configuration for Baton."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_log_level(level: str | None = None) -> int:
    """The level from `--log-level`, else BATON_LOG_LEVEL, else WARNING.
    Unrecognised names fall back to WARNING."""

    name = (level or os.getenv("BATON_LOG_LEVEL") or "WARNING").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.WARNING


def configure_logging(level: str | None = None) -> None:
    """Configure logging for the coordinator process.

    - DEBUG: Verbose logging, including sbatch invocations and tick counts
    - INFO: Info and above, including every task transition
    - WARNING: Warning and above (default)
    - ERROR: Error and above
    """
    log_level = resolve_log_level(level)

    logging.basicConfig(level=log_level, stream=sys.stderr, format=LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers:
        handler.setLevel(log_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
