"""Process-wide logging setup and pipe-delimited field formatting."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from allocation_engine.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once; later calls only adjust the level."""
    global _configured
    resolved_level = (level or get_settings().log_level).upper()
    if _configured:
        logging.getLogger().setLevel(resolved_level)
        return

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
    _configured = True


def log_fields(**fields: Any) -> str:
    """Render keyword fields as `key=value` pairs in the log line convention."""
    parts = []
    for key, value in fields.items():
        if isinstance(value, float):
            value = f"{value:.2f}"
        elif isinstance(value, (list, tuple, set, frozenset)):
            value = ",".join(str(item) for item in value)
        parts.append(f"{key}={value}")
    return " | ".join(parts)


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
