"""Logging setup for the rag.* logger hierarchy."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(log_level: str = "INFO") -> None:
    """Attach a single stream handler to the `rag` logger."""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger("rag")
    root.setLevel(numeric_level)

    if not any(getattr(h, "_rag_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._rag_handler = True
        root.addHandler(handler)
