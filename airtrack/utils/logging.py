"""Process-wide logging configuration."""

import logging
import sys

from airtrack.config import settings


def setup_logging(level: str | None = None):
    """Configure the root logger once; modules log via logging.getLogger(__name__)."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Avoid duplicate handlers when uvicorn reloads the app
    if any(getattr(h, "_airtrack", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    handler._airtrack = True
    root.addHandler(handler)

    # Per-request noise from the HTTP client and scheduler
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)
