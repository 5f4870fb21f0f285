"""Process-wide logging setup."""

import logging
import sys

from tripgen.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_initialized = False


def setup_logging(settings: Settings) -> None:
    """Attach a single stdout handler to the root logger and route uvicorn through it.

    Safe to call more than once; only the first call installs handlers.
    """
    global _initialized
    if _initialized:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        log = logging.getLogger(logger_name)
        log.handlers = [handler]
        log.propagate = False

    # The supabase/httpx stack logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _initialized = True
