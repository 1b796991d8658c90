"""
Logging setup shared by the API process and the worker.

Twilio's HTTP client logs full request bodies at INFO, which would put
message text and phone numbers in the logs; it is held at WARNING.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
QUIET_LOGGERS = ("twilio.http_client", "urllib3.connectionpool")


def _level_from_env(default: int) -> int:
    raw = (os.getenv("LOG_LEVEL") or "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    ``LOG_LEVEL`` overrides ``level``; ``log_file`` (or ``LOG_FILE``) adds a
    file handler next to stderr.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=_level_from_env(level), format=LOG_FORMAT, handlers=handlers)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
