"""
Scheduler worker process entrypoint.

Runs the reclaim -> claim -> dispatch cycle on a fixed interval:

    python -m echovault.worker
"""

from __future__ import annotations

import logging
import os
import time

from .core.config import settings
from .core.db import SessionContext
from .core.logging_config import setup_logging
from .services.channels import build_channels
from .services.engine import process
from .services.panic import selection_store


logger = logging.getLogger("worker")


def run_once(db, channels) -> dict:
    result = process(db, channels=channels)
    selection_store.purge_expired()
    return result


def main() -> int:
    setup_logging()
    logger.info("Worker booted (pid=%s)", os.getpid())
    interval = int(os.getenv("WORKER_INTERVAL_SEC", str(settings.worker_interval_sec)))

    channels = build_channels()
    logger.info("Worker started interval=%ss batch=%s", interval, settings.claim_batch_size)

    try:
        while True:
            try:
                with SessionContext() as db:
                    run_once(db, channels)
                time.sleep(interval)
            except KeyboardInterrupt:
                return 0
            except Exception:
                logger.exception("Worker loop error")
                time.sleep(interval)
    finally:
        channels.close()


if __name__ == "__main__":
    raise SystemExit(main())
