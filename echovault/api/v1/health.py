"""
Health endpoint for the EchoVault scheduler.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...services.engine import stats


logger = logging.getLogger("health")
router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(db: Session = Depends(get_db)) -> dict:
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Health DB check failed: %s", exc)
        db_ok = False
    body = {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
    }
    if db_ok:
        body["queue"] = stats(db)
    return body
