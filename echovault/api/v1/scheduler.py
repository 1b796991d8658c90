"""
Scheduler endpoints: run a processing cycle, regenerate, reclaim, stats.

These are what an external cron hits; the worker process calls the same
service functions directly.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import EngineError
from ...core.pagination import paginate
from ...models.schedule_entry import ENTRY_KINDS, ENTRY_STATUSES, ScheduleEntry
from ...schemas.scheduler import FixStuckOut, ProcessIn, ProcessOut, RegenerateOut, ScheduleEntryOut, StatsOut
from ...services.channels import ChannelSet
from ...services.engine import process, stats
from ...services.reclaimer import fix_stuck
from ...services.schedule_generator import regenerate_schedule
from .common import get_channels, to_http_error


router = APIRouter(prefix="/api/v1/scheduler", tags=["scheduler"])


@router.post("/process", response_model=ProcessOut)
def run_process(
    payload: Optional[ProcessIn] = Body(None),
    db: Session = Depends(get_db),
    channels: Optional[ChannelSet] = Depends(get_channels),
) -> dict:
    payload = payload or ProcessIn()
    return process(
        db,
        channels=channels,
        message_id=payload.message_id,
        force_send=payload.force_send,
        debug=payload.debug,
        limit=payload.limit,
    )


@router.post("/regenerate/{message_id}", response_model=RegenerateOut)
def regenerate(message_id: str, db: Session = Depends(get_db)) -> dict:
    try:
        return regenerate_schedule(db, message_id)
    except EngineError as exc:
        raise to_http_error(exc) from exc


@router.post("/fix-stuck", response_model=FixStuckOut)
def run_fix_stuck(db: Session = Depends(get_db)) -> dict:
    return fix_stuck(db)


@router.get("/stats", response_model=StatsOut)
def get_stats(db: Session = Depends(get_db)) -> dict:
    return stats(db)


@router.get("/entries", response_model=list[ScheduleEntryOut])
def list_entries(
    response: Response,
    message_id: str | None = Query(None),
    status: str | None = Query(None),
    kind: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    db: Session = Depends(get_db),
) -> list[ScheduleEntry]:
    if status and status not in ENTRY_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    if kind and kind not in ENTRY_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown entry kind: {kind}")
    query = db.query(ScheduleEntry)
    if message_id:
        query = query.filter(ScheduleEntry.message_id == message_id)
    if status:
        query = query.filter(ScheduleEntry.status == status)
    if kind:
        query = query.filter(ScheduleEntry.entry_kind == kind)
    return paginate(query, order_by=ScheduleEntry.scheduled_at.asc(), page=page, page_size=page_size, response=response)
