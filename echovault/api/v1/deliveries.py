"""
Delivery log listing.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.pagination import paginate
from ...models.delivery_log import DeliveryLog
from ...schemas.scheduler import DeliveryLogOut


router = APIRouter(prefix="/api/v1/deliveries", tags=["deliveries"])


@router.get("", response_model=list[DeliveryLogOut])
def list_deliveries(
    response: Response,
    message_id: str | None = Query(None),
    entry_id: str | None = Query(None),
    status: str | None = Query(None),
    channel: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1),
    db: Session = Depends(get_db),
) -> list[DeliveryLog]:
    query = db.query(DeliveryLog)
    if message_id:
        query = query.filter(DeliveryLog.message_id == message_id)
    if entry_id:
        query = query.filter(DeliveryLog.entry_id == entry_id)
    if status:
        query = query.filter(DeliveryLog.status == status.lower())
    if channel:
        query = query.filter(DeliveryLog.channel == channel.upper())
    return paginate(query, order_by=DeliveryLog.created_at.desc(), page=page, page_size=page_size, response=response)
