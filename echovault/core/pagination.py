"""Page-size caps and header-carrying pagination for list endpoints."""

from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import Response
from sqlalchemy.orm import Query


DEFAULT_MAX_PAGE_SIZE = 200


def max_page_size() -> int:
    try:
        value = int(os.getenv("API_MAX_PAGE_SIZE", str(DEFAULT_MAX_PAGE_SIZE)))
    except ValueError:
        return DEFAULT_MAX_PAGE_SIZE
    return value if value >= 1 else DEFAULT_MAX_PAGE_SIZE


def clamp_page_size(page_size: int) -> int:
    return max(1, min(page_size, max_page_size()))


def paginate(
    query: Query,
    *,
    order_by: Any,
    page: int,
    page_size: int,
    response: Optional[Response] = None,
) -> list:
    """Return one page of ``query`` and report totals in ``X-Total-Count`` / ``X-Page`` / ``X-Page-Size``."""
    page_size = clamp_page_size(page_size)
    total = query.count()
    items = query.order_by(order_by).offset((page - 1) * page_size).limit(page_size).all()
    if response is not None:
        response.headers["X-Total-Count"] = str(total)
        response.headers["X-Page"] = str(page)
        response.headers["X-Page-Size"] = str(page_size)
    return items
