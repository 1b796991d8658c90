"""
Shared dependencies for the v1 routers.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from ...core.errors import ConditionNotFound, ConfigurationError, EngineError, InvalidTransition
from ...services.channels import ChannelSet


def get_channels(request: Request) -> Optional[ChannelSet]:
    """Channels built once at startup; None makes each call build its own."""
    return getattr(request.app.state, "channels", None)


def to_http_error(exc: EngineError) -> HTTPException:
    if isinstance(exc, ConditionNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
