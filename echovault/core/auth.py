"""
Lightweight bearer-token auth for the scheduler and lifecycle endpoints.

The engine is invoked by an external cron/scheduler and by the app
backend, both of which authenticate with a shared service token.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException


@dataclass
class ServiceContext:
    caller: str
    user_id: Optional[str] = None


def _auth_disabled() -> bool:
    return os.getenv("EV_AUTH_DISABLED", "true").lower() in {"1", "true", "yes"}


def _expected_token() -> str:
    token = os.getenv("EV_AUTH_TOKEN")
    if token:
        return token
    env = (os.getenv("EV_ENV") or os.getenv("APP_ENV") or "dev").strip().lower()
    if env == "prod":
        return ""
    return "demo-token"


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def get_service_context(
    authorization: Optional[str] = Header(None),
    x_caller: Optional[str] = Header(None, alias="X-Caller"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> ServiceContext:
    if _auth_disabled():
        return ServiceContext(caller=x_caller or "anonymous", user_id=x_user_id)
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    expected = _expected_token()
    if not expected or not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Invalid token")
    return ServiceContext(caller=x_caller or "service", user_id=x_user_id)
