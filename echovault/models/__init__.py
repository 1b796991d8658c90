"""
SQLAlchemy model base class for the EchoVault backend.

This package defines ORM models for trigger conditions, schedule entries,
the append-only delivery log and sent ledger, plus the read-only message
and profile rows owned by the app backend. All models should inherit from
the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return compiler.process(JSON(), **kw)


from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .message import Message  # noqa: E402,F401
from .profile import UserProfile  # noqa: E402,F401
from .condition import MessageCondition  # noqa: E402,F401
from .schedule_entry import ScheduleEntry  # noqa: E402,F401
from .delivery_log import DeliveryLog  # noqa: E402,F401
from .sent_record import SentRecord  # noqa: E402,F401
from .check_in import CheckIn  # noqa: E402,F401

__all__ = [
    "Base",

    # App-owned (read-only here)
    "Message",
    "UserProfile",

    # Conditions / schedule
    "MessageCondition",
    "ScheduleEntry",
    "CheckIn",

    # Audit
    "DeliveryLog",
    "SentRecord",
]
