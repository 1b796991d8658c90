"""
Shared error types and error-handling helpers for the scheduling engine.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

T = TypeVar("T")


class EngineError(RuntimeError):
    """Base class for errors raised by the scheduling engine."""

    tag = "engine_error"
    retryable = True


class DataIntegrityError(EngineError):
    """A claimed entry references a condition, message or owner that no longer exists."""

    tag = "data_integrity"
    retryable = False


class ConfigurationError(EngineError):
    """The condition is configured in a way that makes delivery impossible."""

    tag = "configuration"
    retryable = False


class NoRecipientsError(ConfigurationError):
    tag = "no_recipients"


class ChannelError(EngineError):
    """A channel send failed or timed out."""

    tag = "channel_error"


class ConditionNotFound(EngineError):
    tag = "condition_not_found"
    retryable = False


class InvalidTransition(EngineError):
    tag = "invalid_transition"
    retryable = False


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def error_tag(exc: BaseException) -> str:
    if isinstance(exc, EngineError):
        return exc.tag
    return type(exc).__name__


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, EngineError):
        return exc.retryable
    return True


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """
    Execute fn with logging on failure. Returns fallback if provided.
    """
    try:
        return fn()
    except Exception as exc:
        if logger:
            log_exception(logger, f"{name} failed", extra=context or {}, exc=exc)
        return fallback
