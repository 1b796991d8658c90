"""
Entry point for the EchoVault scheduler API.

This script creates the FastAPI application and includes all API routers.
Run with:

    uvicorn echovault.main:app --reload

"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from .core.db import engine
from .models import Base
from .scripts.run_migrations import run_migrations_to_head
from .services.channels import build_channels

from .api import api_router
from .core.config import settings, get_app_env
from .core.errors import log_exception
from .core.logging_config import setup_logging


def create_app() -> FastAPI:
    app = FastAPI(title="EchoVault Scheduler", version="0.1.0")
    app.include_router(api_router)
    app.state.channels = None

    @app.on_event("startup")
    def _init() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if settings.auto_create_db:
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if os.getenv("AUTO_RUN_MIGRATIONS", "false").lower() in {"1", "true", "yes"}:
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        app.state.channels = build_channels()
        logger.info("EchoVault scheduler API started env=%s", env)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        channels = getattr(app.state, "channels", None)
        if channels is not None:
            channels.close()
            app.state.channels = None

    return app


setup_logging()
app = create_app()
