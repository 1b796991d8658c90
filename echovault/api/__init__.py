"""
API package for the EchoVault scheduler.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter, Depends

from .v1.scheduler import router as scheduler_router
from .v1.conditions import router as conditions_router
from .v1.check_in import router as check_in_router
from .v1.panic import router as panic_router
from .v1.deliveries import router as deliveries_router
from .v1.whatsapp_webhook import router as whatsapp_webhook_router
from .v1.health import router as health_router
from ..core.auth import get_service_context

api_router = APIRouter()
protected = [Depends(get_service_context)]
api_router.include_router(scheduler_router, dependencies=protected)
api_router.include_router(conditions_router, dependencies=protected)
api_router.include_router(check_in_router, dependencies=protected)
api_router.include_router(panic_router, dependencies=protected)
api_router.include_router(deliveries_router, dependencies=protected)
api_router.include_router(whatsapp_webhook_router)
api_router.include_router(health_router)
