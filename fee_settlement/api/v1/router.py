"""
API v1 Router - Main Entry Point
Aggregates all v1 API endpoints for the fee settlement service
"""

from fastapi import APIRouter

from fee_settlement.api.v1 import operations, payments
from fee_settlement.config.settings import settings
from fee_settlement.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    responses={
        400: {"description": "Bad Request"},
        404: {"description": "Not Found"},
        409: {"description": "Conflict"},
        422: {"description": "Validation Error"},
        500: {"description": "Internal Server Error"},
        502: {"description": "Gateway Error"},
        503: {"description": "Gateway Unavailable"},
    }
)

router.include_router(payments.router)
router.include_router(operations.router)


@router.get("/health", tags=["System Health"])
def api_health_check():
    """API health check."""
    return {
        "status": "healthy",
        "version": settings.API_VERSION,
        "api_version": "v1",
        "total_routes": len(router.routes),
    }
