"""
Health check endpoint
"""

import time
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.services import Services, get_db, get_services
from core.utils import utcnow

logger = get_logger(__name__)
router = APIRouter()


def check_database_health(db: Session) -> dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session dependency

    Returns:
        Dict containing database health status
    """
    try:
        start_time = time.time()
        result = db.execute(text("SELECT 1"))
        result.fetchone()
        latency_ms = (time.time() - start_time) * 1000
        return {"status": "connected", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return {"status": "error", "error": str(e)}


@router.get("/health")
def health_check(services: Services = Depends(get_services), db: Session = Depends(get_db)) -> JSONResponse:
    """
    Health check for external monitoring.

    Returns:
        JSONResponse: Health status with 200 (healthy) or 503 (unhealthy)
    """
    settings = services.settings
    health_data = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "database": check_database_health(db),
            "stripe": {"configured": bool(services.stripe_client.config.api_key), "test_mode": services.stripe_client.is_test_mode()},
            "sendgrid": {"configured": bool(services.mail_client.api_key), "sandbox": services.mail_client.sandbox_mode},
        },
    }

    is_healthy = health_data["checks"]["database"]["status"] == "connected"
    if not is_healthy:
        health_data["status"] = "unhealthy"

    return JSONResponse(status_code=200 if is_healthy else 503, content=health_data)
