"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from product_refresh import __version__
from product_refresh.config import Settings, get_settings
from product_refresh.infrastructure.database.connection import get_db_session
from product_refresh.infrastructure.paapi.client import get_paapi_circuit_breaker
from product_refresh.infrastructure.redis import CacheService, get_redis_client
from product_refresh.services.circuit_breaker import CircuitState

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    circuit_breaker: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Basic health check endpoint.

    Reports the service version and the PA-API circuit breaker, which is
    "degraded" while the breaker is not closed.
    """
    breaker = get_paapi_circuit_breaker()
    snapshot = breaker.snapshot()

    return HealthResponse(
        status="healthy" if snapshot.state is CircuitState.CLOSED else "degraded",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        circuit_breaker={
            **snapshot.to_dict(),
            "retry_after_ms": int(breaker.retry_after_ms()) if breaker.is_blocking() else 0,
            "metrics": breaker.metrics().to_dict(),
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(settings: Settings = Depends(get_settings)) -> ReadinessResponse:
    """
    Readiness check endpoint.

    The store and PA-API credentials are required; Redis is reported but
    optional since locks and shared breaker state degrade without it.
    """
    checks: dict[str, bool] = {
        "paapi_credentials": bool(
            settings.paapi_access_key and settings.paapi_secret_key and settings.paapi_partner_tag
        ),
    }

    if settings.store_configured:
        try:
            async with get_db_session() as session:
                await session.execute(text("SELECT 1"))
            checks["postgres"] = True
        except Exception:
            checks["postgres"] = False
    else:
        checks["postgres"] = False

    checks["redis"] = await CacheService(await get_redis_client()).health_check()

    return ReadinessResponse(
        ready=checks["postgres"] and checks["paapi_credentials"],
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Returns 200 while the process is serving requests."""
    return {"status": "alive"}
