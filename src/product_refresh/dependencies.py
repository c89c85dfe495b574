"""Builders for the refresh worker and import service.

Used as FastAPI dependencies and by the Celery task.
"""

from functools import partial

from fastapi import Depends

from product_refresh.config import Settings, get_settings
from product_refresh.errors import ConfigurationError
from product_refresh.infrastructure.database.connection import get_session_factory
from product_refresh.infrastructure.database.repository import SqlRefreshStore
from product_refresh.infrastructure.paapi.client import (
    create_paapi_client,
    get_paapi_circuit_breaker,
)
from product_refresh.infrastructure.redis import (
    CacheService,
    CircuitStateStore,
    RunLock,
    get_redis_client,
)
from product_refresh.services.circuit_breaker import CircuitBreaker, CircuitSnapshot
from product_refresh.services.product_import import ProductImportService
from product_refresh.services.refresh_worker import RefreshWorker, build_refresh_worker

# Breakers already publishing their state to Redis
_synced_breakers: set[str] = set()


def require_store(settings: Settings) -> None:
    if not settings.store_configured:
        raise ConfigurationError(
            "Database configuration error",
            details={"error": "Missing DATABASE_URL"},
        )


def require_paapi_credentials(settings: Settings) -> None:
    missing = [
        name
        for name in ("paapi_access_key", "paapi_secret_key", "paapi_partner_tag")
        if not getattr(settings, name)
    ]
    if missing:
        raise ConfigurationError(
            "PA-API configuration error",
            details={"error": "Missing PA-API credentials", "missing": missing},
        )


async def publish_circuit_state(snapshot: CircuitSnapshot) -> None:
    """Breaker listener writing each outcome to Redis. Resolves the client on every call."""
    state_store = CircuitStateStore(CacheService(await get_redis_client()))
    await state_store.save(snapshot)


async def shared_circuit_state(
    settings: Settings, breaker: CircuitBreaker
) -> CircuitStateStore | None:
    """Redis-backed breaker state when configured, registering the publisher once."""
    if settings.circuit_state_backend != "redis":
        return None
    if breaker.name not in _synced_breakers:
        breaker.add_listener(publish_circuit_state)
        _synced_breakers.add(breaker.name)
    return CircuitStateStore(CacheService(await get_redis_client()))


async def create_refresh_worker(settings: Settings | None = None) -> RefreshWorker:
    settings = settings or get_settings()
    require_store(settings)
    require_paapi_credentials(settings)

    breaker = get_paapi_circuit_breaker()
    lock = RunLock(await get_redis_client(), ttl_seconds=settings.refresh_lock_ttl_seconds)
    return build_refresh_worker(
        store=SqlRefreshStore(get_session_factory()),
        client_factory=partial(_client_for, settings),
        breaker=breaker,
        settings=settings,
        lock=lock,
        state_store=await shared_circuit_state(settings, breaker),
    )


def create_import_service(
    settings: Settings | None = None, with_store: bool = True
) -> ProductImportService:
    settings = settings or get_settings()
    if with_store:
        require_store(settings)
    require_paapi_credentials(settings)
    return ProductImportService(
        store=SqlRefreshStore(get_session_factory()) if with_store else None,
        client_factory=partial(_client_for, settings),
    )


def _client_for(settings: Settings, marketplace: str):
    return create_paapi_client(settings, marketplace)


async def get_refresh_worker(settings: Settings = Depends(get_settings)) -> RefreshWorker:
    """FastAPI dependency for the refresh trigger."""
    return await create_refresh_worker(settings)


def get_import_service(settings: Settings = Depends(get_settings)) -> ProductImportService:
    """FastAPI dependency for product import."""
    return create_import_service(settings)


def get_search_service(settings: Settings = Depends(get_settings)) -> ProductImportService:
    """FastAPI dependency for keyword search, which needs no store."""
    return create_import_service(settings, with_store=False)
