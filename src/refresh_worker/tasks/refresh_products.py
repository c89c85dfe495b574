"""Scheduled product refresh task."""

import asyncio

import structlog
from celery import shared_task

from product_refresh.dependencies import create_refresh_worker
from product_refresh.errors import RefreshInProgressError, StoreError
from product_refresh.infrastructure.database.connection import dispose_engine
from product_refresh.infrastructure.redis import close_redis
from product_refresh.logging_config import (
    bind_correlation_id,
    clear_log_context,
    generate_correlation_id,
)

logger = structlog.get_logger()


async def run_refresh() -> dict:
    """Run one refresh pass and release pooled connections afterwards.

    Every task invocation runs on a fresh event loop, so the Redis client
    and the engine pool are torn down before returning.
    """
    try:
        worker = await create_refresh_worker()
        metrics = await worker.run()
        return metrics.to_dict()
    finally:
        await close_redis()
        await dispose_engine()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def refresh_stale_products(self) -> dict:
    """
    Refresh the stalest batch of products from PA-API.

    Returns:
        dict: Run metrics (processed, success, failure, skipped, duration_ms),
        or ``{"skipped_run": True}`` when another run holds the lock
    """
    correlation_id = generate_correlation_id()
    clear_log_context()
    bind_correlation_id(correlation_id)
    logger.info("Starting scheduled product refresh", task_id=self.request.id)

    try:
        metrics = asyncio.run(run_refresh())
    except RefreshInProgressError:
        logger.info("Previous refresh still running, skipping this run")
        return {"skipped_run": True, "correlation_id": correlation_id}
    except StoreError as e:
        logger.error("Refresh run aborted by store error", error=e.message)
        raise self.retry(exc=e)
    finally:
        clear_log_context()

    return {**metrics, "correlation_id": correlation_id}
