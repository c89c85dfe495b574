"""Scheduled product refresh.

Each run selects a bounded batch of stale products (never refreshed first,
then least recently refreshed) and refreshes them one at a time from PA-API.
Every product gets exactly one ``refresh_jobs`` row per run which moves
pending -> running -> success | failed | skipped.

Per product:
- a blocking circuit breaker skips the product without an upstream call;
- transient upstream failures are retried with exponential backoff
  (1s, 2s, 4s before the 2nd, 3rd and 4th attempt);
- an absent item, or an item-not-accessible / invalid-parameter error, marks
  the product unavailable and still counts as a successful job;
- a breaker rejection mid-retry skips the product.

Only a failed selection (or missing configuration) aborts a run. Store
failures on a single product are logged and counted as failures.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from product_refresh.config import Settings, get_settings
from product_refresh.errors import (
    AppError,
    ConfigurationError,
    ErrorCode,
    ErrorKind,
    RefreshInProgressError,
    StoreError,
    is_retryable,
)
from product_refresh.infrastructure.database.models import ProductStatus, RefreshJobStatus
from product_refresh.infrastructure.database.repository import RefreshStore, StaleProduct
from product_refresh.infrastructure.paapi.models import ItemAbsent, ItemLookup
from product_refresh.infrastructure.redis import CircuitStateStore, RunLock
from product_refresh.services.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from product_refresh.services.pricing import price_snapshot
from shared.constants import (
    BACKOFF_BASE_MS,
    REFRESH_BATCH_SIZE,
    REFRESH_INTERVAL_HOURS,
    REFRESH_MAX_RETRIES,
)

logger = structlog.get_logger()


class ItemLookupClient(Protocol):
    async def lookup(self, asin: str) -> ItemLookup: ...


ClientFactory = Callable[[str], ItemLookupClient]
Sleep = Callable[[float], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RefreshMetrics:
    """Run-level counters. ``processed == success + failure + skipped``."""

    processed: int = 0
    success: int = 0
    failure: int = 0
    skipped: int = 0
    duration_ms: int = 0

    def record(self, status: RefreshJobStatus) -> None:
        self.processed += 1
        if status is RefreshJobStatus.SUCCESS:
            self.success += 1
        elif status is RefreshJobStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failure += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RefreshWorker:
    """Drives one refresh run over a batch of stale products."""

    def __init__(
        self,
        store: RefreshStore,
        client_factory: ClientFactory,
        breaker: CircuitBreaker,
        batch_size: int = REFRESH_BATCH_SIZE,
        refresh_interval_hours: int = REFRESH_INTERVAL_HOURS,
        max_retries: int = REFRESH_MAX_RETRIES,
        backoff_base_ms: int = BACKOFF_BASE_MS,
        run_deadline_seconds: float | None = None,
        lock: RunLock | None = None,
        state_store: CircuitStateStore | None = None,
        sleep: Sleep = asyncio.sleep,
        now: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.client_factory = client_factory
        self.breaker = breaker
        self.batch_size = batch_size
        self.refresh_interval = timedelta(hours=refresh_interval_hours)
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.run_deadline_seconds = run_deadline_seconds
        self.lock = lock
        self.state_store = state_store
        self._sleep = sleep
        self._now = now
        self._monotonic = monotonic
        self._clients: dict[str, ItemLookupClient] = {}

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RefreshMetrics:
        """Execute one refresh pass.

        Raises:
            RefreshInProgressError: another run holds the lease
            StoreError: the stale product selection failed
            ConfigurationError: PA-API or store configuration is missing
        """
        if self.lock and not await self.lock.acquire():
            raise RefreshInProgressError(
                "A refresh run is already in progress",
                details={"lock_key": self.lock.key},
            )
        try:
            return await self._run()
        finally:
            await self._close_clients()
            if self.lock:
                await self.lock.release()

    async def _run(self) -> RefreshMetrics:
        started = self._monotonic()
        metrics = RefreshMetrics()

        if self.state_store:
            snapshot = await self.state_store.load(self.breaker.name)
            if snapshot:
                self.breaker.restore(snapshot)

        stale_before = self._now() - self.refresh_interval
        logger.info(
            "Refresh worker started",
            batch_size=self.batch_size,
            stale_before=stale_before.isoformat(),
            circuit_state=self.breaker.state.value,
        )

        try:
            products = await self.store.select_stale_products(self.batch_size, stale_before)
        except StoreError as e:
            logger.error("Failed to select products for refresh", error=e.message, details=e.details)
            raise

        logger.info("Selected products for refresh", count=len(products))

        for index, product in enumerate(products):
            if self._deadline_reached(started):
                logger.warning(
                    "Refresh run deadline reached, deferring remaining products",
                    deferred=len(products) - index,
                    deadline_seconds=self.run_deadline_seconds,
                )
                break

            try:
                status = await self.refresh_product(product)
            except StoreError as e:
                logger.error(
                    "Store error while refreshing product",
                    product_id=str(product.id),
                    asin=product.asin,
                    error=e.message,
                )
                status = RefreshJobStatus.FAILED
            metrics.record(status)

        metrics.duration_ms = int((self._monotonic() - started) * 1000)
        logger.info(
            "Refresh worker execution completed",
            **metrics.to_dict(),
            circuit_state=self.breaker.state.value,
        )
        return metrics

    def _deadline_reached(self, started: float) -> bool:
        if not self.run_deadline_seconds:
            return False
        return self._monotonic() - started >= self.run_deadline_seconds

    # ------------------------------------------------------------------
    # Per product
    # ------------------------------------------------------------------

    async def refresh_product(self, product: StaleProduct) -> RefreshJobStatus:
        """Refresh one product and record its job. Returns the terminal job status."""
        job_id = await self.store.create_job(product.id, scheduled_at=self._now())
        log = logger.bind(product_id=str(product.id), asin=product.asin, job_id=str(job_id))

        try:
            await self.store.update_job(
                job_id, status=RefreshJobStatus.RUNNING.value, started_at=self._now()
            )

            if self.breaker.is_blocking():
                log.warning(
                    "Circuit breaker is OPEN, skipping product refresh",
                    retry_after_ms=self.breaker.retry_after_ms(),
                )
                await self._finish_job(job_id, RefreshJobStatus.SKIPPED, retry_count=0)
                return RefreshJobStatus.SKIPPED

            return await self._refresh_with_retries(product, job_id, log)
        except (StoreError, ConfigurationError) as e:
            await self._fail_job_after_error(job_id, e, log)
            raise

    async def _refresh_with_retries(
        self, product: StaleProduct, job_id: uuid.UUID, log: structlog.BoundLogger
    ) -> RefreshJobStatus:
        try:
            client = self._client_for(product.marketplace_code)
        except ConfigurationError:
            raise
        except AppError as e:
            log.error("No PA-API client for product marketplace", error_code=e.code_value)
            await self._finish_job(job_id, RefreshJobStatus.FAILED, retry_count=0, error=e)
            return RefreshJobStatus.FAILED

        retries = 0
        try:
            async for attempt in self._retrying(log):
                with attempt:
                    retries = attempt.retry_state.attempt_number - 1
                    result = await client.lookup(product.asin)
        except CircuitOpenError as e:
            log.warning(
                "Circuit breaker opened during retry",
                retry_count=retries,
                retry_after_ms=e.retry_after_ms,
            )
            await self._finish_job(job_id, RefreshJobStatus.SKIPPED, retry_count=retries)
            return RefreshJobStatus.SKIPPED
        except Exception as e:
            if isinstance(e, AppError) and e.kind is ErrorKind.UPSTREAM_ITEM:
                log.warning(
                    "Product not accessible or invalid ASIN",
                    error_code=e.code_value,
                    error=e.message,
                )
                await self._mark_unavailable(product)
                await self._finish_job(job_id, RefreshJobStatus.SUCCESS, retry_count=retries)
                return RefreshJobStatus.SUCCESS

            log.error(
                "Product refresh failed after retries",
                retry_count=retries,
                error_code=_code_of(e),
                error=str(e),
            )
            await self._finish_job(job_id, RefreshJobStatus.FAILED, retry_count=retries, error=e)
            return RefreshJobStatus.FAILED

        if isinstance(result, ItemAbsent):
            log.warning("Product not found in PA-API response")
            await self._mark_unavailable(product)
        else:
            await self.store.update_product(
                product.id, **price_snapshot(result), last_refresh_at=self._now()
            )
            log.info("Product refresh successful", retry_count=retries)
        await self._finish_job(job_id, RefreshJobStatus.SUCCESS, retry_count=retries)
        return RefreshJobStatus.SUCCESS

    def _retrying(self, log: structlog.BoundLogger) -> AsyncRetrying:
        """Lookup attempts: 1 + max_retries, waiting 1s, 2s, 4s ... between them."""

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            log.warning(
                "PA-API call failed, will retry",
                attempt=retry_state.attempt_number,
                max_retries=self.max_retries,
                delay_ms=int(retry_state.next_action.sleep * 1000),
                error_code=_code_of(error),
                error=str(error),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_base_ms / 1000),
            retry=retry_if_exception(_should_retry),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    def _client_for(self, marketplace_code: str) -> ItemLookupClient:
        client = self._clients.get(marketplace_code)
        if client is None:
            client = self.client_factory(marketplace_code)
            self._clients[marketplace_code] = client
        return client

    async def _close_clients(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        self._clients.clear()

    async def _mark_unavailable(self, product: StaleProduct) -> None:
        await self.store.update_product(
            product.id,
            status=ProductStatus.UNAVAILABLE.value,
            last_available_at=product.last_refresh_at,
            last_refresh_at=self._now(),
        )

    async def _finish_job(
        self,
        job_id: uuid.UUID,
        status: RefreshJobStatus,
        retry_count: int,
        error: Exception | None = None,
    ) -> None:
        fields = {
            "status": status.value,
            "completed_at": self._now(),
            "retry_count": retry_count,
            "circuit_breaker_state": (
                CircuitState.OPEN.job_value
                if status is RefreshJobStatus.SKIPPED
                else self.breaker.state.job_value
            ),
        }
        if error is not None:
            fields["error_code"] = _code_of(error)
            fields["error_message"] = getattr(error, "message", None) or str(error) or "Unknown error"
        await self.store.update_job(job_id, **fields)

    async def _fail_job_after_error(
        self, job_id: uuid.UUID, error: AppError, log: structlog.BoundLogger
    ) -> None:
        try:
            await self.store.update_job(
                job_id,
                status=RefreshJobStatus.FAILED.value,
                completed_at=self._now(),
                error_code=error.code_value,
                error_message=error.message,
                circuit_breaker_state=self.breaker.state.job_value,
            )
        except StoreError as e:
            log.error("Could not record job failure", error=e.message)


def _should_retry(error: BaseException) -> bool:
    if isinstance(error, AppError):
        return is_retryable(error.code)
    return isinstance(error, Exception)


def _code_of(error: Exception | None) -> str:
    if isinstance(error, AppError):
        return error.code_value
    return ErrorCode.UNKNOWN_ERROR.value


def build_refresh_worker(
    store: RefreshStore,
    client_factory: ClientFactory,
    breaker: CircuitBreaker,
    settings: Settings | None = None,
    lock: RunLock | None = None,
    state_store: CircuitStateStore | None = None,
) -> RefreshWorker:
    """Worker configured from settings."""
    settings = settings or get_settings()
    return RefreshWorker(
        store=store,
        client_factory=client_factory,
        breaker=breaker,
        batch_size=settings.refresh_batch_size,
        refresh_interval_hours=settings.refresh_interval_hours,
        max_retries=settings.refresh_max_retries,
        backoff_base_ms=settings.refresh_backoff_base_ms,
        run_deadline_seconds=settings.refresh_run_deadline_seconds,
        lock=lock,
        state_store=state_store,
    )
