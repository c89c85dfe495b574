"""Circuit breaker protecting a shared upstream dependency.

States:
- CLOSED: calls pass through; consecutive failures are counted.
- OPEN: calls are rejected with :class:`CircuitOpenError` until the cooldown
  has elapsed since the last failure.
- HALF_OPEN: a single probe call is let through. Success closes the circuit,
  failure re-opens it and restarts the cooldown.

The OPEN -> HALF_OPEN transition is evaluated lazily on the next call
attempt; there is no background timer. State transitions are serialized with
an asyncio lock so concurrent callers never both become the probe.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from product_refresh.errors import AppError, ErrorCode
from shared.constants import CIRCUIT_COOLDOWN_MS, CIRCUIT_FAILURE_THRESHOLD

logger = structlog.get_logger()

T = TypeVar("T")

Clock = Callable[[], float]
StateListener = Callable[["CircuitSnapshot"], Awaitable[None]]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    @property
    def job_value(self) -> str:
        """Value stored in ``refresh_jobs.circuit_breaker_state``."""
        return self.value.lower().replace("_", "-")


class CircuitOpenError(AppError):
    """Raised instead of invoking the operation while the circuit is open."""

    code = ErrorCode.CIRCUIT_BREAKER_OPEN

    def __init__(self, message: str, retry_after_ms: float):
        self.retry_after_ms = max(0.0, float(retry_after_ms))
        retry_after_seconds = int(-(-self.retry_after_ms // 1000))
        super().__init__(
            message,
            details={
                "retry_after_ms": int(self.retry_after_ms),
                "reason": "Circuit breaker is open",
            },
            headers={"Retry-After": str(retry_after_seconds)},
        )


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of the breaker's resettable state."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CircuitSnapshot":
        return cls(
            name=data["name"],
            state=CircuitState(data["state"]),
            failure_count=int(data.get("failure_count", 0)),
            success_count=int(data.get("success_count", 0)),
            last_failure_time=data.get("last_failure_time"),
        )


@dataclass
class CircuitMetrics:
    """Monotonic counters for the process lifetime."""

    total_successes: int = 0
    total_failures: int = 0
    total_requests: int = 0
    circuit_opens: int = 0
    circuit_closes: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _iso(epoch_ms: float | None) -> str | None:
    if epoch_ms is None:
        return None
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


class CircuitBreaker:
    """Three-state circuit breaker wrapping async operations."""

    def __init__(
        self,
        name: str = "circuit-breaker",
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        cooldown_ms: float = CIRCUIT_COOLDOWN_MS,
        clock: Clock = time.time,
    ):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.cooldown_ms = max(0.0, float(cooldown_ms))
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False
        self._metrics = CircuitMetrics()
        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

        logger.info(
            "Circuit breaker initialized",
            name=self.name,
            failure_threshold=self.failure_threshold,
            cooldown_ms=self.cooldown_ms,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return self._state

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_time=self._last_failure_time,
        )

    def metrics(self) -> CircuitMetrics:
        return CircuitMetrics(**self._metrics.to_dict())

    def is_blocking(self) -> bool:
        """True if a call made now would be rejected without being attempted."""
        if self._state is CircuitState.OPEN:
            return not self._cooldown_elapsed()
        return self._state is CircuitState.HALF_OPEN and self._probe_in_flight

    def retry_after_ms(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        elapsed = self._now_ms() - self._last_failure_time
        return max(0.0, self.cooldown_ms - elapsed)

    def add_listener(self, listener: StateListener) -> None:
        """Register a coroutine called with a snapshot after every recorded outcome."""
        self._listeners.append(listener)

    def restore(self, snapshot: CircuitSnapshot) -> None:
        """Adopt state persisted by another process."""
        if snapshot.state is not self._state:
            logger.info(
                "Circuit breaker state restored",
                name=self.name,
                previous_state=self._state.value,
                new_state=snapshot.state.value,
                failure_count=snapshot.failure_count,
                last_failure_time=_iso(snapshot.last_failure_time),
            )
        self._state = snapshot.state
        self._failure_count = snapshot.failure_count
        self._success_count = snapshot.success_count
        self._last_failure_time = snapshot.last_failure_time
        self._probe_in_flight = False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under breaker protection.

        Raises:
            CircuitOpenError: if the circuit is open (operation not invoked)
            Exception: whatever ``operation`` raised, after recording it
        """
        async with self._lock:
            self._metrics.total_requests += 1
            self._admit()

        try:
            result = await operation()
        except Exception:
            await self._record(success=False)
            raise
        except BaseException:
            # Cancelled mid-call: release the probe slot without judging the upstream
            async with self._lock:
                self._probe_in_flight = False
            raise

        await self._record(success=True)
        return result

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _cooldown_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return False
        return self._now_ms() - self._last_failure_time >= self.cooldown_ms

    def _admit(self) -> None:
        """Decide whether the current call may proceed. Caller holds the lock."""
        if self._state is CircuitState.OPEN:
            if not self._cooldown_elapsed():
                raise CircuitOpenError("Circuit breaker is OPEN", self.retry_after_ms())
            self._transition_to_half_open()

        if self._state is CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError("Circuit breaker is HALF_OPEN, probe in flight", 0)
            self._probe_in_flight = True

    async def _record(self, success: bool) -> None:
        async with self._lock:
            self._probe_in_flight = False
            if success:
                self._on_success()
            else:
                self._on_failure()
            snapshot = self.snapshot()
        await self._notify(snapshot)

    def _on_success(self) -> None:
        self._metrics.total_successes += 1
        self._success_count += 1
        self._failure_count = 0

        if self._state is CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            self._success_count = 0
            self._metrics.circuit_closes += 1
            logger.info(
                "Circuit breaker closed after successful probe",
                name=self.name,
                previous_state=CircuitState.HALF_OPEN.value,
                new_state=CircuitState.CLOSED.value,
                total_successes=self._metrics.total_successes,
                total_failures=self._metrics.total_failures,
                circuit_closes=self._metrics.circuit_closes,
                timestamp=_iso(self._now_ms()),
            )

    def _on_failure(self) -> None:
        self._metrics.total_failures += 1
        self._failure_count += 1
        self._success_count = 0
        self._last_failure_time = self._now_ms()

        if self._state is CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self._metrics.circuit_opens += 1
            logger.warning(
                "Circuit breaker reopened after failed probe",
                name=self.name,
                previous_state=CircuitState.HALF_OPEN.value,
                new_state=CircuitState.OPEN.value,
                failure_count=self._failure_count,
                total_failures=self._metrics.total_failures,
                circuit_opens=self._metrics.circuit_opens,
                last_failure_time=_iso(self._last_failure_time),
                cooldown_ms=self.cooldown_ms,
            )
        elif self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._metrics.circuit_opens += 1
            logger.error(
                "Circuit breaker opened due to failure threshold",
                name=self.name,
                previous_state=CircuitState.CLOSED.value,
                new_state=CircuitState.OPEN.value,
                failure_count=self._failure_count,
                failure_threshold=self.failure_threshold,
                total_failures=self._metrics.total_failures,
                circuit_opens=self._metrics.circuit_opens,
                last_failure_time=_iso(self._last_failure_time),
                cooldown_ms=self.cooldown_ms,
            )

    def _transition_to_half_open(self) -> None:
        previous = self._state
        self._state = CircuitState.HALF_OPEN
        self._failure_count = 0
        self._success_count = 0
        logger.info(
            "Circuit breaker transitioned to HALF_OPEN",
            name=self.name,
            previous_state=previous.value,
            new_state=CircuitState.HALF_OPEN.value,
            cooldown_elapsed_ms=(
                self._now_ms() - self._last_failure_time if self._last_failure_time else 0
            ),
            cooldown_ms=self.cooldown_ms,
            timestamp=_iso(self._now_ms()),
        )

    async def _notify(self, snapshot: CircuitSnapshot) -> None:
        for listener in self._listeners:
            try:
                await listener(snapshot)
            except Exception as e:
                logger.warning("Circuit state listener failed", name=self.name, error=str(e))
