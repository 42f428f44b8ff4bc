import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar
import logging
import time

from cachetools import TLRUCache
from sqlalchemy.engine import Engine

from app.core.cancellation import CancellationToken
from app.core.errors import (
    CircuitBreakerError,
    CircuitOpenError,
    OperationCancelledError,
    OperationTimeoutError,
)
from app.core.typing import ensure_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[Optional[CancellationToken]], Awaitable[T]]

DEFAULT_STATE_TTL_SECONDS = 60


def _now_ms() -> float:
    return time.time() * 1000


def compute_backoff_delay(attempt: int) -> float:
    """Delay in seconds before retrying after the given (1-based) failed attempt."""
    return (2**attempt) * 100 / 1000


def should_retry(error: BaseException) -> bool:
    if isinstance(error, OperationCancelledError):
        return False
    if isinstance(error, CircuitBreakerError):
        return error.is_retriable()
    return True


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Next call is a trial


@dataclass(frozen=True)
class FailoverConfiguration:
    retry: int = 3
    timeout_in_ms: int = 10_000
    half_open_after_in_ms: int = 10_000
    consecutive_failures: int = 5


DEFAULT_FAILOVER = FailoverConfiguration()
SLOW_NETWORK_FAILOVER = FailoverConfiguration(
    retry=4,
    timeout_in_ms=20_000,
    half_open_after_in_ms=15_000,
    consecutive_failures=7,
)


@dataclass
class CircuitBreakerSnapshot:
    """State of one breaker as mirrored into a shared store."""

    failures: int = 0
    next_attempt: float = 0.0
    state: CircuitState = CircuitState.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        return {"failures": self.failures, "next_attempt": self.next_attempt, "state": self.state.value}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CircuitBreakerSnapshot":
        try:
            state = CircuitState(payload.get("state", "closed"))
        except ValueError:
            state = CircuitState.CLOSED
        return cls(
            failures=int(payload.get("failures", 0)),
            next_attempt=float(payload.get("next_attempt", 0.0)),
            state=state,
        )


class StateStore(Protocol):
    """Shared breaker state. Stores flagged `blocking` are called from a worker thread."""

    def read(self, name: str) -> Optional[Dict[str, Any]]: ...

    def write(self, name: str, payload: Dict[str, Any], ttl_seconds: int) -> None: ...


def _expires_after(name: str, entry: Tuple[Dict[str, Any], int], now: float) -> float:
    return now + entry[1]


class MemoryStateStore:
    """In-process store. Each entry expires after the TTL it was written with."""

    def __init__(self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_after, timer=timer)

    def read(self, name: str) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(name)
        return dict(entry[0]) if entry else None

    def write(self, name: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
        self._cache[name] = (dict(payload), ttl_seconds)


class DatabaseStateStore:
    """Mirror breaker state into the circuit_breaker_state table so it survives restarts."""

    blocking = True

    def __init__(self, engine: Engine):
        self.engine = engine

    def read(self, name: str) -> Optional[Dict[str, Any]]:
        # Import here to avoid circular imports
        from sqlmodel import Session, select
        from app.models.circuit_breaker_state import CircuitBreakerState

        with Session(self.engine) as session:
            db_state = session.exec(select(CircuitBreakerState).where(CircuitBreakerState.name == name)).first()
            if db_state is None:
                return None
            expires_at = ensure_utc(db_state.expires_at)
            if expires_at is not None and expires_at <= utc_now():
                return None
            return {
                "state": db_state.state,
                "failures": db_state.failure_count,
                "next_attempt": db_state.next_attempt,
            }

    def write(self, name: str, payload: Dict[str, Any], ttl_seconds: int) -> None:
        from sqlmodel import Session, select
        from app.models.circuit_breaker_state import CircuitBreakerState

        now = utc_now()
        with Session(self.engine) as session:
            db_state = session.exec(select(CircuitBreakerState).where(CircuitBreakerState.name == name)).first()
            if db_state is None:
                db_state = CircuitBreakerState(name=name)
            db_state.state = payload["state"]
            db_state.failure_count = payload["failures"]
            db_state.next_attempt = payload["next_attempt"]
            if payload["state"] != CircuitState.CLOSED.value:
                db_state.last_failure_at = now
            db_state.updated_at = now
            db_state.expires_at = now + timedelta(seconds=ttl_seconds)
            session.add(db_state)
            session.commit()


@dataclass
class CircuitBreaker:
    name: str
    configuration: FailoverConfiguration = DEFAULT_FAILOVER
    store: Optional[StateStore] = None
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _next_attempt: float = field(default=0.0, init=False)
    _hydrated: bool = field(default=False, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def next_attempt(self) -> float:
        return self._next_attempt

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(failures=self._failures, next_attempt=self._next_attempt, state=self._state)

    async def execute(self, operation: Operation[T], token: Optional[CancellationToken] = None) -> T:
        """
        Run `operation` behind retry, circuit state and timeout, in that order.

        The operation receives a token that fires on caller cancellation or when the
        breaker's own timeout elapses, whichever comes first.
        """

        async def guarded(attempt_token: Optional[CancellationToken]) -> T:
            return await self._with_circuit_breaker(
                lambda circuit_token: self._with_timeout(operation, circuit_token),
                attempt_token,
            )

        return await self._with_retry(guarded, token)

    async def _with_retry(self, operation: Operation[T], token: Optional[CancellationToken]) -> T:
        attempts = self.configuration.retry + 1
        attempt = 0

        while True:
            attempt += 1
            if token is not None:
                token.raise_if_cancelled()
            try:
                return await operation(token)
            except OperationCancelledError:
                raise
            except Exception as e:
                if not should_retry(e) or attempt >= attempts:
                    raise
                delay = compute_backoff_delay(attempt)
                logger.debug(f"Circuit {self.name}: attempt {attempt}/{attempts} failed ({e}), retrying in {delay}s")
                if token is not None:
                    await token.sleep(delay)
                else:
                    await asyncio.sleep(delay)

    async def _with_circuit_breaker(self, operation: Operation[T], token: Optional[CancellationToken]) -> T:
        await self._hydrate()

        if self._state == CircuitState.OPEN:
            now = _now_ms()
            if now > self._next_attempt:
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")
            else:
                raise CircuitOpenError(self.name, self._next_attempt - now)

        before = self.snapshot()
        try:
            result = await operation(token)
        except OperationCancelledError:
            raise
        except Exception:
            self._record_failure()
            await self._persist(before)
            raise

        self._record_success()
        await self._persist(before)
        return result

    async def _with_timeout(self, operation: Operation[T], token: Optional[CancellationToken]) -> T:
        timeout_token = CancellationToken.after(self.configuration.timeout_in_ms / 1000)
        combined = CancellationToken.any(token, timeout_token)
        try:
            return await combined.run(operation(combined))
        except OperationCancelledError as e:
            caller_cancelled = token is not None and token.is_cancelled
            if timeout_token.is_cancelled and not caller_cancelled:
                raise OperationTimeoutError(self.name, self.configuration.timeout_in_ms) from e
            raise
        finally:
            timeout_token.dispose()
            combined.dispose()

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit {self.name}: {self._state.name} -> CLOSED")
        self._failures = 0
        self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        previous = self._state
        self._failures += 1
        if self._failures >= self.configuration.consecutive_failures or previous == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self._next_attempt = _now_ms() + self.configuration.half_open_after_in_ms
            if previous == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (failure during recovery)")
            else:
                logger.warning(f"Circuit {self.name}: {previous.name} -> OPEN (threshold reached)")

    async def _call_store(self, method: Callable[..., T], *args: Any) -> T:
        if getattr(self.store, "blocking", False) is True:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, method, *args)
        return method(*args)

    async def _hydrate(self) -> None:
        """Load state from the shared store once, on first execution."""
        if self._hydrated:
            return
        self._hydrated = True
        if self.store is None:
            return
        try:
            saved = await self._call_store(self.store.read, self.name)
        except Exception as e:
            logger.warning(f"Failed to load circuit breaker state for {self.name}: {e}")
            return
        if saved:
            snapshot = CircuitBreakerSnapshot.from_dict(saved)
            self._state = snapshot.state
            self._failures = snapshot.failures
            self._next_attempt = snapshot.next_attempt
            logger.info(f"Circuit {self.name}: restored state={self._state.value}, failures={self._failures}")

    async def _persist(self, before: CircuitBreakerSnapshot) -> None:
        if self.store is None or self.snapshot() == before:
            return
        try:
            await self._call_store(self.store.write, self.name, self.snapshot().to_dict(), self.state_ttl_seconds)
        except Exception as e:
            # Don't let persistence failures break the circuit breaker
            logger.warning(f"Failed to persist circuit breaker state for {self.name}: {e}")


class CircuitBreakerRegistry:
    """Breakers keyed by name, owned by application start-up and passed to clients."""

    def __init__(self, store: Optional[StateStore] = None, state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS):
        self.store = store
        self.state_ttl_seconds = state_ttl_seconds
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str, configuration: FailoverConfiguration = DEFAULT_FAILOVER) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name=name,
                configuration=configuration,
                store=self.store,
                state_ttl_seconds=self.state_ttl_seconds,
            )
        return self._breakers[name]

    def get_all_states(self) -> Dict[str, str]:
        return {name: cb.state.value for name, cb in self._breakers.items()}
