"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. Retry policy (backoff delays, non-retriable errors, cancellation)
3. Timeout relabeling vs caller cancellation
4. Shared state stores (memory, database) and one-shot hydration
5. CircuitBreakerRegistry (get, get_all_states)
"""

import asyncio
import threading
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    DatabaseStateStore,
    FailoverConfiguration,
    MemoryStateStore,
    compute_backoff_delay,
)
from app.core.errors import (
    CircuitOpenError,
    OperationCancelledError,
    OperationTimeoutError,
    ProviderHttpError,
    ProviderServerError,
)

NO_RETRY = FailoverConfiguration(retry=0, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=3)


def failing(error: Exception):
    operation = AsyncMock(side_effect=error)
    return operation


class TestCircuitState:
    """Tests for CircuitState enum."""

    def test_circuit_states_exist(self):
        """Verify all expected circuit states are defined."""
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert CircuitState.HALF_OPEN.value == "half_open"


class TestStateTransitions:
    """Tests for circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_success_keeps_circuit_closed(self):
        """A successful call returns its result and leaves the circuit closed."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        operation = AsyncMock(return_value=42)

        assert await cb.execute(operation) == 42
        assert cb.state == CircuitState.CLOSED
        assert cb.failures == 0

    @pytest.mark.asyncio
    async def test_closed_to_open_after_consecutive_failures(self):
        """The circuit opens once consecutive_failures is reached."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        operation = failing(ValueError("boom"))

        for _ in range(2):
            with pytest.raises(ValueError):
                await cb.execute(operation)
        assert cb.state == CircuitState.CLOSED
        assert cb.failures == 2

        with pytest.raises(ValueError):
            await cb.execute(operation)
        assert cb.state == CircuitState.OPEN
        assert cb.next_attempt > time.time() * 1000

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_without_calling(self):
        """While OPEN, execute raises CircuitOpenError and never invokes the operation."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        for _ in range(3):
            with pytest.raises(ValueError):
                await cb.execute(failing(ValueError("boom")))

        operation = AsyncMock(return_value="ok")
        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(operation)

        operation.assert_not_called()
        assert not exc_info.value.is_retriable()
        assert 0 < exc_info.value.remaining_ms <= NO_RETRY.half_open_after_in_ms

    @pytest.mark.asyncio
    async def test_half_open_success_closes_circuit(self):
        """After the half-open delay, one successful trial closes the circuit."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        cb._state = CircuitState.OPEN
        cb._failures = 3
        cb._next_attempt = time.time() * 1000 - 1

        assert await cb.execute(AsyncMock(return_value="ok")) == "ok"
        assert cb.state == CircuitState.CLOSED
        assert cb.failures == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens_immediately(self):
        """A failing trial reopens the circuit even below the failure threshold."""
        config = FailoverConfiguration(retry=0, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=10)
        cb = CircuitBreaker(name="test", configuration=config)
        cb._state = CircuitState.OPEN
        cb._failures = 1
        cb._next_attempt = time.time() * 1000 - 1

        with pytest.raises(ValueError):
            await cb.execute(failing(ValueError("still down")))

        assert cb.state == CircuitState.OPEN
        assert cb.failures == 2
        assert cb.next_attempt > time.time() * 1000

    @pytest.mark.asyncio
    async def test_success_resets_failures(self):
        """failures only goes back to 0 on success."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        with pytest.raises(ValueError):
            await cb.execute(failing(ValueError("boom")))
        assert cb.failures == 1

        await cb.execute(AsyncMock(return_value=None))
        assert cb.failures == 0


class TestRetryPolicy:
    """Tests for retries and backoff."""

    def test_backoff_delays(self):
        """Delay before retry k is 2^k * 100ms."""
        assert compute_backoff_delay(1) == pytest.approx(0.2)
        assert compute_backoff_delay(2) == pytest.approx(0.4)
        assert compute_backoff_delay(3) == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_retries_then_raises_last_error(self):
        """retry=2 means three attempts, sleeping 200ms then 400ms."""
        config = FailoverConfiguration(retry=2, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=10)
        cb = CircuitBreaker(name="test", configuration=config)
        operation = failing(ProviderServerError("Test", "q", 503, None, 1.0))

        with patch("app.core.circuit_breaker.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(ProviderServerError):
                await cb.execute(operation)

        assert operation.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [pytest.approx(0.2), pytest.approx(0.4)]
        assert cb.failures == 3

    @pytest.mark.asyncio
    async def test_error_of_final_attempt_is_raised(self):
        """When every attempt fails, the error of the last attempt is the one raised."""
        config = FailoverConfiguration(retry=2, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=10)
        cb = CircuitBreaker(name="test", configuration=config)
        last = ConnectionError("third")
        operation = AsyncMock(side_effect=[ConnectionError("first"), ConnectionError("second"), last])

        with patch("app.core.circuit_breaker.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectionError) as exc_info:
                await cb.execute(operation)

        assert exc_info.value is last
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_retry_succeeds_on_second_attempt(self):
        """A transient failure followed by a success returns the result."""
        config = FailoverConfiguration(retry=2, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=10)
        cb = CircuitBreaker(name="test", configuration=config)
        operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])

        with patch("app.core.circuit_breaker.asyncio.sleep", new_callable=AsyncMock):
            assert await cb.execute(operation) == "ok"
        assert cb.failures == 0

    @pytest.mark.asyncio
    async def test_non_retriable_error_is_not_retried(self):
        """Client errors are raised after a single attempt."""
        config = FailoverConfiguration(retry=3, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=10)
        cb = CircuitBreaker(name="test", configuration=config)
        operation = failing(ProviderHttpError("Test", "q", 400, None, 1.0))

        with pytest.raises(ProviderHttpError):
            await cb.execute(operation)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_is_never_retried_nor_counted(self):
        """A cancelled operation propagates without touching the failure count."""
        config = FailoverConfiguration(retry=3, timeout_in_ms=1_000, half_open_after_in_ms=10_000, consecutive_failures=1)
        cb = CircuitBreaker(name="test", configuration=config)
        operation = failing(OperationCancelledError("user"))

        with pytest.raises(OperationCancelledError):
            await cb.execute(operation)

        assert operation.await_count == 1
        assert cb.failures == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_operation(self):
        """An already cancelled caller token stops before the first attempt."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        token = CancellationToken()
        token.cancel("user")
        operation = AsyncMock(return_value="ok")

        with pytest.raises(OperationCancelledError):
            await cb.execute(operation, token)
        operation.assert_not_called()


class TestTimeout:
    """Tests for the breaker's own timeout."""

    @pytest.mark.asyncio
    async def test_timeout_is_relabeled_and_counted(self):
        """When the timeout fires first the error is OperationTimeoutError, counted as a failure."""
        config = FailoverConfiguration(retry=0, timeout_in_ms=50, half_open_after_in_ms=10_000, consecutive_failures=5)
        cb = CircuitBreaker(name="slow", configuration=config)

        async def slow(token):
            await asyncio.sleep(5)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await cb.execute(slow)

        assert exc_info.value.timeout_in_ms == 50
        assert exc_info.value.is_retriable()
        assert cb.failures == 1

    @pytest.mark.asyncio
    async def test_operation_receives_token_cancelled_by_caller(self):
        """Caller cancellation reaches the operation and stays a cancellation."""
        cb = CircuitBreaker(name="test", configuration=NO_RETRY)
        caller = CancellationToken()
        seen = {}

        async def operation(token):
            seen["token"] = token
            caller.cancel("user")
            await asyncio.sleep(5)

        with pytest.raises(OperationCancelledError):
            await cb.execute(operation, caller)

        assert seen["token"].is_cancelled
        assert cb.failures == 0


class TestSharedState:
    """Tests for hydration from and persistence to state stores."""

    @pytest.mark.asyncio
    async def test_state_is_written_after_state_change(self):
        """A failure is mirrored into the store."""
        store = MemoryStateStore()
        cb = CircuitBreaker(name="shared", configuration=NO_RETRY, store=store)

        with pytest.raises(ValueError):
            await cb.execute(failing(ValueError("boom")))

        assert store.read("shared") == {"failures": 1, "next_attempt": 0.0, "state": "closed"}

    @pytest.mark.asyncio
    async def test_hydrates_open_state_once(self):
        """A fresh breaker picks up an OPEN state written by another worker."""
        store = MemoryStateStore()
        store.write("shared", {"failures": 3, "next_attempt": time.time() * 1000 + 60_000, "state": "open"}, 60)
        cb = CircuitBreaker(name="shared", configuration=NO_RETRY, store=store)
        operation = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError):
            await cb.execute(operation)
        operation.assert_not_called()

        # Later writes by other workers are not re-read
        store.write("shared", {"failures": 0, "next_attempt": 0.0, "state": "closed"}, 60)
        with pytest.raises(CircuitOpenError):
            await cb.execute(operation)

    @pytest.mark.asyncio
    async def test_store_failures_are_ignored(self):
        """Read and write errors of the store never break execution."""
        store = MagicMock()
        store.read.side_effect = RuntimeError("store down")
        store.write.side_effect = RuntimeError("store down")
        cb = CircuitBreaker(name="shared", configuration=NO_RETRY, store=store)

        with pytest.raises(ValueError):
            await cb.execute(failing(ValueError("boom")))
        assert await cb.execute(AsyncMock(return_value="ok")) == "ok"

    def test_database_store_round_trip(self, test_engine):
        """The database store reads back what it wrote until it expires."""
        store = DatabaseStateStore(test_engine)
        assert store.read("overpass:a") is None

        store.write("overpass:a", {"failures": 2, "next_attempt": 123.0, "state": "open"}, 60)
        assert store.read("overpass:a") == {"state": "open", "failures": 2, "next_attempt": 123.0}

        store.write("overpass:a", {"failures": 0, "next_attempt": 0.0, "state": "closed"}, 0)
        assert store.read("overpass:a") is None

    def test_memory_store_honours_ttl_of_each_write(self):
        """Entries expire after the TTL passed to write, not a store-wide one."""
        clock = [0.0]
        store = MemoryStateStore(timer=lambda: clock[0])
        store.write("long", {"failures": 1, "next_attempt": 0.0, "state": "closed"}, 60)
        store.write("short", {"failures": 2, "next_attempt": 0.0, "state": "closed"}, 5)

        clock[0] = 10.0

        assert store.read("long") == {"failures": 1, "next_attempt": 0.0, "state": "closed"}
        assert store.read("short") is None

    @pytest.mark.asyncio
    async def test_database_store_is_called_off_the_event_loop(self, test_engine):
        """Blocking stores are read and written from a worker thread."""
        store = DatabaseStateStore(test_engine)
        loop_thread = threading.get_ident()
        threads = []
        read, write = store.read, store.write

        def recording_read(*args):
            threads.append(threading.get_ident())
            return read(*args)

        def recording_write(*args):
            threads.append(threading.get_ident())
            return write(*args)

        store.read = recording_read
        store.write = recording_write
        cb = CircuitBreaker(name="overpass:db", configuration=NO_RETRY, store=store)

        with pytest.raises(ValueError):
            await cb.execute(failing(ValueError("boom")))

        assert len(threads) == 2
        assert loop_thread not in threads
        assert read("overpass:db") == {"state": "closed", "failures": 1, "next_attempt": 0.0}


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_get_returns_same_breaker(self):
        """Breakers are created lazily and reused by name."""
        registry = CircuitBreakerRegistry()
        first = registry.get("tripadvisor")
        assert registry.get("tripadvisor") is first
        assert registry.get("google_place") is not first

    def test_get_all_states(self):
        """get_all_states reports every known breaker."""
        registry = CircuitBreakerRegistry()
        registry.get("a")
        registry.get("b")._state = CircuitState.OPEN
        assert registry.get_all_states() == {"a": "closed", "b": "open"}
