"""Tests for the resilient store: classification, retries, degradation."""

import asyncio

import pytest
from sqlalchemy import exc as sa_exc

from helpdesk_engine.core import NotPendingException, StorageUnavailableException
from helpdesk_engine.shared.infrastructure.cache import TTLCache, make_cache_key
from helpdesk_engine.shared.infrastructure.resilience import (
    ErrorClass,
    OperationKind,
    ResilientStore,
    ResultSource,
    RetryPolicy,
    TransientStorageError,
    classify_error,
)
from tests.fakes import make_store, no_sleep


class Ticker:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


class Flaky:
    """Operation failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception = None, value="live"):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class _SQLStateError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


class TestClassifyError:

    def test_connection_and_timeout_errors_are_retryable(self):
        assert classify_error(ConnectionError()) is ErrorClass.RETRYABLE
        assert classify_error(asyncio.TimeoutError()) is ErrorClass.RETRYABLE
        assert classify_error(TransientStorageError()) is ErrorClass.RETRYABLE

    def test_domain_errors_are_never_retried(self):
        assert classify_error(NotPendingException(1, "Accepted")) is ErrorClass.NON_RETRYABLE

    def test_integrity_error_is_not_retryable(self):
        error = sa_exc.IntegrityError("INSERT", {}, Exception("duplicate key"))
        assert classify_error(error) is ErrorClass.NON_RETRYABLE

    def test_operational_error_without_sqlstate_is_retryable(self):
        error = sa_exc.OperationalError("UPDATE", {}, Exception("database is locked"))
        assert classify_error(error) is ErrorClass.RETRYABLE

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03", "08006"])
    def test_transient_sqlstates_are_retryable(self, sqlstate):
        error = sa_exc.DBAPIError("UPDATE", {}, _SQLStateError(sqlstate))
        assert classify_error(error) is ErrorClass.RETRYABLE

    def test_other_sqlstates_are_not_retryable(self):
        error = sa_exc.DBAPIError("SELECT", {}, _SQLStateError("42P01"))
        assert classify_error(error) is ErrorClass.NON_RETRYABLE

    def test_unknown_errors_are_not_retryable(self):
        assert classify_error(ValueError("bug")) is ErrorClass.NON_RETRYABLE


class TestRetries:

    @pytest.mark.asyncio
    async def test_read_succeeds_after_transient_failure(self):
        store = make_store(read_attempts=3)
        op = Flaky(failures=2)

        result = await store.read(op, name="op")

        assert result.value == "live"
        assert result.source is ResultSource.LIVE
        assert result.attempts == 3
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_after_one_attempt(self):
        store = make_store(read_attempts=3)
        op = Flaky(failures=5, error=ValueError("bad query"))

        with pytest.raises(ValueError):
            await store.read(op, name="op")
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_delays_grow_and_are_capped(self):
        delays = []

        async def record(delay):
            delays.append(delay)

        store = ResilientStore(
            read_policy=RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=2.0, max_delay=3.0, jitter=0.0),
            sleep=record,
        )
        with pytest.raises(StorageUnavailableException):
            await store.read(Flaky(failures=10), name="op")

        assert delays == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_write_exhaustion_raises_storage_unavailable(self):
        store = make_store(write_attempts=2)
        op = Flaky(failures=10)

        with pytest.raises(StorageUnavailableException) as exc_info:
            await store.write(op, name="tickets.apply_transition")

        assert exc_info.value.attempts == 2
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_write_never_falls_back_to_cache(self):
        store = make_store()
        store.cache.set("k", "cached")

        with pytest.raises(StorageUnavailableException):
            await store.execute(Flaky(failures=10), OperationKind.WRITE, cache_key="k")

    @pytest.mark.asyncio
    async def test_deadline_bounds_total_time(self):
        store = make_store(write_attempts=5)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(StorageUnavailableException) as exc_info:
            await store.write(slow, name="slow", deadline=0.05)

        assert exc_info.value.attempts < 5

    @pytest.mark.asyncio
    async def test_shared_deadline_spans_calls(self):
        ticker = Ticker()
        store = ResilientStore(sleep=no_sleep, clock=ticker)
        budget = store.deadline(1.0)
        first, second = Flaky(failures=0), Flaky(failures=0)

        await store.read(first, name="first", authoritative=True, deadline=budget)
        ticker.value = 1.5

        with pytest.raises(StorageUnavailableException) as exc_info:
            await store.write(second, name="second", deadline=budget)

        assert budget.remaining() == pytest.approx(-0.5)
        assert exc_info.value.attempts == 0
        assert second.calls == 0


class TestReadDegradation:

    @pytest.mark.asyncio
    async def test_fresh_cache_is_served_as_degraded(self):
        store = make_store()
        key = make_cache_key("ticket", {"id": 1})
        await store.read(Flaky(failures=0), cache_key=key)

        result = await store.read(Flaky(failures=10), cache_key=key)

        assert result.value == "live"
        assert result.source is ResultSource.CACHE
        assert result.degraded
        assert result.from_cache

    @pytest.mark.asyncio
    async def test_stale_cache_is_served_as_degraded(self):
        ticker = Ticker()
        cache = TTLCache(default_ttl=10, clock=ticker)
        store = ResilientStore(
            read_policy=RetryPolicy(max_attempts=2, base_delay=0.0),
            cache=cache,
            sleep=no_sleep,
            clock=ticker,
        )
        await store.read(Flaky(failures=0, value=[1, 2]), cache_key="open")
        ticker.value = 60.0

        result = await store.read(Flaky(failures=10), cache_key="open", default=[])

        assert result.value == [1, 2]
        assert result.source is ResultSource.STALE_CACHE
        assert result.degraded
        assert result.age_seconds == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_neutral_default_when_nothing_cached(self):
        store = make_store()

        result = await store.read(Flaky(failures=10), cache_key="open", default=[])

        assert result.value == []
        assert result.source is ResultSource.DEFAULT
        assert result.degraded

    @pytest.mark.asyncio
    async def test_no_cache_and_no_default_raises(self):
        store = make_store()

        with pytest.raises(StorageUnavailableException):
            await store.read(Flaky(failures=10), cache_key="missing")

    @pytest.mark.asyncio
    async def test_authoritative_read_ignores_cache(self):
        store = make_store()
        store.cache.set("ticket:id=1", "cached")

        with pytest.raises(StorageUnavailableException):
            await store.read(Flaky(failures=10), cache_key="ticket:id=1", authoritative=True)

    @pytest.mark.asyncio
    async def test_authoritative_read_does_not_populate_cache(self):
        store = make_store()

        await store.read(Flaky(failures=0), cache_key="ticket:id=1", authoritative=True)

        assert store.cache.get_entry("ticket:id=1") is None


class TestInvalidation:

    def test_forget_removes_exact_key_only(self):
        store = make_store()
        store.cache.set("ticket:id=1", "one")
        store.cache.set("ticket:id=12", "twelve")

        store.forget("ticket:id=1")

        assert store.cache.get("ticket:id=1") is None
        assert store.cache.get("ticket:id=12") == "twelve"

    def test_invalidate_drops_prefix(self):
        store = make_store()
        store.cache.set("assignments:agent:agent_id=7", [])
        store.cache.set("assignments:ticket:ticket_id=1", [])
        store.cache.set("ticket:id=1", "one")

        assert store.invalidate("assignments:") == 2
        assert store.cache.get("ticket:id=1") == "one"
