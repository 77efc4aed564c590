"""
Resilient Store
===============

Wraps every persistence call made by the engine.

Responsibilities:
- Classify failures as retryable (connectivity, timeouts, lock contention)
  or non-retryable (domain errors, integrity errors, anything unknown)
- Retry with exponential backoff and jitter, bounded per operation kind
- Degrade reads to the cache (fresh, then stale) or a declared neutral
  default once retries are exhausted
- Never substitute data for a failed write

Usage:
    store = ResilientStore.from_settings(get_settings())

    result = await store.read(repo.list_open, cache_key="tickets:open", default=[])
    if result.degraded:
        ...  # show a staleness indicator

    budget = store.deadline(5.0)  # shared by every call of one client operation
    request = await store.read(lambda: repo.get_by_id(1), authoritative=True, deadline=budget)
    await store.write(lambda: repo.commit_acceptance(...), deadline=budget)
"""

import asyncio
import copy
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from sqlalchemy import exc as sa_exc

from helpdesk_engine.core import ApplicationException, StorageUnavailableException
from helpdesk_engine.shared.infrastructure.cache import TTLCache
from helpdesk_engine.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class OperationKind(str, Enum):
    """How tolerant an operation is of retries and fallbacks."""
    READ = "read"
    WRITE = "write"


class ErrorClass(str, Enum):
    """Outcome of error classification."""
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


class ResultSource(str, Enum):
    """Where a store result came from."""
    LIVE = "live"
    CACHE = "cache"
    STALE_CACHE = "stale_cache"
    DEFAULT = "default"


class TransientStorageError(Exception):
    """Raised by adapters to signal a failure worth retrying."""


# SQLSTATE codes (or class prefixes) that describe transient conditions.
RETRYABLE_SQLSTATE_CLASSES = ("08",)  # connection exception
RETRYABLE_SQLSTATES = frozenset({
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "53300",  # too_many_connections
    "55P03",  # lock_not_available
    "57P01",  # admin_shutdown
    "57P02",  # crash_shutdown
    "57P03",  # cannot_connect_now
})


def _sqlstate(error: sa_exc.DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_error(error: BaseException) -> ErrorClass:
    """
    Decide whether a failed persistence call may be retried.

    Classification is by exception type and SQLSTATE, never by message text.
    Unknown errors are non-retryable so that bugs surface immediately.
    """
    if isinstance(error, ApplicationException):
        return ErrorClass.NON_RETRYABLE
    if isinstance(error, (TransientStorageError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.RETRYABLE
    if isinstance(error, sa_exc.IntegrityError):
        return ErrorClass.NON_RETRYABLE
    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return ErrorClass.RETRYABLE
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return ErrorClass.RETRYABLE
        sqlstate = _sqlstate(error)
        if sqlstate:
            if sqlstate in RETRYABLE_SQLSTATES or sqlstate.startswith(RETRYABLE_SQLSTATE_CLASSES):
                return ErrorClass.RETRYABLE
            return ErrorClass.NON_RETRYABLE
        # OperationalError covers lost connections and lock contention
        # ("database is locked") for drivers that expose no SQLSTATE.
        if isinstance(error, sa_exc.OperationalError):
            return ErrorClass.RETRYABLE
    return ErrorClass.NON_RETRYABLE


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff and jitter.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry, in seconds
        multiplier: Growth factor per retry
        max_delay: Cap applied before jitter
        jitter: Delays are multiplied by a factor in [1, 1 + jitter)
    """
    max_attempts: int = 3
    base_delay: float = 0.2
    multiplier: float = 2.0
    max_delay: float = 2.0
    jitter: float = 0.2

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, retry_index: int, rng: random.Random) -> float:
        """Delay before retry number retry_index (0 for the first retry)."""
        wait = min(self.base_delay * (self.multiplier ** retry_index), self.max_delay)
        return wait * (1.0 + self.jitter * rng.random())


class Deadline:
    """
    Time budget shared by every store call of one client operation.

    A Deadline built without seconds never expires.
    """

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = None if seconds is None else clock() + seconds

    @property
    def bounded(self) -> bool:
        return self.expires_at is not None

    def remaining(self) -> Optional[float]:
        """Seconds left, None when unbounded; may be negative once expired."""
        if self.expires_at is None:
            return None
        return self.expires_at - self._clock()


_NO_DEFAULT = object()


@dataclass(frozen=True)
class Fallback:
    """
    Degradation chain for reads whose retries are exhausted.

    Tried in order: fresh cache entry, stale cache entry, neutral default.
    """
    use_cache: bool = True
    allow_stale: bool = True
    default: Any = _NO_DEFAULT

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT

    @classmethod
    def none(cls) -> "Fallback":
        """No fallback at all: exhaustion always raises."""
        return cls(use_cache=False, allow_stale=False)


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """A successful store call, tagged with where its value came from."""
    value: T
    source: ResultSource = ResultSource.LIVE
    attempts: int = 1
    age_seconds: Optional[float] = None

    @property
    def degraded(self) -> bool:
        """True whenever the value did not come from a live store call."""
        return self.source is not ResultSource.LIVE

    @property
    def from_cache(self) -> bool:
        return self.source in (ResultSource.CACHE, ResultSource.STALE_CACHE)


class ResilientStore:
    """
    Executes persistence operations with retries and a degradation path.

    Operations are zero-argument async callables; each attempt calls the
    operation again, so it must open its own session/transaction.
    """

    def __init__(
        self,
        read_policy: Optional[RetryPolicy] = None,
        write_policy: Optional[RetryPolicy] = None,
        cache: Optional[TTLCache] = None,
        classifier: Callable[[BaseException], ErrorClass] = classify_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._read_policy = read_policy or RetryPolicy(max_attempts=3)
        self._write_policy = write_policy or RetryPolicy(max_attempts=2)
        self._cache = cache if cache is not None else TTLCache()
        self._classifier = classifier
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "ResilientStore":
        """Build a store from the engine Settings."""
        def policy(attempts: int) -> RetryPolicy:
            return RetryPolicy(
                max_attempts=attempts,
                base_delay=settings.store_base_delay_seconds,
                multiplier=settings.store_backoff_multiplier,
                max_delay=settings.store_max_delay_seconds,
                jitter=settings.store_jitter,
            )

        kwargs: dict[str, Any] = {
            "read_policy": policy(settings.store_read_attempts),
            "write_policy": policy(settings.store_write_attempts),
            "cache": TTLCache(
                default_ttl=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
            ),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def deadline(self, seconds: Optional[float]) -> Deadline:
        """Start an overall budget on the store clock."""
        return Deadline(seconds, clock=self._clock)

    def policy_for(self, kind: OperationKind) -> RetryPolicy:
        return self._read_policy if kind is OperationKind.READ else self._write_policy

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        kind: OperationKind,
        *,
        name: Optional[str] = None,
        cache_key: Optional[str] = None,
        fallback: Optional[Fallback] = None,
        deadline: Union[float, Deadline, None] = None,
    ) -> StoreResult[T]:
        """
        Run operation under the retry policy for kind.

        Args:
            operation: Zero-argument coroutine function doing the store call
            kind: READ or WRITE
            name: Operation name for logs and errors
            cache_key: Reads only; successful results are cached under it
            fallback: Reads only; degradation chain (default: cache, stale, no default)
            deadline: Overall budget across all attempts, in seconds or a
                Deadline shared with the caller's other store calls

        Raises:
            StorageUnavailableException: retries exhausted and no fallback applied
            Any non-retryable error raised by the operation, untouched
        """
        policy = self.policy_for(kind)
        if kind is OperationKind.WRITE:
            fallback = Fallback.none()
        elif fallback is None:
            fallback = Fallback()
        op_name = name or cache_key or getattr(operation, "__qualname__", "operation")

        budget = deadline if isinstance(deadline, Deadline) else self.deadline(deadline)
        attempts = 0
        last_error: Optional[BaseException] = None
        reason = "retries exhausted"

        for retry_index in range(policy.max_attempts):
            timeout = budget.remaining()
            if timeout is not None and timeout <= 0:
                reason = "deadline exceeded"
                break

            attempts += 1
            try:
                if timeout is None:
                    value = await operation()
                else:
                    value = await asyncio.wait_for(operation(), timeout)
            except Exception as e:
                if self._classifier(e) is ErrorClass.NON_RETRYABLE:
                    raise
                last_error = e
                logger.warning(
                    "Transient storage failure",
                    extra={
                        "operation": op_name,
                        "kind": kind.value,
                        "attempt": attempts,
                        "max_attempts": policy.max_attempts,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    }
                )
                if retry_index + 1 < policy.max_attempts:
                    delay = policy.delay_for(retry_index, self._rng)
                    if budget.bounded:
                        delay = min(delay, max(0.0, budget.remaining()))
                    await self._sleep(delay)
                continue

            if kind is OperationKind.READ and cache_key:
                self._cache.set(cache_key, value)
            return StoreResult(value=value, source=ResultSource.LIVE, attempts=attempts)

        if kind is OperationKind.READ:
            degraded = self._fallback(op_name, cache_key, fallback, attempts)
            if degraded is not None:
                return degraded

        logger.error(
            "Storage unavailable",
            extra={
                "operation": op_name,
                "kind": kind.value,
                "attempts": attempts,
                "reason": reason,
                "error_type": type(last_error).__name__ if last_error else None,
            }
        )
        raise StorageUnavailableException(op_name, attempts, last_error, reason) from last_error

    def _fallback(
        self,
        op_name: str,
        cache_key: Optional[str],
        fallback: Fallback,
        attempts: int,
    ) -> Optional[StoreResult]:
        if fallback.use_cache and cache_key:
            entry = self._cache.get_entry(cache_key)
            if entry is not None:
                fresh = self._cache.is_fresh(entry)
                if fresh or fallback.allow_stale:
                    source = ResultSource.CACHE if fresh else ResultSource.STALE_CACHE
                    logger.warning(
                        "Serving cached result after storage failure",
                        extra={"operation": op_name, "source": source.value, "attempts": attempts}
                    )
                    return StoreResult(
                        value=copy.deepcopy(entry.value),
                        source=source,
                        attempts=attempts,
                        age_seconds=self._cache.age(entry),
                    )

        if fallback.has_default:
            logger.warning(
                "Serving neutral default after storage failure",
                extra={"operation": op_name, "attempts": attempts}
            )
            return StoreResult(
                value=copy.deepcopy(fallback.default),
                source=ResultSource.DEFAULT,
                attempts=attempts,
            )
        return None

    async def read(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: Optional[str] = None,
        cache_key: Optional[str] = None,
        default: Any = _NO_DEFAULT,
        authoritative: bool = False,
        deadline: Union[float, Deadline, None] = None,
    ) -> StoreResult[T]:
        """
        Read with retries.

        Authoritative reads never touch the cache in either direction and
        raise on exhaustion; they back every check-then-act decision.
        """
        if authoritative:
            return await self.execute(
                operation, OperationKind.READ,
                name=name, fallback=Fallback.none(), deadline=deadline,
            )
        return await self.execute(
            operation, OperationKind.READ,
            name=name, cache_key=cache_key,
            fallback=Fallback(default=default), deadline=deadline,
        )

    async def write(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: Optional[str] = None,
        deadline: Union[float, Deadline, None] = None,
    ) -> T:
        """Write with retries; returns the raw operation result."""
        result = await self.execute(operation, OperationKind.WRITE, name=name, deadline=deadline)
        return result.value

    def forget(self, cache_key: str) -> None:
        self._cache.delete(cache_key)

    def invalidate(self, prefix: str) -> int:
        return self._cache.invalidate(prefix)

    def cache_stats(self) -> dict:
        return self._cache.stats()
