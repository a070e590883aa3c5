"""
Shared retry-with-backoff combinator.

The executor, the connection prober and the schema bootstrapper all run
the same loop: try a strategy, classify the outcome, sleep with exponential
backoff, try again. This module owns that loop so the backoff policy is
defined (and tested) in one place.

This module provides:
- RetryConfig: Backoff configuration (milliseconds)
- calculate_backoff_ms: Delay before a given attempt
- AttemptVerdict: Classification of a single attempt outcome
- AttemptContext: What a strategy is told about the attempt it is running
- RetryOutcome: Aggregate result of a retry loop
- retry_with_backoff: The combinator itself

Example:
    >>> async def call(ctx: AttemptContext) -> BackendResponse:
    ...     return await client.rpc("exec_sql", {"sql_text": "SELECT 1"})
    >>>
    >>> def verdict(response: BackendResponse) -> AttemptVerdict:
    ...     return AttemptVerdict.SUCCEEDED if response.ok else AttemptVerdict.RETRY
    >>>
    >>> outcome = await retry_with_backoff(call, verdict, max_retries=2)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from remotesql.exceptions import ErrorCode, ErrorRecoverability, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for exponential backoff between attempts.

    The delay before attempt ``k`` (k >= 1) is
    ``base_delay_ms * exponential_base ** k``, capped at ``max_delay_ms``.
    Attempt 0 never waits. With the defaults this yields 1000ms, 2000ms,
    4000ms, ... for attempts 1, 2, 3.

    Attributes:
        base_delay_ms: Base delay in milliseconds
        exponential_base: Growth factor per attempt
        max_delay_ms: Upper bound for a single delay

    Example:
        >>> config = RetryConfig(base_delay_ms=250)
        >>> calculate_backoff_ms(2, config)
        1000.0
    """

    base_delay_ms: float = 500.0
    exponential_base: float = 2.0
    max_delay_ms: float = 60_000.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}.")

        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}.")

        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})."
            )


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff_ms(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Calculate the delay to wait before running ``attempt``.

    Args:
        attempt: Attempt number (0-based). Attempt 0 has no delay.
        config: Backoff configuration

    Returns:
        Delay in milliseconds
    """
    if attempt <= 0:
        return 0.0
    delay = config.base_delay_ms * (config.exponential_base**attempt)
    return min(delay, config.max_delay_ms)


class AttemptVerdict(Enum):
    """
    Classification of one attempt's outcome.

    Attributes:
        SUCCEEDED: Stop, the strategy worked.
        RETRY: Spend another attempt if the budget allows.
        ABORT: Stop immediately (e.g. authentication failure).
        REPAIR: Run the repair hook, then repeat the same attempt number.
    """

    SUCCEEDED = "succeeded"
    RETRY = "retry"
    ABORT = "abort"
    REPAIR = "repair"


def verdict_for(code: ErrorCode, repairable: frozenset[ErrorCode] = frozenset()) -> AttemptVerdict:
    """
    Map a failed attempt's error code onto a verdict using its classification.

    Fatal codes abort. Repairable codes listed in ``repairable`` ask for a
    repair; everything else is retried.

    Example:
        >>> verdict_for(ErrorCode.AUTH_ERROR)
        <AttemptVerdict.ABORT: 'abort'>
        >>> verdict_for(ErrorCode.FUNCTION_MISSING, frozenset({ErrorCode.FUNCTION_MISSING}))
        <AttemptVerdict.REPAIR: 'repair'>
    """
    classification = classify(code)
    if not classification.is_retryable:
        return AttemptVerdict.ABORT
    if classification.recoverability is ErrorRecoverability.REPAIRABLE and code in repairable:
        return AttemptVerdict.REPAIR
    return AttemptVerdict.RETRY


@dataclass(frozen=True)
class AttemptContext:
    """
    Information handed to a strategy for the attempt it is about to run.

    Attributes:
        attempt: Attempt number (0-based), not advanced by repairs
        delay_ms: Delay that preceded this attempt
        call_number: Sequential number of this strategy call (1-based)
        repeated: True when this attempt is being repeated after a repair
    """

    attempt: int
    delay_ms: float
    call_number: int
    repeated: bool = False

    @property
    def is_first(self) -> bool:
        """True for the very first call of the loop."""
        return self.call_number == 1


@dataclass
class RetryOutcome(Generic[T]):
    """
    Aggregate result of ``retry_with_backoff``.

    Attributes:
        verdict: Verdict of the last attempt (RETRY when the budget ran out)
        last: Outcome returned by the last strategy call
        calls: Number of strategy calls made
        repairs: Number of successful repairs performed
        delays_ms: Delays slept before each call, in order
    """

    verdict: AttemptVerdict
    last: T | None = None
    calls: int = 0
    repairs: int = 0
    delays_ms: list[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.verdict is AttemptVerdict.SUCCEEDED

    @property
    def aborted(self) -> bool:
        return self.verdict is AttemptVerdict.ABORT

    @property
    def exhausted(self) -> bool:
        """True when every attempt was spent without success or abort."""
        return self.verdict in (AttemptVerdict.RETRY, AttemptVerdict.REPAIR)


async def retry_with_backoff(
    strategy: Callable[[AttemptContext], Awaitable[T]],
    classify: Callable[[T], AttemptVerdict],
    max_retries: int,
    config: RetryConfig | None = None,
    *,
    repair: Callable[[T], Awaitable[bool]] | None = None,
    max_repairs: int = 1,
    sleep: SleepFunc | None = None,
    operation_name: str = "operation",
) -> RetryOutcome[T]:
    """
    Run ``strategy`` until it succeeds, aborts, or the budget is spent.

    Attempts are strictly sequential: each delay and call completes before
    the next begins. A REPAIR verdict invokes ``repair``; when the repair
    reports success the same attempt number is repeated without consuming
    a retry slot. At most ``max_repairs`` repairs run per loop; further
    REPAIR verdicts are treated as RETRY.

    Args:
        strategy: Coroutine function executing one attempt
        classify: Maps an attempt outcome to a verdict
        max_retries: Retries after the initial attempt (total calls is
            ``max_retries + 1`` plus repeats)
        config: Backoff configuration (defaults to DEFAULT_RETRY_CONFIG)
        repair: Optional self-repair hook for REPAIR verdicts
        max_repairs: Upper bound on repeated attempts
        sleep: Awaitable sleep taking seconds (defaults to asyncio.sleep)
        operation_name: Name for logging purposes

    Returns:
        RetryOutcome describing the final attempt

    Raises:
        ValueError: If max_retries is negative
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}.")

    config = config or DEFAULT_RETRY_CONFIG
    sleep = sleep or asyncio.sleep
    outcome: RetryOutcome[T] = RetryOutcome(verdict=AttemptVerdict.RETRY)

    attempt = 0
    repair_calls = 0
    repeated = False
    while attempt <= max_retries:
        delay_ms = calculate_backoff_ms(attempt, config)
        if delay_ms > 0:
            logger.debug(
                f"Waiting before retrying {operation_name}",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "delay_ms": delay_ms,
                },
            )
            await sleep(delay_ms / 1000.0)
        outcome.delays_ms.append(delay_ms)

        outcome.calls += 1
        context = AttemptContext(
            attempt=attempt,
            delay_ms=delay_ms,
            call_number=outcome.calls,
            repeated=repeated,
        )
        result = await strategy(context)
        verdict = classify(result)
        outcome.last = result
        outcome.verdict = verdict
        repeated = False

        if verdict in (AttemptVerdict.SUCCEEDED, AttemptVerdict.ABORT):
            return outcome

        if verdict is AttemptVerdict.REPAIR and repair is not None and repair_calls < max_repairs:
            repair_calls += 1
            repaired = await repair(result)
            if repaired:
                outcome.repairs += 1
                repeated = True
                logger.info(
                    f"Repair succeeded, repeating attempt of {operation_name}",
                    extra={"operation": operation_name, "attempt": attempt},
                )
                continue

        if attempt < max_retries:
            logger.warning(
                f"Retrying {operation_name} after failure",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_retries": max_retries,
                },
            )
        attempt += 1

    return outcome


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY_CONFIG",
    "calculate_backoff_ms",
    "AttemptVerdict",
    "verdict_for",
    "AttemptContext",
    "RetryOutcome",
    "retry_with_backoff",
]
