"""
Unit tests for the shared retry-with-backoff combinator.
"""

from __future__ import annotations

import pytest

from remotesql.exceptions import ErrorCode
from remotesql.retry import (
    AttemptContext,
    AttemptVerdict,
    RetryConfig,
    calculate_backoff_ms,
    retry_with_backoff,
    verdict_for,
)
from tests.fixtures import RecordingSleep


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.base_delay_ms == 500.0
        assert config.exponential_base == 2.0
        assert config.max_delay_ms == 60_000.0

    def test_negative_base_delay_rejected(self):
        with pytest.raises(ValueError, match="base_delay_ms"):
            RetryConfig(base_delay_ms=-1)

    def test_exponential_base_below_one_rejected(self):
        with pytest.raises(ValueError, match="exponential_base"):
            RetryConfig(exponential_base=0.5)

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ValueError, match="max_delay_ms"):
            RetryConfig(base_delay_ms=1000, max_delay_ms=10)


class TestCalculateBackoff:
    def test_first_attempt_has_no_delay(self):
        assert calculate_backoff_ms(0) == 0.0

    @pytest.mark.parametrize("attempt", [1, 2, 3, 4])
    def test_delay_doubles_from_one_second(self, attempt):
        assert calculate_backoff_ms(attempt) == 2**attempt * 500

    def test_delay_is_capped(self):
        config = RetryConfig(max_delay_ms=3000)
        assert calculate_backoff_ms(10, config) == 3000


class TestVerdictFor:
    @pytest.mark.parametrize(
        "code",
        [ErrorCode.AUTH_ERROR, ErrorCode.FALLBACK_UNAVAILABLE, ErrorCode.UNEXPECTED_ERROR],
    )
    def test_fatal_codes_abort(self, code):
        assert verdict_for(code) is AttemptVerdict.ABORT

    @pytest.mark.parametrize(
        "code",
        [ErrorCode.NETWORK_ERROR, ErrorCode.PARSE_ERROR, ErrorCode.SQL_ERROR, ErrorCode.CORS_ERROR],
    )
    def test_transient_codes_retry(self, code):
        assert verdict_for(code) is AttemptVerdict.RETRY

    def test_repairable_code_repairs_only_when_allowed(self):
        repairable = frozenset({ErrorCode.FUNCTION_MISSING})

        assert verdict_for(ErrorCode.FUNCTION_MISSING, repairable) is AttemptVerdict.REPAIR
        assert verdict_for(ErrorCode.FUNCTION_MISSING) is AttemptVerdict.RETRY
        assert verdict_for(ErrorCode.TABLE_MISSING, repairable) is AttemptVerdict.RETRY


def _script(*verdicts: AttemptVerdict):
    """Strategy returning the given verdicts in order; records contexts."""
    contexts: list[AttemptContext] = []
    remaining = list(verdicts)

    async def strategy(ctx: AttemptContext) -> AttemptVerdict:
        contexts.append(ctx)
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return strategy, contexts


def _identity(verdict: AttemptVerdict) -> AttemptVerdict:
    return verdict


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt_does_not_sleep(self):
        sleep = RecordingSleep()
        strategy, contexts = _script(AttemptVerdict.SUCCEEDED)

        outcome = await retry_with_backoff(strategy, _identity, 2, sleep=sleep)

        assert outcome.succeeded
        assert outcome.calls == 1
        assert sleep.delays == []
        assert contexts[0].is_first

    @pytest.mark.asyncio
    async def test_exhausts_budget_with_exponential_delays(self):
        sleep = RecordingSleep()
        strategy, contexts = _script(AttemptVerdict.RETRY)

        outcome = await retry_with_backoff(strategy, _identity, 3, sleep=sleep)

        assert outcome.exhausted
        assert outcome.calls == 4
        assert sleep.delays_ms == [1000.0, 2000.0, 4000.0]
        assert outcome.delays_ms == [0.0, 1000.0, 2000.0, 4000.0]
        assert [c.attempt for c in contexts] == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_abort_stops_immediately(self):
        sleep = RecordingSleep()
        strategy, _ = _script(AttemptVerdict.ABORT)

        outcome = await retry_with_backoff(strategy, _identity, 5, sleep=sleep)

        assert outcome.aborted
        assert outcome.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_call(self):
        strategy, _ = _script(AttemptVerdict.RETRY)

        outcome = await retry_with_backoff(strategy, _identity, 0, sleep=RecordingSleep())

        assert outcome.calls == 1
        assert outcome.exhausted

    @pytest.mark.asyncio
    async def test_negative_retries_rejected(self):
        strategy, _ = _script(AttemptVerdict.SUCCEEDED)

        with pytest.raises(ValueError, match="max_retries"):
            await retry_with_backoff(strategy, _identity, -1)

    @pytest.mark.asyncio
    async def test_repair_repeats_same_attempt_number(self):
        sleep = RecordingSleep()
        strategy, contexts = _script(AttemptVerdict.REPAIR, AttemptVerdict.SUCCEEDED)
        repairs: list[AttemptVerdict] = []

        async def repair(result: AttemptVerdict) -> bool:
            repairs.append(result)
            return True

        outcome = await retry_with_backoff(strategy, _identity, 2, repair=repair, sleep=sleep)

        assert outcome.succeeded
        assert outcome.repairs == 1
        assert [c.attempt for c in contexts] == [0, 0]
        assert contexts[1].repeated is True
        assert sleep.delays == []
        assert repairs == [AttemptVerdict.REPAIR]

    @pytest.mark.asyncio
    async def test_repair_runs_at_most_once(self):
        strategy, contexts = _script(AttemptVerdict.REPAIR)
        calls = 0

        async def repair(result: AttemptVerdict) -> bool:
            nonlocal calls
            calls += 1
            return True

        outcome = await retry_with_backoff(
            strategy, _identity, 1, repair=repair, sleep=RecordingSleep()
        )

        assert calls == 1
        assert outcome.repairs == 1
        # attempt 0, repeated attempt 0, then attempt 1 as a normal retry
        assert [c.attempt for c in contexts] == [0, 0, 1]
        assert outcome.exhausted

    @pytest.mark.asyncio
    async def test_failed_repair_consumes_retry(self):
        strategy, contexts = _script(AttemptVerdict.REPAIR, AttemptVerdict.SUCCEEDED)

        async def repair(result: AttemptVerdict) -> bool:
            return False

        outcome = await retry_with_backoff(
            strategy, _identity, 2, repair=repair, sleep=RecordingSleep()
        )

        assert outcome.succeeded
        assert outcome.repairs == 0
        assert [c.attempt for c in contexts] == [0, 1]

    @pytest.mark.asyncio
    async def test_failed_repair_is_not_rerun(self):
        strategy, contexts = _script(AttemptVerdict.REPAIR)
        calls = 0

        async def repair(result: AttemptVerdict) -> bool:
            nonlocal calls
            calls += 1
            return False

        outcome = await retry_with_backoff(
            strategy, _identity, 2, repair=repair, sleep=RecordingSleep()
        )

        assert calls == 1
        assert outcome.calls == 3
        assert outcome.exhausted

    @pytest.mark.asyncio
    async def test_repair_verdict_without_hook_is_a_retry(self):
        strategy, contexts = _script(AttemptVerdict.REPAIR)

        outcome = await retry_with_backoff(strategy, _identity, 1, sleep=RecordingSleep())

        assert outcome.calls == 2
        assert [c.attempt for c in contexts] == [0, 1]

    @pytest.mark.asyncio
    async def test_custom_config_changes_delays(self):
        sleep = RecordingSleep()
        strategy, _ = _script(AttemptVerdict.RETRY)

        await retry_with_backoff(
            strategy, _identity, 2, RetryConfig(base_delay_ms=10, exponential_base=3), sleep=sleep
        )

        assert sleep.delays_ms == [30.0, 90.0]
