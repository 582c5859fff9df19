"""
Property-based tests for usage accounting.

Property 4: 统计单调性 (request_count and total_cost never decrease)
Property 5: 平均延迟
Property 6: 默认价格回退可观测
"""

import threading
from decimal import Decimal

from hypothesis import given, strategies as st, settings

from marketplace_router.accounting import RunningStats, UsageAccountant
from marketplace_router.models import UsageCounts
from marketplace_router.pricing import DEFAULT_PRICES, PriceTable
from marketplace_router.request_logger import RequestLogger


models = st.sampled_from(sorted(DEFAULT_PRICES) + ["mystery-model", "llama3.2:3b"])
usages = st.builds(
    UsageCounts,
    prompt_tokens=st.integers(min_value=0, max_value=100_000),
    completion_tokens=st.integers(min_value=0, max_value=100_000),
)
latencies = st.floats(min_value=0, max_value=60_000, allow_nan=False, allow_infinity=False)
records = st.lists(st.tuples(models, usages, latencies), min_size=1, max_size=30)


class TestStatsMonotonic:
    """
    Property 4: 统计单调性

    For any sequence of records, request_count and total_cost never
    decrease, and the totals equal the sums of the individual records.
    """

    @settings(max_examples=100)
    @given(sequence=records)
    def test_counters_accumulate(self, sequence):
        accountant = UsageAccountant()
        previous = accountant.snapshot()
        expected_cost = Decimal(0)

        for model, usage, latency in sequence:
            expected_cost += accountant.record(model, usage, latency)
            current = accountant.snapshot()
            assert current.request_count == previous.request_count + 1
            assert current.total_cost >= previous.total_cost
            previous = current

        stats = accountant.snapshot()
        assert stats.request_count == len(sequence)
        assert stats.total_cost == expected_cost
        assert stats.total_tokens_in == sum(u.prompt_tokens for _, u, _ in sequence)
        assert stats.total_tokens_out == sum(u.completion_tokens for _, u, _ in sequence)
        assert sum(stats.counts_by_model.values()) == len(sequence)
        assert sum(stats.counts_by_provider.values()) == len(sequence)

    @settings(max_examples=50)
    @given(sequence=records)
    def test_snapshot_is_independent(self, sequence):
        accountant = UsageAccountant()
        before = accountant.snapshot()
        for model, usage, latency in sequence:
            accountant.record(model, usage, latency)
        assert before.request_count == 0
        assert before.counts_by_model == {}

    def test_reset_zeroes_everything(self):
        accountant = UsageAccountant()
        accountant.record("gpt-4o", {"prompt_tokens": 10, "completion_tokens": 5}, 100)
        accountant.record("mystery-model", {"prompt_tokens": 1}, 100)
        accountant.record_failure()

        accountant.reset()

        assert accountant.snapshot() == RunningStats()
        assert accountant.fallback_tracker.get_stats().total_fallbacks == 0

    def test_concurrent_records_are_not_lost(self):
        accountant = UsageAccountant()

        def worker():
            for _ in range(200):
                accountant.record("gpt-4o-mini", {"prompt_tokens": 1, "completion_tokens": 1}, 10)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = accountant.snapshot()
        assert stats.request_count == 1600
        assert stats.total_tokens_in == 1600
        assert stats.total_cost == 1600 * (Decimal("0.00000015") + Decimal("0.0000006"))


class TestRunningAverageLatency:
    """
    Property 5: 平均延迟

    After n records the running average equals the mean of the n latencies,
    and a constant latency stream keeps the average exactly constant.
    """

    @settings(max_examples=100)
    @given(samples=st.lists(latencies, min_size=1, max_size=50))
    def test_average_matches_mean(self, samples):
        accountant = UsageAccountant()
        for latency in samples:
            accountant.record("gpt-4o", UsageCounts(), latency)

        mean = sum(samples) / len(samples)
        assert abs(accountant.snapshot().running_avg_latency_ms - mean) <= 1e-6 * max(1.0, mean)

    @settings(max_examples=100)
    @given(latency=latencies, count=st.integers(min_value=1, max_value=100))
    def test_constant_latency_is_exact(self, latency, count):
        accountant = UsageAccountant()
        for _ in range(count):
            accountant.record("gpt-4o", UsageCounts(), latency)
        assert accountant.snapshot().running_avg_latency_ms == latency

    @settings(max_examples=100)
    @given(first=latencies, second=latencies)
    def test_two_values_give_exact_mean(self, first, second):
        accountant = UsageAccountant()
        accountant.record("gpt-4o", UsageCounts(), first)
        accountant.record("gpt-4o", UsageCounts(), second)
        assert accountant.snapshot().running_avg_latency_ms == (first + second) / 2

    def test_example_sequence(self):
        accountant = UsageAccountant()
        for latency in (100, 200, 300):
            accountant.record("gpt-4o", UsageCounts(), latency)
        assert accountant.snapshot().running_avg_latency_ms == 200


class TestMalformedInput:
    """Garbled usage or latency never raises."""

    def test_missing_usage_counts_as_zero(self):
        accountant = UsageAccountant()
        cost = accountant.record("gpt-4o", None, 50)
        stats = accountant.snapshot()
        assert cost == Decimal(0)
        assert stats.request_count == 1
        assert stats.total_tokens_in == 0

    def test_garbled_fields(self):
        accountant = UsageAccountant()
        accountant.record(
            "gpt-4o",
            {"prompt_tokens": "lots", "completion_tokens": -3, "total_tokens": None},
            float("nan"),
        )
        stats = accountant.snapshot()
        assert stats.total_tokens_in == 0
        assert stats.total_tokens_out == 0
        assert stats.running_avg_latency_ms == 0.0

    def test_overflowing_counts(self):
        accountant = UsageAccountant()
        cost = accountant.record(
            "gpt-4o",
            {"prompt_tokens": float("inf"), "completion_tokens": 1e400, "total_tokens": float("-inf")},
            120,
        )
        stats = accountant.snapshot()
        assert cost == Decimal(0)
        assert stats.request_count == 1
        assert stats.total_tokens_in == 0
        assert stats.total_tokens_out == 0

    def test_bool_counts_are_ignored(self):
        assert UsageCounts.from_payload({"prompt_tokens": True, "completion_tokens": 4}) == UsageCounts(
            prompt_tokens=0, completion_tokens=4, total_tokens=4
        )

    def test_example_from_raw_usage(self):
        accountant = UsageAccountant()
        cost = accountant.record("gpt-4o-mini", {"prompt_tokens": 1000, "completion_tokens": 500}, 1200)
        stats = accountant.snapshot()
        assert cost == Decimal("0.00045")
        assert stats.counts_by_provider == {"openai": 1}
        assert stats.counts_by_model == {"gpt-4o-mini": 1}


class TestFallbackObservability:
    """
    Property 6: 默认价格回退可观测

    Every cost computed with the fallback price pair is recorded by the
    tracker and written as a pricing_fallback event.
    """

    @settings(max_examples=50)
    @given(sequence=records)
    def test_tracker_counts_fallbacks(self, sequence):
        accountant = UsageAccountant()
        for model, usage, latency in sequence:
            accountant.record(model, usage, latency)

        fallback_models = [m for m, _, _ in sequence if m not in DEFAULT_PRICES]
        stats = accountant.fallback_tracker.get_stats()
        assert stats.total_fallbacks == len(fallback_models)
        assert set(stats.models) == set(fallback_models)

    def test_fallback_event_logged(self, tmp_path):
        logger = RequestLogger("accounting", enabled=True, log_dir=tmp_path)
        accountant = UsageAccountant(request_logger=logger)

        accountant.record("mystery-model", {"prompt_tokens": 1000, "completion_tokens": 1000}, 10)
        accountant.record("gpt-4o", {"prompt_tokens": 1}, 10)

        entries = logger.read_entries()
        assert len(entries) == 1
        assert entries[0]["event"] == "pricing_fallback"
        assert entries[0]["model"] == "mystery-model"
        assert entries[0]["cost_usd"] == "0.004000"

    def test_custom_price_table(self):
        table = PriceTable({})
        accountant = UsageAccountant(price_table=table)
        assert accountant.price_table is table


class TestDerivedStats:
    def test_success_rate(self):
        accountant = UsageAccountant()
        assert accountant.snapshot().success_rate == 0.0
        accountant.record("gpt-4o", UsageCounts(), 1)
        accountant.record("gpt-4o", UsageCounts(), 1)
        accountant.record("gpt-4o", UsageCounts(), 1)
        accountant.record_failure()
        stats = accountant.snapshot()
        assert stats.failed_request_count == 1
        assert stats.success_rate == 0.75

    def test_to_dict_serializes_cost_as_string(self):
        accountant = UsageAccountant()
        accountant.record("gpt-4o-mini", {"prompt_tokens": 1000, "completion_tokens": 500}, 10)
        data = accountant.snapshot().to_dict()
        assert data["total_cost"] == "0.00045000"
        assert data["request_count"] == 1
