"""
Usage accountant: per-request cost and running statistics.
"""

import copy
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .fallback_tracker import PricingFallbackTracker
from .models import UsageCounts
from .pricing import PriceTable
from .request_logger import RequestLogger
from .resolver import resolve_provider


@dataclass
class RunningStats:
    """Aggregate counters for one client instance."""
    request_count: int = 0
    total_cost: Decimal = Decimal(0)
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    counts_by_provider: dict[str, int] = field(default_factory=dict)
    counts_by_model: dict[str, int] = field(default_factory=dict)
    running_avg_latency_ms: float = 0.0
    failed_request_count: int = 0

    @property
    def success_rate(self) -> float:
        attempted = self.request_count + self.failed_request_count
        if attempted == 0:
            return 0.0
        return self.request_count / attempted

    @property
    def average_cost_per_request(self) -> Decimal:
        if self.request_count == 0:
            return Decimal(0)
        return self.total_cost / self.request_count

    def snapshot(self) -> "RunningStats":
        """Independent copy; later updates do not affect it."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_count": self.request_count,
            "total_cost": str(self.total_cost),
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "counts_by_provider": dict(self.counts_by_provider),
            "counts_by_model": dict(self.counts_by_model),
            "running_avg_latency_ms": self.running_avg_latency_ms,
            "failed_request_count": self.failed_request_count,
            "success_rate": self.success_rate,
        }


def _latency(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if value != value or value < 0 or value == float("inf"):
        return 0.0
    return float(value)


class UsageAccountant:
    """
    计费统计 - computes request cost and folds it into RunningStats.

    Each completed request is recorded exactly once. Mutations are serialized
    with a lock, so one accountant may be shared by several clients or
    threads; request_count and total_cost never decrease except via reset().

    Malformed usage or latency values never raise: missing token counts are
    treated as zero and invalid latencies as 0 ms.
    """

    def __init__(
        self,
        price_table: PriceTable | None = None,
        stats: RunningStats | None = None,
        tracker: PricingFallbackTracker | None = None,
        request_logger: RequestLogger | None = None,
    ):
        """
        Initialize UsageAccountant.

        Args:
            price_table: Prices used for cost calculation. If None, uses defaults.
            stats: Initial statistics. If None, starts from zero.
            tracker: Tracker for fallback-priced requests. If None, creates one.
            request_logger: Optional logger for pricing fallback events
        """
        self._price_table = price_table if price_table is not None else PriceTable()
        self._stats = stats if stats is not None else RunningStats()
        self._tracker = tracker or PricingFallbackTracker()
        self._request_logger = request_logger
        self._lock = threading.Lock()

    @property
    def price_table(self) -> PriceTable:
        return self._price_table

    @property
    def fallback_tracker(self) -> PricingFallbackTracker:
        return self._tracker

    def record(self, model_id: str, usage: Any, latency_ms: Any) -> Decimal:
        """
        Record one completed request.

        Args:
            model_id: Model that served the request
            usage: UsageCounts or raw usage mapping (missing fields count as 0)
            latency_ms: Observed latency in milliseconds

        Returns:
            Cost of the request in USD
        """
        counts = UsageCounts.from_payload(usage)
        latency = _latency(latency_ms)
        model_key = model_id if isinstance(model_id, str) and model_id else "unknown"
        provider = resolve_provider(model_key)

        lookup = self._price_table.lookup(model_key)
        cost = lookup.entry.calculate_cost(counts.prompt_tokens, counts.completion_tokens)

        with self._lock:
            stats = self._stats
            stats.request_count += 1
            stats.total_cost += cost
            stats.total_tokens_in += counts.prompt_tokens
            stats.total_tokens_out += counts.completion_tokens
            stats.counts_by_provider[provider] = stats.counts_by_provider.get(provider, 0) + 1
            stats.counts_by_model[model_key] = stats.counts_by_model.get(model_key, 0) + 1

            n = stats.request_count
            if n == 1 or latency != stats.running_avg_latency_ms:
                # An equal sample leaves the mean unchanged
                stats.running_avg_latency_ms = (
                    stats.running_avg_latency_ms * (n - 1) + latency
                ) / n

            if lookup.is_fallback:
                self._tracker.record_fallback(
                    model_id=model_key,
                    provider=provider,
                    input_tokens=counts.prompt_tokens,
                    output_tokens=counts.completion_tokens,
                    cost=cost,
                )

        if lookup.is_fallback and self._request_logger is not None:
            self._request_logger.log_event(
                "pricing_fallback",
                model=model_key,
                provider=provider,
                cost_usd=str(cost),
            )
        return cost

    def record_failure(self) -> None:
        """Count a request that did not complete."""
        with self._lock:
            self._stats.failed_request_count += 1

    def snapshot(self) -> RunningStats:
        with self._lock:
            return self._stats.snapshot()

    def reset(self) -> None:
        """Zero every statistic in one step."""
        with self._lock:
            self._stats = RunningStats()
            self._tracker.clear()
