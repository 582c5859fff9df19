"""
Fallback tracker for recording default-price usage on unknown models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List


@dataclass
class PricingFallbackEvent:
    """Record of a single cost computed with the fallback price pair."""
    timestamp: datetime
    model_id: str
    provider: str
    input_tokens: int
    output_tokens: int
    cost: Decimal


@dataclass
class PricingFallbackStats:
    """Statistics for pricing fallback events."""
    total_fallbacks: int = 0
    total_cost: Decimal = Decimal(0)
    models: dict[str, int] = field(default_factory=dict)
    events: List[PricingFallbackEvent] = field(default_factory=list)

    def add_event(self, event: PricingFallbackEvent):
        """Add a fallback event and update statistics."""
        self.events.append(event)
        self.total_fallbacks += 1
        self.total_cost += event.cost
        self.models[event.model_id] = self.models.get(event.model_id, 0) + 1

    def get_summary(self) -> dict:
        """Get a summary of fallback statistics."""
        return {
            "total_fallbacks": self.total_fallbacks,
            "total_cost": str(self.total_cost),
            "unpriced_models": sorted(self.models),
        }


class PricingFallbackTracker:
    """Tracker for costs priced with the default pair. One per accountant."""

    MAX_EVENTS = 1000

    def __init__(self):
        self.stats = PricingFallbackStats()

    def record_fallback(
        self,
        model_id: str,
        provider: str,
        input_tokens: int,
        output_tokens: int,
        cost: Decimal,
    ) -> PricingFallbackEvent:
        """
        Record a fallback pricing event.

        Args:
            model_id: Model that had no price table entry
            provider: Provider resolved for the model
            input_tokens: Prompt tokens billed
            output_tokens: Completion tokens billed
            cost: Cost computed with the fallback prices

        Returns:
            PricingFallbackEvent object
        """
        event = PricingFallbackEvent(
            timestamp=datetime.now(),
            model_id=model_id,
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
        )

        self.stats.add_event(event)
        if len(self.stats.events) > self.MAX_EVENTS:
            del self.stats.events[: -self.MAX_EVENTS]
        return event

    def get_stats(self) -> PricingFallbackStats:
        """Get current fallback statistics."""
        return self.stats

    def get_recent_events(self, limit: int = 10) -> List[PricingFallbackEvent]:
        """Get the most recent fallback events."""
        return self.stats.events[-limit:]

    def clear(self):
        """Clear all recorded events and statistics."""
        self.stats = PricingFallbackStats()
