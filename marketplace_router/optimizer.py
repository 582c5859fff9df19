"""
Heuristic model optimizer ("ML router").
Picks a model for a coarse optimization goal from static tables.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Literal

from .pricing import PriceTable
from .resolver import resolve_provider


Goal = Literal["cost", "speed", "quality", "balanced"]
GOALS: tuple[str, ...] = ("cost", "speed", "quality", "balanced")


@dataclass
class RouteDecision:
    """Result of an optimization decision."""
    model: str
    provider: str
    goal: str
    predicted_cost_per_token: Decimal
    predicted_latency_ms: int
    reasoning: str


class RouterError(Exception):
    """Exception raised when no model can be picked."""
    pass


class HeuristicOptimizer:
    """
    Static-table model picker.

    Goals:
    - cost: lowest average of input and output price per token
    - speed: lowest typical latency
    - quality: best model per provider, in QUALITY_PICKS order
    - balanced: fixed compromise models, in BALANCED_PICKS order

    Ties go to the earlier candidate. The tables are read on every call and
    nothing is learned from past requests.
    """

    # Typical latency observed per model (ms)
    TYPICAL_LATENCY_MS: dict[str, int] = {
        "gpt-4o-mini": 1800,
        "claude-3-haiku-20240307": 2200,
        "gemini-1.5-flash": 1600,
    }

    # Used when a model has no entry above
    PROVIDER_LATENCY_MS: dict[str, int] = {
        "openai": 2000,
        "anthropic": 2500,
        "google": 1800,
    }
    DEFAULT_LATENCY_MS = 2000

    # (provider, best model) in preference order
    QUALITY_PICKS: list[tuple[str, str]] = [
        ("anthropic", "claude-3-5-sonnet-20241022"),
        ("openai", "gpt-4o"),
        ("google", "gemini-1.5-pro"),
    ]

    BALANCED_PICKS: list[str] = [
        "gpt-4o-mini",
        "claude-3-haiku-20240307",
        "gemini-1.5-flash",
    ]

    def __init__(self, price_table: PriceTable | None = None):
        """
        Initialize HeuristicOptimizer.

        Args:
            price_table: Prices used for the cost goal. If None, uses defaults.
        """
        self.price_table = price_table if price_table is not None else PriceTable()

    def typical_latency_ms(self, model_id: str) -> int:
        if model_id in self.TYPICAL_LATENCY_MS:
            return self.TYPICAL_LATENCY_MS[model_id]
        return self.PROVIDER_LATENCY_MS.get(resolve_provider(model_id), self.DEFAULT_LATENCY_MS)

    def average_price(self, model_id: str) -> Decimal:
        return self.price_table.lookup(model_id).entry.average_price

    def pick_model(self, goal: Goal, candidates: Iterable[str]) -> str:
        """
        Pick a model for the goal.

        Args:
            goal: 'cost', 'speed', 'quality' or 'balanced'
            candidates: Candidate model ids; order breaks ties

        Returns:
            Selected model id

        Raises:
            RouterError: If goal is unknown or there are no candidates
        """
        return self.route(goal, candidates).model

    def route(self, goal: Goal, candidates: Iterable[str]) -> RouteDecision:
        """Pick a model and report the static figures behind the choice."""
        if goal not in GOALS:
            raise RouterError(f"Invalid optimization goal: {goal}")

        if isinstance(candidates, str):
            raise RouterError("candidates must be a collection of model ids, not a single string")
        ordered = list(dict.fromkeys(candidates or []))
        if not ordered:
            raise RouterError(f"No candidate models for goal '{goal}'")

        if goal == "cost":
            model = min(ordered, key=self.average_price)
            reasoning = "lowest average price per token"
        elif goal == "speed":
            model = min(ordered, key=self.typical_latency_ms)
            reasoning = "lowest typical latency"
        elif goal == "quality":
            model = self._first_listed([m for _, m in self.QUALITY_PICKS], ordered)
            reasoning = "best model for its provider"
            if model is None:
                model = ordered[0]
                reasoning = "no preferred quality model among candidates; first candidate"
        else:
            model = self._first_listed(self.BALANCED_PICKS, ordered)
            reasoning = "fixed balanced pick"
            if model is None:
                model = min(ordered, key=self.average_price)
                reasoning = "no balanced pick among candidates; lowest average price"

        return RouteDecision(
            model=model,
            provider=resolve_provider(model),
            goal=goal,
            predicted_cost_per_token=self.average_price(model),
            predicted_latency_ms=self.typical_latency_ms(model),
            reasoning=reasoning,
        )

    @staticmethod
    def _first_listed(preferred: list[str], candidates: list[str]) -> str | None:
        available = set(candidates)
        for model in preferred:
            if model in available:
                return model
        return None
