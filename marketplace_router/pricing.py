"""
Static price table for per-token cost calculation.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from .models import UsageCounts


class PricingError(Exception):
    """Raised when a pricing configuration cannot be parsed."""
    pass


@dataclass(frozen=True)
class PriceEntry:
    """Per-token prices for a single model (USD)."""
    model_id: str
    input_price_per_token: Decimal
    output_price_per_token: Decimal

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        """Cost = input_tokens * input price + output_tokens * output price."""
        return (
            input_tokens * self.input_price_per_token
            + output_tokens * self.output_price_per_token
        )

    @property
    def average_price(self) -> Decimal:
        return (self.input_price_per_token + self.output_price_per_token) / 2


@dataclass(frozen=True)
class PriceLookup:
    """Result of a price lookup; is_fallback marks the default price pair."""
    entry: PriceEntry
    is_fallback: bool = False


DEFAULT_PRICES: dict[str, tuple[str, str]] = {
    "gpt-4o": ("0.000005", "0.000015"),
    "gpt-4o-mini": ("0.00000015", "0.0000006"),
    "claude-3-5-sonnet-20241022": ("0.000003", "0.000015"),
    "claude-3-haiku-20240307": ("0.00000025", "0.00000125"),
    "gemini-1.5-pro": ("0.0000035", "0.0000105"),
    "gemini-1.5-flash": ("0.000000075", "0.0000003"),
    "text-embedding-3-small": ("0.00000002", "0"),
    "text-embedding-3-large": ("0.00000013", "0"),
}

FALLBACK_MODEL_ID = "*"
FALLBACK_PRICE = PriceEntry(
    model_id=FALLBACK_MODEL_ID,
    input_price_per_token=Decimal("0.000001"),
    output_price_per_token=Decimal("0.000003"),
)

_PER_MILLION = Decimal(1_000_000)


def to_decimal(value: Any) -> Decimal:
    """Convert a configured price to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise PricingError(f"Invalid price: {value!r}")
    try:
        # str() keeps 0.1 as Decimal('0.1') instead of its binary expansion
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise PricingError(f"Invalid price: {value!r}") from e
    if not price.is_finite() or price < 0:
        raise PricingError(f"Price must be a non-negative number, got {value!r}")
    return price


def _parse_entry(model_id: str, raw: Any) -> PriceEntry:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return PriceEntry(model_id, to_decimal(raw[0]), to_decimal(raw[1]))
    if not isinstance(raw, Mapping):
        raise PricingError(f"Pricing for '{model_id}' must be a mapping")

    if "input_price_per_token" in raw or "output_price_per_token" in raw:
        input_price = to_decimal(raw.get("input_price_per_token", 0))
        output_price = to_decimal(raw.get("output_price_per_token", 0))
    else:
        input_price = to_decimal(raw.get("input_cost_per_1m", 0)) / _PER_MILLION
        output_price = to_decimal(raw.get("output_cost_per_1m", 0)) / _PER_MILLION
    return PriceEntry(model_id, input_price, output_price)


class PriceTable:
    """
    Immutable model -> price mapping with a default price pair.

    Unknown models are priced with the fallback pair instead of failing;
    lookup() reports when that happened.
    """

    def __init__(
        self,
        entries: Mapping[str, PriceEntry] | None = None,
        fallback: PriceEntry = FALLBACK_PRICE,
    ):
        """
        Initialize PriceTable.

        Args:
            entries: Mapping of model id to PriceEntry. If None, uses DEFAULT_PRICES.
            fallback: Price pair applied to models absent from the table
        """
        if entries is None:
            entries = {
                model: PriceEntry(model, Decimal(input_price), Decimal(output_price))
                for model, (input_price, output_price) in DEFAULT_PRICES.items()
            }
        self._entries: dict[str, PriceEntry] = dict(entries)
        self._fallback = fallback

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Any],
        fallback: Any = None,
        include_defaults: bool = True,
    ) -> "PriceTable":
        """
        Build a table from configuration data.

        Each model maps to {input_price_per_token, output_price_per_token},
        {input_cost_per_1m, output_cost_per_1m}, or an (input, output) pair.

        Args:
            raw: Model id -> price specification
            fallback: Optional price specification for unknown models
            include_defaults: Start from DEFAULT_PRICES and override entries

        Returns:
            PriceTable

        Raises:
            PricingError: If any price is malformed or negative
        """
        if not isinstance(raw, Mapping):
            raise PricingError("Pricing configuration must be a mapping")

        entries = dict(cls()._entries) if include_defaults else {}
        for model_id, spec in raw.items():
            entries[str(model_id)] = _parse_entry(str(model_id), spec)

        fallback_entry = FALLBACK_PRICE
        if fallback is not None:
            fallback_entry = _parse_entry(FALLBACK_MODEL_ID, fallback)
        return cls(entries, fallback_entry)

    @property
    def fallback(self) -> PriceEntry:
        return self._fallback

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def models(self) -> list[str]:
        return list(self._entries)

    def get(self, model_id: str) -> PriceEntry | None:
        return self._entries.get(model_id)

    def lookup(self, model_id: str) -> PriceLookup:
        """
        Find prices for a model.

        Args:
            model_id: Model identifier

        Returns:
            PriceLookup; is_fallback is True when the default pair was used
        """
        entry = self._entries.get(model_id) if isinstance(model_id, str) else None
        if entry is None:
            return PriceLookup(entry=self._fallback, is_fallback=True)
        return PriceLookup(entry=entry)

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int = 0) -> Decimal:
        """
        Estimate cost before making an API call.

        Args:
            model_id: Model identifier
            input_tokens: Number of input tokens
            output_tokens: Number of output tokens

        Returns:
            Cost in USD as an exact Decimal
        """
        usage = UsageCounts.from_payload(
            {"prompt_tokens": input_tokens, "completion_tokens": output_tokens}
        )
        return self.lookup(model_id).entry.calculate_cost(
            usage.prompt_tokens, usage.completion_tokens
        )
