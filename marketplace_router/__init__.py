"""
Marketplace Router - 多供应商模型路由与计费统计

Client-side core for a multi-provider AI marketplace: resolves providers
from model ids, dispatches requests to the unified backend with retry and
backoff, streams completions, and accounts cost and usage per request.

Example usage:
    from marketplace_router import ClientConfig, MarketplaceClient

    async with MarketplaceClient(ClientConfig(api_key="mk-...")) as client:
        completion = await client.create_chat_completion(
            [{"role": "user", "content": "Hello, world!"}],
            {"optimize_for": "cost"},
        )
        print(completion.text)
        print(f"Cost: ${completion.metadata.cost_usd}")
"""

__version__ = "0.1.0"

# Core data models
from .models import (
    ChatMessage,
    ChatRequest,
    ChatChoice,
    ChatCompletion,
    CompletionMetadata,
    EmbeddingResponse,
    ModelInfo,
    StreamingChunk,
    UsageCounts,
)

# Configuration management
from .config import ClientConfig, Config, ConfigError, ConfigManager, PROFILES

# Pricing
from .pricing import PriceEntry, PriceLookup, PriceTable, PricingError

# Provider resolution
from .resolver import resolve_provider, UNKNOWN_PROVIDER

# Request formatting
from .formatter import ChatCompletionOptions, ValidationError, build_request, format_request

# HTTP dispatch
from .dispatcher import ContextHeaders, DispatchError, HttpDispatcher

# Streaming
from .streaming import ChatStream, iter_sse_chunks

# Usage accounting
from .accounting import RunningStats, UsageAccountant

# Pricing fallback tracker
from .fallback_tracker import PricingFallbackEvent, PricingFallbackStats, PricingFallbackTracker

# Optimizer
from .optimizer import HeuristicOptimizer, RouteDecision, RouterError

# Request logger
from .request_logger import RequestLogger

# Main client (unified entry point)
from .client import MarketplaceClient, quick_chat, quick_estimate_cost

__all__ = [
    # Version
    "__version__",
    # Main entry point
    "MarketplaceClient",
    "quick_chat",
    "quick_estimate_cost",
    # Data models
    "ChatMessage",
    "ChatRequest",
    "ChatChoice",
    "ChatCompletion",
    "CompletionMetadata",
    "EmbeddingResponse",
    "ModelInfo",
    "StreamingChunk",
    "UsageCounts",
    # Configuration
    "ClientConfig",
    "Config",
    "ConfigError",
    "ConfigManager",
    "PROFILES",
    # Pricing
    "PriceEntry",
    "PriceLookup",
    "PriceTable",
    "PricingError",
    # Resolver
    "resolve_provider",
    "UNKNOWN_PROVIDER",
    # Formatter
    "ChatCompletionOptions",
    "ValidationError",
    "build_request",
    "format_request",
    # Dispatcher
    "ContextHeaders",
    "DispatchError",
    "HttpDispatcher",
    # Streaming
    "ChatStream",
    "iter_sse_chunks",
    # Accounting
    "RunningStats",
    "UsageAccountant",
    # Fallback tracker
    "PricingFallbackEvent",
    "PricingFallbackStats",
    "PricingFallbackTracker",
    # Optimizer
    "HeuristicOptimizer",
    "RouteDecision",
    "RouterError",
    # Logger
    "RequestLogger",
]
