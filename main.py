"""
Marketplace Router Usage Example

This script demonstrates the complete call flow of the marketplace router:
1. Estimate costs from the static price table
2. Validate requests and pick models by optimization goal
3. Make chat completions against the marketplace backend
4. View running usage statistics
"""

import asyncio
import os

from marketplace_router import (
    ChatCompletionOptions,
    ClientConfig,
    ConfigError,
    DispatchError,
    HeuristicOptimizer,
    MarketplaceClient,
    PriceTable,
    UsageAccountant,
    ValidationError,
    build_request,
    resolve_provider,
)


def load_config() -> ClientConfig | None:
    """Build a client config from MARKETPLACE_API_KEY, if set."""
    api_key = os.getenv("MARKETPLACE_API_KEY")
    if not api_key:
        return None
    base_url = os.getenv("MARKETPLACE_BASE_URL")
    config = ClientConfig.preset("balanced", api_key)
    if base_url:
        config = config.with_overrides(base_url=base_url)
    return config


def cost_estimation_example():
    """
    Cost estimation example.

    Demonstrates:
    - Exact per-token pricing from the price table
    - Fallback pricing for unknown models
    """
    print("=" * 60)
    print("Cost Estimation Example")
    print("=" * 60)

    table = PriceTable()
    for model in ["gpt-4o-mini", "claude-3-haiku-20240307", "gemini-1.5-flash", "mistral-large"]:
        lookup = table.lookup(model)
        cost = table.estimate_cost(model, 1000, 500)
        note = " (fallback price)" if lookup.is_fallback else ""
        print(f"  {model:<28} provider={resolve_provider(model):<10} 1000 in / 500 out = ${cost}{note}")


def request_validation_example():
    """
    Request validation example.

    Demonstrates:
    - Every validation problem is reported at once
    """
    print("\n" + "=" * 60)
    print("Request Validation Example")
    print("=" * 60)

    invalid = [
        ([], None),
        ([{"role": "robot", "content": "Hello"}], None),
        ([{"role": "user", "content": "Hello"}], ChatCompletionOptions(temperature=3, max_tokens=0)),
    ]
    for messages, options in invalid:
        try:
            build_request("gpt-4o-mini", messages, options)
        except ValidationError as e:
            print(f"\nInvalid request: {messages}")
            print(f"  Errors: {e.errors}")


def optimizer_example():
    """
    Heuristic optimizer example.

    Demonstrates:
    - Static model picks per optimization goal
    """
    print("\n" + "=" * 60)
    print("Optimizer Example")
    print("=" * 60)

    optimizer = HeuristicOptimizer()
    candidates = ["gpt-4o-mini", "claude-3-haiku-20240307", "gemini-1.5-flash", "gpt-4o"]
    for goal in ["cost", "speed", "quality", "balanced"]:
        decision = optimizer.route(goal, candidates)
        print(f"  {goal:<9} -> {decision.model} ({decision.reasoning})")


def accounting_example():
    """
    Usage accounting example.

    Demonstrates:
    - Recording usage without a backend
    - Running averages and per-provider counts
    """
    print("\n" + "=" * 60)
    print("Usage Accounting Example")
    print("=" * 60)

    accountant = UsageAccountant()
    accountant.record("gpt-4o-mini", {"prompt_tokens": 1000, "completion_tokens": 500}, 1200)
    accountant.record("claude-3-haiku-20240307", {"prompt_tokens": 800, "completion_tokens": 200}, 1800)
    accountant.record("unreleased-model", {"prompt_tokens": 100, "completion_tokens": 100}, 900)

    stats = accountant.snapshot()
    print(f"  Requests: {stats.request_count}")
    print(f"  Total cost: ${stats.total_cost}")
    print(f"  Average latency: {stats.running_avg_latency_ms:.1f} ms")
    print(f"  By provider: {stats.counts_by_provider}")
    print(f"  Fallback-priced models: {accountant.fallback_tracker.get_stats().get_summary()['unpriced_models']}")


async def full_integration_example():
    """
    Full integration example with actual API calls.

    Requires MARKETPLACE_API_KEY (and optionally MARKETPLACE_BASE_URL).
    """
    print("\n" + "=" * 60)
    print("Full Integration Example (requires a running backend)")
    print("=" * 60)

    config = load_config()
    if config is None:
        print("\nSkipping: MARKETPLACE_API_KEY not set.")
        return

    try:
        async with MarketplaceClient(config) as client:
            completion = await client.create_chat_completion(
                [{"role": "user", "content": "Say hello in one sentence."}],
                {"optimize_for": "cost", "max_tokens": 50},
            )
            print(f"\nModel: {completion.model} ({completion.metadata.provider})")
            print(f"Reply: {completion.text}")
            print(f"Cost: ${completion.metadata.cost_usd}")
            print(f"Latency: {completion.metadata.latency_ms:.0f} ms")
            print(f"Stats: {client.get_usage_stats().to_dict()}")
    except (ConfigError, DispatchError) as e:
        print(f"\nRequest failed: {e}")


async def main():
    """Run all examples."""
    cost_estimation_example()
    request_validation_example()
    optimizer_example()
    accounting_example()

    await full_integration_example()

    print("\n" + "=" * 60)
    print("Examples completed!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
