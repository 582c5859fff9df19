"""
Provider resolution from model identifiers.
"""

from typing import Callable


UNKNOWN_PROVIDER = "unknown"


# Evaluated top to bottom, first match wins. A model name matching several
# rules (e.g. "gpt-llama") belongs to the earliest listed provider.
PROVIDER_RULES: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("openai", lambda name: name.startswith("gpt-")),
    ("anthropic", lambda name: "claude" in name),
    ("google", lambda name: "gemini" in name),
    ("cohere", lambda name: "command" in name),
    ("ollama", lambda name: "llama" in name),
    ("openai", lambda name: name.startswith("text-embedding-")),
)


def resolve_provider(model_id: str) -> str:
    """
    Map a model identifier to its provider name.

    Args:
        model_id: Model identifier (e.g., 'gpt-4o-mini', 'claude-3-haiku-20240307')

    Returns:
        Provider name, or UNKNOWN_PROVIDER when no rule matches
    """
    if not isinstance(model_id, str):
        return UNKNOWN_PROVIDER
    name = model_id.strip().lower()
    for provider, matches in PROVIDER_RULES:
        if matches(name):
            return provider
    return UNKNOWN_PROVIDER
