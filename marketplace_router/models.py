"""
Core data models for the marketplace router.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal, Mapping


VALID_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class ChatMessage:
    """Provider-agnostic chat message."""
    role: Literal["system", "user", "assistant"]
    content: str

    @classmethod
    def from_value(cls, value: "ChatMessage | Mapping[str, Any]") -> "ChatMessage":
        """Build a ChatMessage from an instance or a {role, content} mapping."""
        if isinstance(value, ChatMessage):
            return value
        if isinstance(value, Mapping):
            return cls(role=value.get("role"), content=value.get("content"))
        raise TypeError(f"Unsupported message type: {type(value).__name__}")

    def validate(self) -> list[str]:
        """Validate the message, returning a list of errors."""
        errors = []
        if self.role not in VALID_ROLES:
            errors.append(f"role must be one of: {', '.join(VALID_ROLES)}")
        if not isinstance(self.content, str):
            errors.append("content must be a string")
        return errors

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """Unified chat completion request."""
    model: str
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop: str | list[str] | None = None


def _count(value: Any) -> int:
    # bool is an int subclass; reject it along with anything non-numeric
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if value != value or value < 0 or value == float("inf"):
        return 0
    return int(value)


@dataclass(frozen=True)
class UsageCounts:
    """Token usage reported by the backend."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> "UsageCounts":
        """
        Parse a usage object leniently.

        Missing or garbled fields count as zero. A missing total is derived
        from the prompt and completion counts.

        Args:
            payload: UsageCounts, mapping, or anything else (treated as empty)

        Returns:
            UsageCounts with non-negative integer fields
        """
        if isinstance(payload, UsageCounts):
            return payload
        if not isinstance(payload, Mapping):
            return cls()
        prompt = _count(payload.get("prompt_tokens"))
        completion = _count(payload.get("completion_tokens"))
        if "total_tokens" in payload:
            total = _count(payload.get("total_tokens"))
        else:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class StreamingChunk:
    """One incremental piece of a streamed completion."""
    delta_content: str
    is_final: bool = False

    @property
    def content(self) -> str:
        return self.delta_content


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: str | None = None


@dataclass
class CompletionMetadata:
    """Client-side metadata attached to every completion."""
    latency_ms: float
    cost_usd: Decimal
    provider: str
    pricing_fallback: bool = False


@dataclass
class ChatCompletion:
    """Parsed non-streaming chat completion response."""
    id: str
    model: str
    choices: list[ChatChoice]
    usage: UsageCounts
    metadata: CompletionMetadata
    raw_response: dict | None = field(default=None, repr=False)

    @property
    def text(self) -> str:
        """Content of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.content


@dataclass
class EmbeddingResponse:
    model: str
    embeddings: list[list[float]]
    usage: UsageCounts


@dataclass
class ModelInfo:
    """Model entry as listed by the backend."""
    id: str
    provider: str
    context_length: int | None = None
    cost_per_input_token: Decimal | None = None
    cost_per_output_token: Decimal | None = None
    supports_streaming: bool = False
    supports_function_calling: bool = False
