"""
Request formatting for the unified chat completions endpoint.
"""

from dataclasses import dataclass, fields
from typing import Any, Iterable, Literal, Mapping

from .models import ChatMessage, ChatRequest


class ValidationError(Exception):
    """Exception raised when request validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


OptimizationGoal = Literal["cost", "speed", "quality", "balanced"]


@dataclass
class ChatCompletionOptions:
    """Per-call options; unset fields are not sent."""
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop: str | list[str] | None = None
    optimize_for: OptimizationGoal | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ChatCompletionOptions":
        """Build options from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValidationError([f"unknown option: {key}" for key in unknown])
        return cls(**raw)

    def validate(self) -> list[str]:
        errors = []
        if self.model is not None and (not isinstance(self.model, str) or not self.model.strip()):
            errors.append("model must be a non-empty string")
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            errors.append("temperature must be between 0 and 2")
        if self.max_tokens is not None and (
            isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            errors.append("max_tokens must be a positive integer")
        if self.top_p is not None and not 0 <= self.top_p <= 1:
            errors.append("top_p must be between 0 and 1")
        for name in ("frequency_penalty", "presence_penalty"):
            value = getattr(self, name)
            if value is not None and not -2 <= value <= 2:
                errors.append(f"{name} must be between -2 and 2")
        if self.optimize_for is not None and self.optimize_for not in ("cost", "speed", "quality", "balanced"):
            errors.append("optimize_for must be one of: cost, speed, quality, balanced")
        return errors


_OPTIONAL_FIELDS = (
    "temperature",
    "max_tokens",
    "top_p",
    "frequency_penalty",
    "presence_penalty",
    "stop",
)


def build_request(
    model: str,
    messages: Iterable[ChatMessage | Mapping[str, Any]],
    options: ChatCompletionOptions | None = None,
    stream: bool = False,
) -> ChatRequest:
    """
    Validate messages and options and assemble a ChatRequest.

    Args:
        model: Model identifier to send
        messages: ChatMessage instances or {role, content} mappings
        options: Optional generation parameters
        stream: Whether a streamed response is requested

    Returns:
        ChatRequest ready for format_request()

    Raises:
        ValidationError: Listing every problem found
    """
    options = options or ChatCompletionOptions()
    errors = options.validate()

    parsed: list[ChatMessage] = []
    for index, raw in enumerate(messages or []):
        try:
            message = ChatMessage.from_value(raw)
        except TypeError as e:
            errors.append(f"messages[{index}]: {e}")
            continue
        errors.extend(f"messages[{index}]: {error}" for error in message.validate())
        parsed.append(message)

    if not parsed and not errors:
        errors.append("messages must contain at least one message")
    if not isinstance(model, str) or not model.strip():
        errors.append("model must be a non-empty string")
    if errors:
        raise ValidationError(errors)

    return ChatRequest(
        model=model,
        messages=parsed,
        temperature=options.temperature,
        max_tokens=options.max_tokens,
        stream=stream,
        top_p=options.top_p,
        frequency_penalty=options.frequency_penalty,
        presence_penalty=options.presence_penalty,
        stop=options.stop,
    )


def format_request(request: ChatRequest) -> dict[str, Any]:
    """
    Convert a ChatRequest into the JSON body of POST /chat/completions.

    Optional generation parameters are omitted when unset.
    """
    body: dict[str, Any] = {
        "model": request.model,
        "messages": [message.to_dict() for message in request.messages],
        "stream": bool(request.stream),
    }
    for name in _OPTIONAL_FIELDS:
        value = getattr(request, name)
        if value is not None:
            body[name] = value
    return body


def prompt_preview(request: ChatRequest) -> str:
    """Text of the last user message, for request logs."""
    for message in reversed(request.messages):
        if message.role == "user":
            return message.content
    return request.messages[-1].content if request.messages else ""
