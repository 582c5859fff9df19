"""
MarketplaceClient - unified entry point for the marketplace chat backend.

Integrates the request formatter, HTTP dispatcher, streaming adapter,
heuristic optimizer and usage accountant behind a single API.
"""

import time
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

import httpx

from .accounting import RunningStats, UsageAccountant
from .config import ClientConfig, ConfigError, ConfigManager
from .dispatcher import ContextHeaders, DispatchError, HttpDispatcher
from .formatter import ChatCompletionOptions, build_request, prompt_preview
from .models import (
    ChatChoice,
    ChatCompletion,
    ChatMessage,
    CompletionMetadata,
    EmbeddingResponse,
    ModelInfo,
    UsageCounts,
)
from .optimizer import Goal, HeuristicOptimizer, RouteDecision
from .pricing import PriceTable, PricingError, to_decimal
from .request_logger import RequestLogger
from .resolver import resolve_provider
from .streaming import ChatStream


MessagesInput = Iterable[ChatMessage | Mapping[str, Any]]


def _parse_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise DispatchError(
            f"Invalid JSON response: {e}", status_code=response.status_code, retryable=False
        )
    if not isinstance(data, dict):
        raise DispatchError(
            "Invalid response format: expected a JSON object",
            status_code=response.status_code,
            retryable=False,
        )
    return data


def _parse_choices(data: dict) -> list[ChatChoice]:
    choices = []
    for index, raw in enumerate(data.get("choices") or []):
        if not isinstance(raw, dict):
            continue
        message = raw.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        role = message.get("role") if isinstance(message, dict) else None
        choices.append(
            ChatChoice(
                index=raw.get("index", index),
                message=ChatMessage(
                    role=role if role in ("system", "user", "assistant") else "assistant",
                    content=content if isinstance(content, str) else "",
                ),
                finish_reason=raw.get("finish_reason"),
            )
        )
    return choices


def _optional_price(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_decimal(value)
    except PricingError:
        return None


class MarketplaceClient:
    """
    统一接入客户端 - single API for the marketplace multi-provider backend.

    Features:
    - Chat completions, streaming chat completions and embeddings
    - Model selection by explicit model, optimization goal, or default model
    - Per-request cost from the static price table
    - Running usage statistics owned by this client (or an injected accountant)

    Example:
        async with MarketplaceClient(ClientConfig(api_key="...")) as client:
            completion = await client.create_chat_completion(
                [{"role": "user", "content": "Hello"}]
            )
            print(completion.text, completion.metadata.cost_usd)
    """

    def __init__(
        self,
        config: ClientConfig,
        price_table: PriceTable | None = None,
        accountant: UsageAccountant | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep=None,
        request_logger: RequestLogger | None = None,
        proxy_url: str | None = None,
        limits: httpx.Limits | None = None,
    ):
        """
        Initialize MarketplaceClient.

        Args:
            config: Client configuration
            price_table: Price table. If None, uses the accountant's or the defaults.
            accountant: Shared UsageAccountant. If None, the client owns a new one.
            http_client: Optional httpx.AsyncClient (e.g. with a mock transport)
            sleep: Optional coroutine function for retry backoff
            request_logger: Optional RequestLogger. If None, creates one named "client".
            proxy_url: Optional outbound proxy
            limits: Optional connection pool limits

        Raises:
            ConfigError: If the configuration is invalid
        """
        errors = config.validate()
        if errors:
            raise ConfigError(f"Invalid client configuration: {'; '.join(errors)}")

        self._config = config
        self._request_logger = request_logger or RequestLogger("client")
        if accountant is None:
            accountant = UsageAccountant(
                price_table=price_table, request_logger=self._request_logger
            )
        self._accountant = accountant
        self._price_table = price_table if price_table is not None else accountant.price_table
        self._optimizer = HeuristicOptimizer(self._price_table)
        self._dispatcher = HttpDispatcher(
            base_url=config.base_url,
            timeout_ms=config.timeout_ms,
            retries=config.retries,
            backoff_base_ms=config.backoff_base_ms,
            client=http_client,
            sleep=sleep,
            request_logger=self._request_logger,
            proxy_url=proxy_url,
            limits=limits,
        )
        self._context = ContextHeaders(team_id=config.team_id, user_id=config.user_id)

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None, **kwargs: Any) -> "MarketplaceClient":
        """
        Create a client from a YAML configuration file.

        Args:
            config_path: Path to the configuration file
            **kwargs: Extra constructor arguments (e.g. http_client)
        """
        manager = ConfigManager(config_path)
        config = manager.load()
        http_limits = httpx.Limits(
            max_connections=config.http_client.max_connections,
            max_keepalive_connections=config.http_client.max_keepalive_connections,
        )
        kwargs.setdefault("proxy_url", manager.get_proxy_url())
        kwargs.setdefault("limits", http_limits)
        return cls(config.client, price_table=config.pricing, **kwargs)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def accountant(self) -> UsageAccountant:
        return self._accountant

    @property
    def optimizer(self) -> HeuristicOptimizer:
        return self._optimizer

    @property
    def dispatcher(self) -> HttpDispatcher:
        return self._dispatcher

    def select_model(self, options: ChatCompletionOptions | None = None) -> str:
        """
        Resolve the model for a call.

        Precedence: options.model, then the optimizer pick for
        options.optimize_for among config.candidate_models, then
        config.default_model.
        """
        if options is not None and options.model:
            return options.model
        if options is not None and options.optimize_for:
            return self._optimizer.pick_model(options.optimize_for, self._config.candidate_models)
        return self._config.default_model

    def pick_model(self, goal: Goal) -> RouteDecision:
        """Optimizer decision for the configured candidate models."""
        return self._optimizer.route(goal, self._config.candidate_models)

    async def create_chat_completion(
        self,
        messages: MessagesInput,
        options: ChatCompletionOptions | Mapping[str, Any] | None = None,
    ) -> ChatCompletion:
        """
        Create a chat completion.

        Args:
            messages: ChatMessage instances or {role, content} mappings
            options: ChatCompletionOptions or an equivalent mapping

        Returns:
            ChatCompletion with usage and metadata (latency, cost, provider)

        Raises:
            ValidationError: If messages or options are invalid
            ConfigError: If the API key is missing
            DispatchError: If the request could not be completed
        """
        options = self._coerce_options(options)
        model = self.select_model(options)
        request = build_request(model, messages, options, stream=False)

        started = time.monotonic()
        try:
            response = await self._dispatcher.send(request, self._config.api_key, self._context)
            data = _parse_json(response)
        except DispatchError as e:
            self._accountant.record_failure()
            self._request_logger.log_request(
                model=model,
                prompt=prompt_preview(request),
                response_text=None,
                input_tokens=None,
                output_tokens=None,
                duration_ms=(time.monotonic() - started) * 1000,
                success=False,
                error_message=str(e),
                provider=resolve_provider(model),
                attempts=e.attempts,
            )
            raise
        latency_ms = (time.monotonic() - started) * 1000

        served_model = data.get("model") if isinstance(data.get("model"), str) and data.get("model") else model
        usage = UsageCounts.from_payload(data.get("usage"))
        provider = resolve_provider(served_model)
        pricing_fallback = self._price_table.lookup(served_model).is_fallback

        if self._config.cost_tracking:
            cost = self._accountant.record(served_model, usage, latency_ms)
        else:
            cost = self._price_table.estimate_cost(
                served_model, usage.prompt_tokens, usage.completion_tokens
            )

        completion = ChatCompletion(
            id=str(data.get("id", "")),
            model=served_model,
            choices=_parse_choices(data),
            usage=usage,
            metadata=CompletionMetadata(
                latency_ms=latency_ms,
                cost_usd=cost,
                provider=provider,
                pricing_fallback=pricing_fallback,
            ),
            raw_response=data,
        )

        self._request_logger.log_request(
            model=served_model,
            prompt=prompt_preview(request),
            response_text=completion.text,
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
            duration_ms=latency_ms,
            success=True,
            cost_usd=cost,
            provider=provider,
            pricing_fallback=pricing_fallback,
        )
        return completion

    async def create_streaming_chat_completion(
        self,
        messages: MessagesInput,
        options: ChatCompletionOptions | Mapping[str, Any] | None = None,
    ) -> ChatStream:
        """
        Create a streaming chat completion.

        The connection is opened (with retries) before this returns; content
        is read lazily while iterating the returned ChatStream. Usage is
        recorded once, when the stream completes and the backend reported
        token counts.

        Raises:
            ValidationError: If messages or options are invalid
            ConfigError: If the API key is missing
            DispatchError: If the stream could not be opened
        """
        options = self._coerce_options(options)
        model = self.select_model(options)
        request = build_request(model, messages, options, stream=True)
        prompt = prompt_preview(request)

        started = time.monotonic()
        try:
            response = await self._dispatcher.open_stream(
                request,
                self._config.api_key,
                self._context,
                endpoint="/chat/completions/stream",
            )
        except DispatchError as e:
            self._accountant.record_failure()
            self._request_logger.log_stream_request(
                model=model,
                prompt=prompt,
                total_chunks=0,
                total_text_length=0,
                duration_ms=(time.monotonic() - started) * 1000,
                success=False,
                error_message=str(e),
            )
            raise

        def on_complete(stream: ChatStream) -> None:
            if stream.usage is not None and self._config.cost_tracking:
                self._accountant.record(model, stream.usage, (time.monotonic() - started) * 1000)

        def on_close(stream: ChatStream) -> None:
            self._request_logger.log_stream_request(
                model=model,
                prompt=prompt,
                total_chunks=stream.chunk_count,
                total_text_length=len(stream.text),
                duration_ms=(time.monotonic() - started) * 1000,
                success=stream.completed,
                error_message=None if stream.completed else "stream closed before completion",
                malformed_payloads=stream.malformed_count,
            )

        return ChatStream(response, model, on_complete=on_complete, on_close=on_close)

    async def create_embedding(
        self,
        input: str | list[str],
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
    ) -> EmbeddingResponse:
        """
        Create embeddings for one or more input strings.

        Raises:
            ConfigError: If the API key is missing
            DispatchError: If the request could not be completed
        """
        body: dict[str, Any] = {"model": model, "input": input}
        if dimensions is not None:
            body["dimensions"] = dimensions

        started = time.monotonic()
        try:
            response = await self._dispatcher.request(
                "POST", "/embeddings", self._config.api_key, json=body, context_headers=self._context
            )
            data = _parse_json(response)
        except DispatchError:
            self._accountant.record_failure()
            raise
        latency_ms = (time.monotonic() - started) * 1000

        embeddings = []
        for item in data.get("data") or []:
            if isinstance(item, dict) and isinstance(item.get("embedding"), list):
                embeddings.append(item["embedding"])
        usage = UsageCounts.from_payload(data.get("usage"))
        served_model = data.get("model") or model
        if self._config.cost_tracking:
            self._accountant.record(served_model, usage, latency_ms)
        return EmbeddingResponse(model=served_model, embeddings=embeddings, usage=usage)

    async def list_models(self) -> list[ModelInfo]:
        """
        List the models offered by the backend.

        Raises:
            DispatchError: If the request could not be completed
        """
        response = await self._dispatcher.request(
            "GET", "/models", self._config.api_key, context_headers=self._context
        )
        data = _parse_json(response)
        models = []
        for item in data.get("data") or []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            model_id = str(item["id"])
            models.append(
                ModelInfo(
                    id=model_id,
                    provider=item.get("provider") or resolve_provider(model_id),
                    context_length=item.get("context_length"),
                    cost_per_input_token=_optional_price(item.get("cost_per_input_token")),
                    cost_per_output_token=_optional_price(item.get("cost_per_output_token")),
                    supports_streaming=bool(item.get("supports_streaming", False)),
                    supports_function_calling=bool(item.get("supports_function_calling", False)),
                )
            )
        return models

    def get_usage_stats(self) -> RunningStats:
        """Snapshot of the running statistics."""
        return self._accountant.snapshot()

    def reset_usage_stats(self) -> None:
        """Zero all running statistics."""
        self._accountant.reset()

    def estimate_cost(self, model: str, input_tokens: int, output_tokens: int = 0) -> Decimal:
        """
        Estimate cost for a request; unknown models use the fallback prices.

        Returns:
            Estimated cost in USD
        """
        return self._price_table.estimate_cost(model, input_tokens, output_tokens)

    @staticmethod
    def _coerce_options(
        options: ChatCompletionOptions | Mapping[str, Any] | None,
    ) -> ChatCompletionOptions:
        if options is None:
            return ChatCompletionOptions()
        if isinstance(options, ChatCompletionOptions):
            return options
        return ChatCompletionOptions.from_dict(dict(options))

    async def aclose(self) -> None:
        await self._dispatcher.aclose()

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


async def quick_chat(
    api_key: str,
    message: str,
    options: ChatCompletionOptions | Mapping[str, Any] | None = None,
    http_client: httpx.AsyncClient | None = None,
    **config_overrides: Any,
) -> str:
    """Send a single user message and return the reply text."""
    config = ClientConfig(api_key=api_key).with_overrides(**config_overrides)
    async with MarketplaceClient(config, http_client=http_client) as client:
        completion = await client.create_chat_completion(
            [ChatMessage(role="user", content=message)], options
        )
        return completion.text


def quick_estimate_cost(model: str, input_tokens: int, output_tokens: int = 0) -> Decimal:
    """Estimate cost with the default price table, without creating a client."""
    return PriceTable().estimate_cost(model, input_tokens, output_tokens)
