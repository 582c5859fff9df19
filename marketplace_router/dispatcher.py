"""
HTTP dispatcher for the unified chat completions backend.

Sends requests with bearer auth and optional team/user context headers,
applies a per-attempt timeout, and retries transient failures with
exponential backoff. 4xx responses fail fast.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from .config import ConfigError
from .formatter import format_request
from .models import ChatRequest
from .request_logger import RequestLogger


class DispatchError(Exception):
    """Exception raised when a request could not be completed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        attempts: int = 1,
    ):
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.attempts = attempts
        prefix = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"{prefix}{message}")

    @property
    def kind(self) -> str:
        """'transient' for retryable failures, 'client' otherwise."""
        return "transient" if self.retryable else "client"


_CONTEXT_KEYS = {
    "team_id": "team_id",
    "teamId": "team_id",
    "x-team-id": "team_id",
    "user_id": "user_id",
    "userId": "user_id",
    "x-user-id": "user_id",
}


@dataclass(frozen=True)
class ContextHeaders:
    """Optional team/user context forwarded as x-team-id / x-user-id."""
    team_id: str | None = None
    user_id: str | None = None

    @classmethod
    def from_value(cls, value: "ContextHeaders | dict[str, Any] | None") -> "ContextHeaders":
        if value is None:
            return cls()
        if isinstance(value, ContextHeaders):
            return value
        if isinstance(value, dict):
            unknown = sorted(set(value) - set(_CONTEXT_KEYS))
            if unknown:
                raise ConfigError(f"Unknown context header option(s): {', '.join(unknown)}")
            resolved = {_CONTEXT_KEYS[key]: item for key, item in value.items()}
            return cls(**resolved)
        raise ConfigError(f"Unsupported context headers: {type(value).__name__}")

    def to_headers(self) -> dict[str, str]:
        headers = {}
        if self.team_id:
            headers["x-team-id"] = self.team_id
        if self.user_id:
            headers["x-user-id"] = self.user_id
        return headers


def is_retryable_status(status_code: int) -> bool:
    """Server errors are transient; every other non-2xx status is final."""
    return status_code >= 500


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return response.reason_phrase or "Request failed"


class HttpDispatcher:
    """
    Async HTTP dispatcher with timeout and retry-with-backoff.

    Attempts are made at most retries + 1 times. Between attempts the
    dispatcher sleeps 2**attempt * backoff_base_ms milliseconds. Task
    cancellation is never retried.
    """

    def __init__(
        self,
        base_url: str,
        timeout_ms: int = 30_000,
        retries: int = 3,
        backoff_base_ms: int = 1000,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        request_logger: RequestLogger | None = None,
        proxy_url: str | None = None,
        limits: httpx.Limits | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            base_url: Backend base URL (e.g. http://localhost:3001/api/v1)
            timeout_ms: Per-attempt timeout in milliseconds
            retries: Retries after the first attempt for transient failures
            backoff_base_ms: Base delay for exponential backoff
            client: Optional httpx.AsyncClient (owned by the caller)
            sleep: Coroutine function used for backoff delays
            request_logger: Optional logger for retry events
            proxy_url: Optional outbound proxy
            limits: Optional connection pool limits
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self.retries = retries
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep or asyncio.sleep
        self._request_logger = request_logger
        self._owns_client = client is None
        if client is None:
            client_kwargs: dict[str, Any] = {
                "timeout": timeout_ms / 1000,
                "limits": limits or httpx.Limits(max_connections=100, max_keepalive_connections=20),
            }
            if proxy_url:
                client_kwargs["proxy"] = proxy_url
            client = httpx.AsyncClient(**client_kwargs)
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds after the given zero-based attempt."""
        return (2 ** attempt) * self.backoff_base_ms / 1000

    def build_headers(self, auth_key: str, context_headers: Any = None) -> dict[str, str]:
        """
        Build request headers.

        Raises:
            ConfigError: If auth_key is missing or context headers are invalid
        """
        if not isinstance(auth_key, str) or not auth_key.strip():
            raise ConfigError("API key is required and cannot be empty")
        headers = {
            "Authorization": f"Bearer {auth_key}",
            "Content-Type": "application/json",
        }
        headers.update(ContextHeaders.from_value(context_headers).to_headers())
        return headers

    async def send(
        self,
        request: ChatRequest,
        auth_key: str,
        context_headers: Any = None,
        endpoint: str = "/chat/completions",
    ) -> httpx.Response:
        """
        Send a chat completion request.

        Args:
            request: ChatRequest to send
            auth_key: Bearer token
            context_headers: ContextHeaders or {team_id, user_id} mapping
            endpoint: Endpoint path relative to base_url

        Returns:
            The 2xx httpx.Response, unparsed

        Raises:
            ConfigError: If auth_key is missing
            DispatchError: On a client error or after exhausting retries
        """
        return await self.request(
            "POST", endpoint, auth_key, json=format_request(request), context_headers=context_headers
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        auth_key: str,
        json: Any = None,
        context_headers: Any = None,
    ) -> httpx.Response:
        """Issue an HTTP request with retries. See send()."""
        headers = self.build_headers(auth_key, context_headers)
        url = f"{self.base_url}{endpoint}"

        async def attempt_once() -> httpx.Response:
            response = await self._client.request(
                method, url, headers=headers, json=json, timeout=self.timeout_ms / 1000
            )
            await response.aread()
            return response

        return await self._with_retries(attempt_once, endpoint)

    async def open_stream(
        self,
        request: ChatRequest,
        auth_key: str,
        context_headers: Any = None,
        endpoint: str = "/chat/completions",
    ) -> httpx.Response:
        """
        Open a streamed response without reading its body.

        Retries apply only until a 2xx status is received. The caller owns
        the returned response and must close it (see streaming.ChatStream).

        Raises:
            ConfigError: If auth_key is missing
            DispatchError: On a client error or after exhausting retries
        """
        headers = self.build_headers(auth_key, context_headers)
        url = f"{self.base_url}{endpoint}"
        body = format_request(request)

        async def attempt_once() -> httpx.Response:
            http_request = self._client.build_request(
                "POST", url, headers=headers, json=body, timeout=self.timeout_ms / 1000
            )
            response = await self._client.send(http_request, stream=True)
            if not response.is_success:
                try:
                    await response.aread()
                finally:
                    await response.aclose()
            return response

        return await self._with_retries(attempt_once, endpoint)

    async def _with_retries(
        self,
        attempt_once: Callable[[], Awaitable[httpx.Response]],
        endpoint: str,
    ) -> httpx.Response:
        max_attempts = self.retries + 1

        for attempt in range(max_attempts):
            started = time.monotonic()
            try:
                response = await attempt_once()
            except httpx.TimeoutException:
                last_error = DispatchError(
                    f"Request timed out after {self.timeout_ms} ms",
                    retryable=True,
                    attempts=attempt + 1,
                )
            except httpx.TransportError as e:
                last_error = DispatchError(
                    f"Network error: {e}",
                    retryable=True,
                    attempts=attempt + 1,
                )
            else:
                if response.is_success:
                    return response
                retryable = is_retryable_status(response.status_code)
                last_error = DispatchError(
                    f"API error: {_error_message(response)}",
                    status_code=response.status_code,
                    retryable=retryable,
                    attempts=attempt + 1,
                )
                if not retryable:
                    raise last_error

            self._log_attempt(endpoint, attempt, last_error, started)
            if attempt == max_attempts - 1:
                raise last_error
            await self._sleep(self.backoff_delay(attempt))

        raise DispatchError(f"No attempts made: retries={self.retries}", retryable=False)

    def _log_attempt(self, endpoint: str, attempt: int, error: DispatchError, started: float) -> None:
        if self._request_logger is None:
            return
        self._request_logger.log_event(
            "dispatch_attempt_failed",
            endpoint=endpoint,
            attempt=attempt + 1,
            status_code=error.status_code,
            error_message=error.message,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )

    async def aclose(self) -> None:
        """Close the underlying client if this dispatcher created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
