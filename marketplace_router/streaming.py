"""
Server-sent event parsing for streamed chat completions.
"""

import codecs
import json
import time
from typing import Any, AsyncIterable, AsyncIterator, Callable

import httpx

from .dispatcher import DispatchError
from .models import StreamingChunk, UsageCounts


DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data: "


def _delta_content(payload: Any) -> str | None:
    try:
        content = payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


async def iter_sse_chunks(
    byte_stream: AsyncIterable[bytes],
    on_malformed: Callable[[str], Any] | None = None,
    on_usage: Callable[[UsageCounts], Any] | None = None,
) -> AsyncIterator[StreamingChunk]:
    """
    Parse an SSE byte stream into StreamingChunk values.

    Partial lines and partial UTF-8 sequences are buffered across reads.
    Only "data: " lines are considered. "[DONE]" yields a final chunk and
    stops reading; payloads that are not valid JSON are skipped and passed
    to on_malformed. If the body ends without "[DONE]" a final chunk is
    still yielded.

    Args:
        byte_stream: Async iterable of raw body bytes
        on_malformed: Called with each unparseable payload
        on_usage: Called with usage counts found in any payload

    Yields:
        Non-final chunks with content, then exactly one final chunk
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    def handle_line(line: str) -> tuple[StreamingChunk | None, bool]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None, False
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            return StreamingChunk(delta_content="", is_final=True), True
        try:
            payload = json.loads(data)
        except ValueError:
            if on_malformed is not None:
                on_malformed(data)
            return None, False
        if on_usage is not None and isinstance(payload, dict) and "usage" in payload:
            on_usage(UsageCounts.from_payload(payload.get("usage")))
        content = _delta_content(payload)
        if not content:
            return None, False
        return StreamingChunk(delta_content=content), False

    async for raw in byte_stream:
        buffer += decoder.decode(raw)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            chunk, done = handle_line(line)
            if chunk is not None:
                yield chunk
            if done:
                return

    buffer += decoder.decode(b"", final=True)
    if buffer:
        chunk, done = handle_line(buffer)
        if chunk is not None:
            yield chunk
        if done:
            return
    yield StreamingChunk(delta_content="", is_final=True)


class ChatStream:
    """
    Lazy, finite, non-restartable sequence of StreamingChunk.

    The HTTP response is released when the sequence is exhausted, when
    aclose() is called, or when an ``async with`` block exits, whichever
    happens first.

    Example:
        async with await client.create_streaming_chat_completion(messages) as stream:
            async for chunk in stream:
                print(chunk.content, end="")
    """

    def __init__(
        self,
        response: httpx.Response,
        model: str,
        on_complete: Callable[["ChatStream"], Any] | None = None,
        on_close: Callable[["ChatStream"], Any] | None = None,
    ):
        """
        Initialize ChatStream.

        Args:
            response: Open streamed httpx.Response (owned by the stream)
            model: Requested model
            on_complete: Called once when the final chunk is produced
            on_close: Called once when the stream is released
        """
        self._response = response
        self.model = model
        self._on_complete = on_complete
        self._on_close = on_close
        self._started_at = time.monotonic()
        self._closed = False
        self._completed = False
        self._parts: list[str] = []
        self.chunk_count = 0
        self.malformed_count = 0
        self.usage: UsageCounts | None = None
        self._chunks = iter_sse_chunks(
            response.aiter_bytes(),
            on_malformed=self._count_malformed,
            on_usage=self._store_usage,
        )

    def _count_malformed(self, data: str) -> None:
        self.malformed_count += 1

    def _store_usage(self, usage: UsageCounts) -> None:
        self.usage = usage

    @property
    def text(self) -> str:
        """Content received so far."""
        return "".join(self._parts)

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._started_at) * 1000

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> StreamingChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            chunk = await self._chunks.__anext__()
        except httpx.TimeoutException:
            await self.aclose()
            raise DispatchError("Stream timed out while reading", retryable=True)
        except httpx.TransportError as e:
            await self.aclose()
            raise DispatchError(f"Stream interrupted: {e}", retryable=True)
        except BaseException:
            await self.aclose()
            raise

        if chunk.is_final:
            self._completed = True
            if self._on_complete is not None:
                self._on_complete(self)
            await self.aclose()
        else:
            self.chunk_count += 1
            self._parts.append(chunk.delta_content)
        return chunk

    async def aclose(self) -> None:
        """Release the underlying response. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._chunks.aclose()
        finally:
            await self._response.aclose()
            if self._on_close is not None:
                self._on_close(self)

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def collect(self) -> str:
        """Consume the rest of the stream and return the full text."""
        async for _ in self:
            pass
        return self.text
