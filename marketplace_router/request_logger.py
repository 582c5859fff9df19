"""
Request logger for the marketplace router.

Records every call made through a client as JSON lines:
- timestamp
- duration
- token counts (input/output)
- model and resolved provider
- success/failure status

Logs are written per day to {log_dir}/{name}/{YYYY-MM-DD}.jsonl
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Optional


class RequestLogger:
    """JSON-lines request logger."""

    def __init__(self, name: str, enabled: Optional[bool] = None, log_dir: str | Path | None = None):
        """
        Initialize the request logger.

        Args:
            name: Logger name, used as the log sub-directory
            enabled: Whether logging is on. None reads MARKETPLACE_ROUTER_LOGGING.
            log_dir: Root directory. None reads MARKETPLACE_ROUTER_LOG_DIR (default "logs").
        """
        self.name = name

        if enabled is None:
            env_value = os.getenv("MARKETPLACE_ROUTER_LOGGING", "true").lower()
            self.enabled = env_value in ("true", "1", "yes", "on")
        else:
            self.enabled = enabled

        if log_dir is None:
            log_dir = os.getenv("MARKETPLACE_ROUTER_LOG_DIR", "logs")
        self.log_root = Path(log_dir)
        self.log_dir = self.log_root / name

        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    def _current_file(self) -> Path:
        today = datetime.now().strftime("%Y-%m-%d")
        return self.log_dir / f"{today}.jsonl"

    def _write(self, entry: dict, kind: str) -> None:
        try:
            with open(self._current_file(), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except Exception as e:
            # Logging failures never reach the caller
            print(f"Warning: Failed to write {kind} log: {e}")

    def log_request(
        self,
        model: str,
        prompt: str,
        response_text: Optional[str],
        input_tokens: Optional[int],
        output_tokens: Optional[int],
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
        cost_usd=None,
        provider: Optional[str] = None,
        **extra_fields
    ):
        """
        Record one non-streaming request.

        Args:
            model: Model name
            prompt: Prompt text (only a preview is stored)
            response_text: Response text (only a preview is stored)
            input_tokens: Prompt token count
            output_tokens: Completion token count
            duration_ms: Request duration in milliseconds
            success: Whether the request succeeded
            error_message: Error description on failure
            cost_usd: Computed cost
            provider: Resolved provider
            **extra_fields: Additional fields to store
        """
        if not self.enabled:
            return

        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "logger": self.name,
            "model": model,
            "prompt_length": len(prompt) if prompt else 0,
            "prompt_preview": prompt[:100] if prompt else None,
            "response_length": len(response_text) if response_text else 0,
            "response_preview": response_text[:100] if response_text else None,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": (input_tokens or 0) + (output_tokens or 0),
            "duration_ms": round(duration_ms, 2),
            "success": success,
            "error_message": error_message,
            "cost_usd": str(cost_usd) if cost_usd is not None else None,
            "provider": provider,
        }
        log_entry.update(extra_fields)
        self._write(log_entry, "request")

    def log_stream_request(
        self,
        model: str,
        prompt: str,
        total_chunks: int,
        total_text_length: int,
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
        **extra_fields
    ):
        """
        Record one streaming request.

        Args:
            model: Model name
            prompt: Prompt text
            total_chunks: Number of content chunks received
            total_text_length: Total streamed text length
            duration_ms: Stream duration in milliseconds
            success: Whether the stream completed
            error_message: Error description on failure
            **extra_fields: Additional fields to store
        """
        if not self.enabled:
            return

        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "logger": self.name,
            "model": model,
            "prompt_length": len(prompt) if prompt else 0,
            "prompt_preview": prompt[:100] if prompt else None,
            "stream": True,
            "total_chunks": total_chunks,
            "total_text_length": total_text_length,
            "duration_ms": round(duration_ms, 2),
            "success": success,
            "error_message": error_message,
        }
        log_entry.update(extra_fields)
        self._write(log_entry, "stream")

    def log_event(self, event: str, **fields):
        """Record a structured event such as a retry or a pricing fallback."""
        if not self.enabled:
            return

        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "logger": self.name,
            "event": event,
        }
        log_entry.update(fields)
        self._write(log_entry, "event")

    def read_entries(self) -> list[dict]:
        """Read back today's entries (empty when logging is disabled)."""
        path = self._current_file()
        if not self.enabled or not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
