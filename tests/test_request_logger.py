"""
Property-based tests for the request logger and pricing fallback tracker.

Property 18: 请求日志完整性
"""

import os
from decimal import Decimal

from hypothesis import given, strategies as st, settings

from marketplace_router.fallback_tracker import PricingFallbackTracker
from marketplace_router.request_logger import RequestLogger


model_strategy = st.text(min_size=1, max_size=60).filter(lambda x: x.strip())
token_strategy = st.one_of(st.none(), st.integers(min_value=0, max_value=10_000_000))
duration_strategy = st.floats(min_value=0.0, max_value=100_000.0, allow_nan=False, allow_infinity=False)


class TestRequestLogIntegrity:
    """
    Property 18: 请求日志完整性

    Every logged request can be read back with its model, token counts,
    duration and status.
    """

    @settings(max_examples=50, deadline=None)
    @given(
        model=model_strategy,
        prompt=st.text(max_size=300),
        input_tokens=token_strategy,
        output_tokens=token_strategy,
        duration_ms=duration_strategy,
        success=st.booleans(),
    )
    def test_entry_round_trip(self, isolated_log_dir, model, prompt, input_tokens, output_tokens, duration_ms, success):
        logger = RequestLogger("integrity", enabled=True, log_dir=isolated_log_dir)
        before = len(logger.read_entries())

        logger.log_request(
            model=model,
            prompt=prompt,
            response_text="ok" if success else None,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            success=success,
            error_message=None if success else "failed",
            cost_usd=Decimal("0.0001"),
            provider="openai",
        )

        entries = logger.read_entries()
        assert len(entries) == before + 1
        entry = entries[-1]
        assert entry["model"] == model
        assert entry["input_tokens"] == input_tokens
        assert entry["output_tokens"] == output_tokens
        assert entry["total_tokens"] == (input_tokens or 0) + (output_tokens or 0)
        assert entry["duration_ms"] == round(duration_ms, 2)
        assert entry["success"] is success
        assert entry["cost_usd"] == "0.0001"
        assert entry["prompt_preview"] == (prompt[:100] if prompt else None)


class TestRequestLoggerSwitches:
    def test_disabled_logger_writes_nothing(self, tmp_path):
        logger = RequestLogger("off", enabled=False, log_dir=tmp_path)
        logger.log_event("anything", value=1)
        assert logger.read_entries() == []
        assert not (tmp_path / "off").exists()

    def test_env_switch(self, tmp_path):
        previous = os.environ.get("MARKETPLACE_ROUTER_LOGGING")
        os.environ["MARKETPLACE_ROUTER_LOGGING"] = "off"
        try:
            assert not RequestLogger("env", log_dir=tmp_path).enabled
        finally:
            if previous is None:
                os.environ.pop("MARKETPLACE_ROUTER_LOGGING", None)
            else:
                os.environ["MARKETPLACE_ROUTER_LOGGING"] = previous

    def test_env_log_dir(self, isolated_log_dir):
        logger = RequestLogger("from-env")
        assert logger.log_dir == isolated_log_dir / "from-env"

    def test_extra_fields_and_events(self, tmp_path):
        logger = RequestLogger("extra", enabled=True, log_dir=tmp_path)
        logger.log_stream_request(
            model="gpt-4o",
            prompt="hi",
            total_chunks=3,
            total_text_length=12,
            duration_ms=10.0,
            success=True,
            malformed_payloads=1,
        )
        logger.log_event("dispatch_attempt_failed", attempt=1, status_code=503)

        stream_entry, event_entry = logger.read_entries()
        assert stream_entry["stream"] is True
        assert stream_entry["malformed_payloads"] == 1
        assert event_entry["event"] == "dispatch_attempt_failed"
        assert event_entry["status_code"] == 503

    def test_write_failure_does_not_raise(self, tmp_path, capsys):
        logger = RequestLogger("broken", enabled=True, log_dir=tmp_path)
        logger.log_dir.rmdir()
        (tmp_path / "broken").write_text("not a directory", encoding="utf-8")

        logger.log_event("lost")

        assert "Failed to write event log" in capsys.readouterr().out


class TestPricingFallbackTracker:
    def test_records_and_summarizes(self):
        tracker = PricingFallbackTracker()
        tracker.record_fallback("model-x", "unknown", 10, 5, Decimal("0.000025"))
        tracker.record_fallback("model-x", "unknown", 1, 0, Decimal("0.000001"))
        tracker.record_fallback("llama3.2:3b", "ollama", 2, 2, Decimal("0.000008"))

        summary = tracker.get_stats().get_summary()
        assert summary["total_fallbacks"] == 3
        assert summary["total_cost"] == "0.000034"
        assert summary["unpriced_models"] == ["llama3.2:3b", "model-x"]
        assert [e.model_id for e in tracker.get_recent_events(2)] == ["model-x", "llama3.2:3b"]

    def test_event_history_is_bounded(self):
        tracker = PricingFallbackTracker()
        for i in range(PricingFallbackTracker.MAX_EVENTS + 5):
            tracker.record_fallback(f"m{i}", "unknown", 1, 1, Decimal("0.000004"))
        stats = tracker.get_stats()
        assert len(stats.events) == PricingFallbackTracker.MAX_EVENTS
        assert stats.total_fallbacks == PricingFallbackTracker.MAX_EVENTS + 5
        assert stats.events[0].model_id == "m5"

    def test_clear(self):
        tracker = PricingFallbackTracker()
        tracker.record_fallback("m", "unknown", 1, 1, Decimal("0.000004"))
        tracker.clear()
        assert tracker.get_stats().total_fallbacks == 0
        assert tracker.get_recent_events() == []
