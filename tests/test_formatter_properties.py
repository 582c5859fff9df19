"""
Property-based tests for request formatting.

Property 7: 请求体字段映射
Property 8: 请求校验
"""

import pytest
from hypothesis import given, strategies as st, settings

from marketplace_router.formatter import (
    ChatCompletionOptions,
    ValidationError,
    build_request,
    format_request,
    prompt_preview,
)
from marketplace_router.models import ChatMessage


roles = st.sampled_from(["system", "user", "assistant"])
messages = st.lists(
    st.builds(ChatMessage, role=roles, content=st.text(max_size=100)),
    min_size=1,
    max_size=10,
)
model_ids = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-.", min_size=1, max_size=30)


@st.composite
def valid_options(draw):
    return ChatCompletionOptions(
        temperature=draw(st.one_of(st.none(), st.floats(min_value=0, max_value=2))),
        max_tokens=draw(st.one_of(st.none(), st.integers(min_value=1, max_value=100_000))),
        top_p=draw(st.one_of(st.none(), st.floats(min_value=0, max_value=1))),
        frequency_penalty=draw(st.one_of(st.none(), st.floats(min_value=-2, max_value=2))),
        presence_penalty=draw(st.one_of(st.none(), st.floats(min_value=-2, max_value=2))),
        stop=draw(st.one_of(st.none(), st.text(min_size=1, max_size=5))),
    )


class TestRequestBodyMapping:
    """
    Property 7: 请求体字段映射

    The JSON body carries model, messages and stream, plus exactly the
    optional parameters that were set.
    """

    @settings(max_examples=100)
    @given(model=model_ids, msgs=messages, options=valid_options(), stream=st.booleans())
    def test_body_fields(self, model, msgs, options, stream):
        request = build_request(model, msgs, options, stream=stream)
        body = format_request(request)

        assert body["model"] == model
        assert body["stream"] is stream
        assert body["messages"] == [{"role": m.role, "content": m.content} for m in msgs]

        for name in ("temperature", "max_tokens", "top_p", "frequency_penalty", "presence_penalty", "stop"):
            value = getattr(options, name)
            if value is None:
                assert name not in body
            else:
                assert body[name] == value

    def test_minimal_body(self):
        request = build_request("gpt-4o-mini", [{"role": "user", "content": "Hello"}])
        assert format_request(request) == {
            "model": "gpt-4o-mini",
            "messages": [{"role": "user", "content": "Hello"}],
            "stream": False,
        }

    def test_mapping_messages_are_accepted(self):
        request = build_request(
            "gpt-4o",
            [{"role": "system", "content": "Be brief"}, ChatMessage("user", "Hi")],
        )
        assert [m.role for m in request.messages] == ["system", "user"]


class TestRequestValidation:
    """
    Property 8: 请求校验

    Invalid input raises ValidationError listing every problem.
    """

    def test_empty_messages(self):
        with pytest.raises(ValidationError) as exc_info:
            build_request("gpt-4o", [])
        assert exc_info.value.errors == ["messages must contain at least one message"]

    def test_invalid_role_and_content(self):
        with pytest.raises(ValidationError) as exc_info:
            build_request("gpt-4o", [{"role": "robot", "content": 42}])
        assert len(exc_info.value.errors) == 2

    def test_unsupported_message_type(self):
        with pytest.raises(ValidationError) as exc_info:
            build_request("gpt-4o", ["hello"])
        assert "messages[0]" in exc_info.value.errors[0]

    def test_empty_model(self):
        with pytest.raises(ValidationError):
            build_request("  ", [{"role": "user", "content": "Hi"}])

    @settings(max_examples=100)
    @given(temperature=st.one_of(st.floats(max_value=-0.01), st.floats(min_value=2.01)).filter(lambda t: t == t))
    def test_out_of_range_temperature(self, temperature):
        with pytest.raises(ValidationError) as exc_info:
            build_request("gpt-4o", [{"role": "user", "content": "Hi"}], ChatCompletionOptions(temperature=temperature))
        assert any("temperature" in error for error in exc_info.value.errors)

    @pytest.mark.parametrize("max_tokens", [0, -1, True, 1.5])
    def test_invalid_max_tokens(self, max_tokens):
        errors = ChatCompletionOptions(max_tokens=max_tokens).validate()
        assert errors == ["max_tokens must be a positive integer"]

    def test_errors_are_collected(self):
        options = ChatCompletionOptions(temperature=5, top_p=2, optimize_for="cheapest")
        assert len(options.validate()) == 3


class TestOptionsFromDict:
    def test_known_keys(self):
        options = ChatCompletionOptions.from_dict({"model": "gpt-4o", "temperature": 0.2})
        assert options.model == "gpt-4o"
        assert options.temperature == 0.2

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ChatCompletionOptions.from_dict({"temprature": 0.2, "color": "red"})
        assert exc_info.value.errors == ["unknown option: color", "unknown option: temprature"]


class TestPromptPreview:
    def test_last_user_message(self):
        request = build_request(
            "gpt-4o",
            [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "reply"},
                {"role": "user", "content": "second"},
            ],
        )
        assert prompt_preview(request) == "second"

    def test_no_user_message(self):
        request = build_request("gpt-4o", [{"role": "system", "content": "rules"}])
        assert prompt_preview(request) == "rules"
