from datetime import datetime, timezone

import pytest

from chat_core.domain.exceptions import (
    MalformedResponse,
    MissingCredential,
    ProviderError,
    RateLimitError,
    TransportError,
    describe_error,
)
from chat_core.domain.models import (
    ChatParameters,
    Conversation,
    Message,
    format_timestamp,
    new_conversation_id,
    parse_timestamp,
)


def _params(**kw):
    return ChatParameters(model=kw.pop("model", "gpt-4"), **kw)


def test_system_message_only_allowed_first():
    Conversation(
        id="c-1",
        title="t",
        parameters=_params(),
        messages=[Message("system", "sys"), Message("user", "hi")],
    )
    with pytest.raises(ValueError):
        Conversation(
            id="c-2",
            title="t",
            parameters=_params(),
            messages=[Message("user", "hi"), Message("system", "sys")],
        )


def test_conversation_id_is_immutable():
    conv = Conversation(id=new_conversation_id(), title="t", parameters=_params())
    assert conv.id.startswith("c-")
    with pytest.raises(AttributeError):
        conv.id = "other"
    conv.title = "renamed"
    assert conv.title == "renamed"


def test_unknown_role_rejected():
    with pytest.raises(ValueError):
        Message("tool", "x")


def test_parameters_validation():
    with pytest.raises(ValueError):
        _params(temperature=1.5)
    with pytest.raises(ValueError):
        _params(max_output_tokens=0)
    with pytest.raises(ValueError):
        ChatParameters(model="")
    with pytest.raises(ValueError):
        _params(max_output_tokens=2.5)
    with pytest.raises(ValueError):
        _params(max_output_tokens="2.5")
    assert _params(max_output_tokens=256.0).max_output_tokens == 256
    params = _params(temperature=1, max_output_tokens="512")
    assert params.temperature == 1.0
    assert params.max_output_tokens == 512


def test_conversation_record_shape():
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    conv = Conversation(
        id="c-1",
        title="Hello",
        parameters=_params(system_prompt="be brief"),
        messages=[Message("user", "hi"), Message("assistant", "hello")],
        updated_at=ts,
    )
    record = conv.to_dict()
    assert record["updatedAt"] == "2024-05-01T12:00:00Z"
    assert record["parameters"] == {
        "model": "gpt-4",
        "temperature": 0.7,
        "maxOutputTokens": 2048,
        "systemPrompt": "be brief",
    }
    restored = Conversation.from_dict(record)
    assert restored == conv


def test_legacy_flat_record_is_accepted():
    legacy = {
        "id": "abc",
        "title": "Old chat",
        "model": "claude-3-opus",
        "temperature": 0.2,
        "maxTokens": 1000,
        "systemPrompt": "sys",
        "messages": [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
        "timestamp": 1700000000000,
    }
    conv = Conversation.from_dict(legacy)
    assert conv.parameters.model == "claude-3-opus"
    assert conv.parameters.max_output_tokens == 1000
    assert conv.updated_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert conv.system_message.content == "sys"


def test_timestamp_helpers():
    ts = parse_timestamp("2024-01-02T03:04:05Z")
    assert ts.tzinfo is not None
    assert format_timestamp(ts) == "2024-01-02T03:04:05Z"
    with pytest.raises(ValueError):
        parse_timestamp(True)


def test_describe_error_guidance():
    assert "Please check settings" in describe_error(
        MissingCredential(code="MISSING_CREDENTIAL", message="x", provider="openai")
    )
    assert "Network error" in describe_error(TransportError(code="TRANSPORT_ERROR", message="x"))
    assert "Invalid response format" in describe_error(
        MalformedResponse(code="MALFORMED_RESPONSE", message="x")
    )
    invalid_key = ProviderError(
        code="PROVIDER_ERROR",
        message="Incorrect API key provided",
        http_status=401,
        provider="openai",
        provider_code="invalid_api_key",
    )
    assert describe_error(invalid_key) == "Invalid OpenAI API key. Please check your settings."
    quota = ProviderError(
        code="PROVIDER_ERROR",
        message="You exceeded your current quota",
        http_status=400,
        provider="openai",
        provider_code="insufficient_quota",
    )
    assert "insufficient quota" in describe_error(quota)
    limited = RateLimitError(code="RATE_LIMIT", message="rate_limit", http_status=429, provider="anthropic")
    assert describe_error(limited) == "Anthropic rate limit exceeded. Please try again later."
    other = ProviderError(code="PROVIDER_ERROR", message="boom", http_status=500, provider="mistral")
    assert describe_error(other) == "Mistral API Error: boom"
