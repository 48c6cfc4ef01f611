import json

import pytest

from conftest import RecordingHandler, openai_reply

from chat_core.api.service import Dispatcher
from chat_core.domain.models import ChatParameters, Conversation, Message


def _dispatcher(settings_store, conversation_store, make_adapter, handler):
    return Dispatcher(settings_store, conversation_store, adapter=make_adapter(handler))


@pytest.mark.asyncio
async def test_get_response_returns_raw_body(settings_store, conversation_store, make_adapter):
    await settings_store.update({"credentials": {"openai": "sk-test"}})
    handler = RecordingHandler(json_body=openai_reply("raw"))
    dispatcher = _dispatcher(settings_store, conversation_store, make_adapter, handler)
    resp = await dispatcher.dispatch(
        {
            "action": "getResponse",
            "data": {
                "model": "gpt-4",
                "messages": [{"role": "user", "content": "hi"}],
                "temperature": 0.3,
                "maxTokens": 50,
            },
        }
    )
    assert resp == {"success": True, "data": openai_reply("raw")}
    body = json.loads(handler.requests[0].content)
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 50


@pytest.mark.asyncio
async def test_get_response_missing_key(settings_store, conversation_store, make_adapter):
    handler = RecordingHandler(json_body=openai_reply())
    dispatcher = _dispatcher(settings_store, conversation_store, make_adapter, handler)
    resp = await dispatcher.dispatch({"action": "getResponse", "data": {"model": "gpt-4", "messages": []}})
    assert resp["success"] is False
    assert "API key not configured" in resp["error"]
    assert handler.requests == []


@pytest.mark.asyncio
async def test_provider_error_is_reported(settings_store, conversation_store, make_adapter):
    await settings_store.update({"credentials": {"mistral": "m-key"}})
    handler = RecordingHandler(status_code=500, json_body={"message": "upstream down"})
    dispatcher = _dispatcher(settings_store, conversation_store, make_adapter, handler)
    resp = await dispatcher.dispatch(
        {"action": "getResponse", "data": {"model": "mistral-large", "messages": []}}
    )
    assert resp == {"success": False, "error": "Mistral API Error: upstream down"}


@pytest.mark.asyncio
async def test_conversation_actions(settings_store, conversation_store, make_adapter):
    dispatcher = _dispatcher(settings_store, conversation_store, make_adapter, RecordingHandler())
    record = Conversation(
        id="c-1",
        title="Saved",
        parameters=ChatParameters(model="gpt-4"),
        messages=[Message("user", "hi")],
    ).to_dict()

    assert await dispatcher.dispatch({"action": "saveConversation", "data": record}) == {"success": True}
    listed = await dispatcher.dispatch({"action": "listConversations"})
    assert listed["success"] is True
    assert [c["id"] for c in listed["data"]] == ["c-1"]

    deleted = await dispatcher.dispatch({"action": "deleteConversation", "data": {"id": "c-1"}})
    assert deleted == {"success": True, "data": {"deleted": True}}
    listed = await dispatcher.dispatch({"action": "listConversations", "data": {}})
    assert listed["data"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "message",
    [
        {"action": "launchRockets"},
        {"data": {}},
        {"action": "saveConversation", "data": {"title": "missing id"}},
        {"action": "deleteConversation", "data": {}},
        {"action": "saveConversation", "data": "not a dict"},
    ],
)
async def test_failures_never_raise(settings_store, conversation_store, make_adapter, message):
    dispatcher = _dispatcher(settings_store, conversation_store, make_adapter, RecordingHandler())
    resp = await dispatcher.dispatch(message)
    assert resp["success"] is False
    assert isinstance(resp["error"], str) and resp["error"]
