import json
from datetime import datetime, timedelta, timezone

import pytest

from chat_core.config.settings_store import CHAT_SETTINGS_KEY, GLOBAL_SETTINGS_KEY
from chat_core.domain.exceptions import InvalidImport
from chat_core.domain.models import ChatParameters, Conversation, Message
from chat_core.infrastructure.storage.conversation_store import CONVERSATIONS_KEY
from chat_core.infrastructure.storage.data_transfer import DataTransfer


def _conv(cid, minutes=0):
    return Conversation(
        id=cid,
        title=cid,
        parameters=ChatParameters(model="gpt-4"),
        messages=[Message("user", "hi")],
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


@pytest.fixture
def transfer(kv, settings_store):
    return DataTransfer(kv, settings_store)


@pytest.mark.asyncio
async def test_export_redacts_credentials(transfer, settings_store, conversation_store):
    await settings_store.update({"credentials": {"openai": "sk-secret", "mistral": ""}, "theme": "dark"})
    await conversation_store.upsert(_conv("a"))
    exported = json.loads(await transfer.export_data())
    assert set(exported) == {"globalSettings", "chatSettings", "conversations", "exportDate"}
    assert exported["globalSettings"]["credentials"]["openai"] == "[API_KEY]"
    assert exported["globalSettings"]["credentials"]["mistral"] == ""
    assert exported["globalSettings"]["theme"] == "dark"
    assert [c["id"] for c in exported["conversations"]] == ["a"]

    full = json.loads(await transfer.export_data(include_credentials=True))
    assert full["globalSettings"]["credentials"]["openai"] == "sk-secret"


@pytest.mark.asyncio
async def test_round_trip_keeps_stored_credentials(transfer, settings_store):
    await settings_store.update({"credentials": {"anthropic": "ak-real"}, "contextWindowLimit": 6})
    exported = await transfer.export_data()

    await settings_store.reset()
    await settings_store.update({"credentials": {"anthropic": "ak-real"}})
    result = await transfer.import_data(exported, import_credentials=True)
    assert result["success"] is True

    gs = await settings_store.get()
    assert gs.context_window_limit == 6
    # 占位符不会覆盖本地密钥
    assert gs.credentials["anthropic"] == "ak-real"


@pytest.mark.asyncio
async def test_import_credentials_only_when_asked(transfer, settings_store):
    await settings_store.update({"credentials": {"openai": "local"}})
    payload = {
        "globalSettings": {"credentials": {"openai": "imported", "mistral": "m-imported"}},
        "chatSettings": {},
    }
    await transfer.import_data(payload)
    assert (await settings_store.get()).credentials["openai"] == "local"

    await transfer.import_data(payload, import_credentials=True)
    creds = (await settings_store.get()).credentials
    assert creds["openai"] == "imported"
    assert creds["mistral"] == "m-imported"


@pytest.mark.asyncio
async def test_merge_and_overwrite_conversations(transfer, conversation_store):
    await conversation_store.upsert(_conv("local", 5))
    incoming = _conv("local", 99).to_dict()
    incoming["title"] = "from import"
    payload = {
        "globalSettings": {},
        "chatSettings": {},
        "conversations": [incoming, _conv("new", 1).to_dict()],
    }
    result = await transfer.import_data(payload)
    assert result["conversations"] == 2
    local = await conversation_store.get_by_id("local")
    assert local.title == "local"
    assert await conversation_store.get_by_id("new") is not None

    await transfer.import_data(
        {"globalSettings": {}, "chatSettings": {}, "conversations": [_conv("only", 1).to_dict()]},
        overwrite=True,
    )
    assert [c.id for c in await conversation_store.list()] == ["only"]


@pytest.mark.asyncio
async def test_legacy_export_is_accepted(transfer, settings_store, conversation_store):
    legacy = {
        "globalSettings": {"theme": "dark", "apiKeys": {"openai": "[API_KEY]", "anthropic": "ak-legacy"}},
        "chatSettings": {"model": "gpt-4", "maxTokens": 512},
        "conversations": [
            {
                "id": "legacy-1",
                "title": "Old",
                "model": "gpt-4",
                "temperature": 0.5,
                "maxTokens": 512,
                "systemPrompt": "",
                "messages": [{"role": "user", "content": "hi"}],
                "timestamp": 1700000000000,
            }
        ],
        "exportDate": 1700000000000,
    }
    await transfer.import_data(json.dumps(legacy), import_credentials=True)
    gs = await settings_store.get()
    assert gs.theme == "dark"
    assert gs.credentials["anthropic"] == "ak-legacy"
    assert gs.credentials["openai"] == ""
    assert (await settings_store.get_chat_defaults()).max_tokens == 512
    assert (await conversation_store.get_by_id("legacy-1")).parameters.max_output_tokens == 512


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        {"chatSettings": {}},
        {"globalSettings": {}, "chatSettings": {}, "conversations": {"id": "x"}},
        {"globalSettings": {"maxStoredConversations": 0}, "chatSettings": {}},
        {"globalSettings": {}, "chatSettings": {}, "conversations": [{"title": "no id"}]},
    ],
)
async def test_invalid_import_writes_nothing(transfer, settings_store, kv, payload):
    await settings_store.update({"theme": "dark"})
    before = {k: await kv.get(k) for k in (GLOBAL_SETTINGS_KEY, CHAT_SETTINGS_KEY, CONVERSATIONS_KEY)}
    with pytest.raises(InvalidImport):
        await transfer.import_data(payload)
    after = {k: await kv.get(k) for k in (GLOBAL_SETTINGS_KEY, CHAT_SETTINGS_KEY, CONVERSATIONS_KEY)}
    assert after == before


@pytest.mark.asyncio
async def test_import_notifies_subscribers(transfer, settings_store):
    seen = []
    settings_store.subscribe("global", seen.append)
    await transfer.import_data({"globalSettings": {"fontSize": "small"}, "chatSettings": {}})
    assert seen and seen[-1].font_size == "small"


@pytest.mark.asyncio
async def test_import_respects_capacity(transfer, settings_store, conversation_store):
    payload = {
        "globalSettings": {"maxStoredConversations": 2},
        "chatSettings": {},
        "conversations": [_conv(f"c{i}", i).to_dict() for i in range(5)],
    }
    result = await transfer.import_data(payload, overwrite=True)
    assert result["conversations"] == 2
    assert [c.id for c in await conversation_store.list()] == ["c4", "c3"]


@pytest.mark.asyncio
async def test_settings_only_export_and_import(transfer, settings_store):
    await settings_store.update({"credentials": {"openai": "sk-keep"}, "fontSize": "large"})
    exported = await transfer.export_settings()
    doc = json.loads(exported)
    assert doc["credentials"]["openai"] == "[API_KEY]"
    assert doc["fontSize"] == "large"

    await settings_store.update({"fontSize": "small"})
    gs = await transfer.import_settings(exported, import_credentials=True)
    assert gs.font_size == "large"
    assert gs.credentials["openai"] == "sk-keep"

    with pytest.raises(InvalidImport):
        await transfer.import_settings('{"theme": "neon"}')
    with pytest.raises(InvalidImport):
        await transfer.import_settings("[1, 2]")
