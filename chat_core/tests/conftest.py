"""
Shared pytest configuration.

Log files go to a temporary directory, and provider traffic is served by
httpx.MockTransport so no test ever reaches the network.
"""

import os
import sys
import tempfile
from pathlib import Path

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="chat-core-logs-"))

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import httpx
import pytest

from chat_core.config.settings import AppSettings
from chat_core.config.settings_store import SettingsStore
from chat_core.infrastructure.storage.conversation_store import KeyValueConversationStore
from chat_core.infrastructure.storage.kv_store import MemoryKeyValueStore
from chat_core.providers.adapter import ProviderAdapter


class RecordingHandler:
    """Serves canned responses and remembers every request it saw."""

    def __init__(self, status_code=200, json_body=None, content=None, exc=None):
        self.status_code = status_code
        self.json_body = json_body
        self.content = content
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc(f"simulated failure for {request.url}", request=request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        return httpx.Response(self.status_code, json=self.json_body)


def openai_reply(text="hi there"):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def anthropic_reply(text="hi there"):
    return {"content": [{"type": "text", "text": text}]}


@pytest.fixture
def app_config():
    return AppSettings(
        storage_root=tempfile.mkdtemp(prefix="chat-core-store-"),
        http_timeout=5.0,
        openai_base_url="https://api.openai.com/v1",
        anthropic_base_url="https://api.anthropic.com/v1",
        anthropic_version="2023-06-01",
        mistral_base_url="https://api.mistral.ai/v1",
        openrouter_base_url="https://openrouter.ai/api/v1",
        app_referer="https://github.com/solamente0/sololom",
        app_title="Sololom",
        openai_api_key=None,
        anthropic_api_key=None,
        mistral_api_key=None,
        openrouter_api_key=None,
    )


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def settings_store(kv, app_config):
    return SettingsStore(kv, config=app_config)


@pytest.fixture
def conversation_store(kv, settings_store):
    async def capacity():
        return (await settings_store.get()).max_stored_conversations

    return KeyValueConversationStore(kv, capacity=capacity)


@pytest.fixture
def make_adapter(app_config):
    def factory(handler, credentials=None):
        return ProviderAdapter(
            credentials or {},
            config=app_config,
            transport=httpx.MockTransport(handler),
        )

    return factory
