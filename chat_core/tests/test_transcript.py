import json
from datetime import datetime, timezone

import pytest

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatParameters, Conversation, Message
from chat_core.engine.transcript import export_transcript


NOW = datetime(2024, 3, 9, 8, 30, tzinfo=timezone.utc)


def _conversation():
    return Conversation(
        id="c-1",
        title="My Chat: Plans!",
        parameters=ChatParameters(model="gpt-4", temperature=0.4, max_output_tokens=256, system_prompt="Be kind."),
        messages=[
            Message("system", "Be kind."),
            Message("user", "Hello"),
            Message("assistant", "Hi, how can I help?"),
        ],
    )


def test_markdown_export():
    t = export_transcript(_conversation(), "markdown", now=NOW)
    assert t.filename == "my_chat__plans__2024-03-09.md"
    assert t.mimetype == "text/markdown"
    assert t.content.startswith("# My Chat: Plans!\n\nModel: gpt-4\n")
    assert "System Prompt: Be kind.\n\n---\n\n" in t.content
    assert t.content.endswith("## You\n\nHello\n\n## Assistant\n\nHi, how can I help?\n\n")


def test_json_export_excludes_system_message():
    t = export_transcript(_conversation(), "JSON", now=NOW)
    data = json.loads(t.content)
    assert t.filename.endswith(".json")
    assert data["model"] == "gpt-4"
    assert data["maxTokens"] == 256
    assert data["systemPrompt"] == "Be kind."
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
    assert data["exportedAt"] == "2024-03-09T08:30:00Z"


def test_unknown_format():
    with pytest.raises(ValidationError):
        export_transcript(_conversation(), "pdf", now=NOW)
