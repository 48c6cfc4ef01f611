import json
import logging
import sys

from chat_core.infrastructure.logging.logger import JsonLineFormatter


def _record(msg, extra=None, exc_info=None):
    record = logging.LogRecord("chat_core", logging.WARNING, __file__, 1, msg, None, exc_info)
    if extra is not None:
        record.extra = extra
    return record


def test_json_line_includes_context_fields():
    line = JsonLineFormatter().format(_record("Provider returned error", {"provider": "openai", "status": 429}))
    payload = json.loads(line)
    assert payload["level"] == "WARNING"
    assert payload["name"] == "chat_core"
    assert payload["msg"] == "Provider returned error"
    assert payload["provider"] == "openai"
    assert payload["status"] == 429
    assert payload["ts"].endswith("Z")


def test_redaction_truncates_message():
    line = JsonLineFormatter(redact_content=True).format(_record("x" * 200))
    assert len(json.loads(line)["msg"]) == 64


def test_exception_is_rendered():
    try:
        raise RuntimeError("subscriber bug")
    except RuntimeError:
        record = _record("Settings subscriber failed", exc_info=sys.exc_info())
    payload = json.loads(JsonLineFormatter().format(record))
    assert "RuntimeError: subscriber bug" in payload["exc"]
