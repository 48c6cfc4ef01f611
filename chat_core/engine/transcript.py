"""对话记录导出：json / markdown / text 三种格式。

导出内容不包含 system 消息本身；markdown 格式会在头部单独列出系统提示词。
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import Conversation, format_timestamp, utc_now


ExportFormat = Literal["json", "markdown", "text"]

_EXTENSIONS = {
    "json": (".json", "application/json"),
    "markdown": (".md", "text/markdown"),
    "text": (".txt", "text/plain"),
}


@dataclass
class Transcript:
    content: str
    filename: str
    mimetype: str


def _speaker(role: str) -> str:
    return "You" if role == "user" else "Assistant"


def _base_filename(title: str, now: datetime) -> str:
    slug = re.sub(r"[^a-z0-9]", "_", (title or "conversation").lower())
    return f"{slug}_{now.date().isoformat()}"


def export_transcript(
    conversation: Conversation,
    fmt: str = "markdown",
    now: Optional[datetime] = None,
) -> Transcript:
    fmt = (fmt or "").lower()
    if fmt not in _EXTENSIONS:
        raise ValidationError(
            code="INVALID_EXPORT_FORMAT",
            message=f"Unsupported export format: {fmt!r}. Use json, markdown or text.",
        )
    now = now or utc_now()
    params = conversation.parameters
    turns = [m for m in conversation.messages if m.role != "system"]

    if fmt == "json":
        content = json.dumps(
            {
                "title": conversation.title,
                "model": params.model,
                "systemPrompt": params.system_prompt,
                "temperature": params.temperature,
                "maxTokens": params.max_output_tokens,
                "messages": [m.to_dict() for m in turns],
                "exportedAt": format_timestamp(now),
            },
            ensure_ascii=False,
            indent=2,
        )
    elif fmt == "markdown":
        parts = [
            f"# {conversation.title or 'Conversation'}\n\n",
            f"Model: {params.model}\n",
            f"Date: {format_timestamp(now)}\n\n",
        ]
        if params.system_prompt:
            parts.append(f"System Prompt: {params.system_prompt}\n\n")
        parts.append("---\n\n")
        for msg in turns:
            parts.append(f"## {_speaker(msg.role)}\n\n{msg.content}\n\n")
        content = "".join(parts)
    else:
        content = "".join(f"{_speaker(m.role)}:\n{m.content}\n\n" for m in turns)

    extension, mimetype = _EXTENSIONS[fmt]
    return Transcript(
        content=content,
        filename=_base_filename(conversation.title, now) + extension,
        mimetype=mimetype,
    )
