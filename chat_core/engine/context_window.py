"""按消息条数裁剪上下文。

limit 为 0 表示不限制；否则保留开头的 system 消息（不计入条数），
其余消息只保留最后 limit 条，顺序不变。
"""

from typing import List, Sequence

from chat_core.domain.models import Message


def trim(history: Sequence[Message], limit: int) -> List[Message]:
    if limit < 0:
        raise ValueError(f"context window limit must be >= 0, got {limit!r}")
    messages = list(history)
    if limit == 0:
        return messages
    if messages and messages[0].role == "system":
        return [messages[0]] + messages[1:][-limit:]
    return messages[-limit:]
