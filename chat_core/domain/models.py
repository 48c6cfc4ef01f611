"""统一的对话数据模型。

本模块定义了会话引擎在不同 Provider 之间共享的标准数据结构：

- Message: 一条对话消息（system/user/assistant）。
- ChatParameters: 挂在单个会话上的模型参数。
- Conversation: 会话本身（标题、参数、有序消息列表、更新时间）。
- WireRequest: 发往具体 Provider 的 HTTP 请求（URL、头、JSON 体）。

持久化时统一使用 camelCase 字段名（与前端/存储中的文档保持一致），
内存中使用 snake_case 属性。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional
from uuid import uuid4


Role = Literal["system", "user", "assistant"]
ROLES = ("system", "user", "assistant")

DEFAULT_TITLE = "New Conversation"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> datetime:
    """解析 ISO 字符串，或旧版扩展中的毫秒时间戳。"""

    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, bool):
        raise ValueError(f"invalid timestamp: {raw!r}")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
    if isinstance(raw, str) and raw:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"invalid timestamp: {raw!r}")


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


@dataclass
class Message:
    """一条对话消息。插入顺序即时间顺序。"""

    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"unknown message role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ValueError("message content must be a string")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        return cls(role=data["role"], content=data.get("content") or "")


@dataclass
class ChatParameters:
    """会话级模型参数。

    - model: 模型 ID，例如 "gpt-4"、"claude-3-opus"。
    - temperature: 采样温度，范围 [0, 1]。
    - max_output_tokens: 回复的最大 token 数，正整数。
    - system_prompt: 系统提示词，可为空。
    """

    model: str
    temperature: float = 0.7
    max_output_tokens: int = 2048
    system_prompt: str = ""

    def __post_init__(self) -> None:
        if not self.model:
            raise ValueError("model must not be empty")
        if isinstance(self.temperature, bool) or not 0.0 <= float(self.temperature) <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature!r}")
        self.temperature = float(self.temperature)
        tokens = self.max_output_tokens
        if isinstance(tokens, bool) or (isinstance(tokens, float) and not tokens.is_integer()):
            raise ValueError(f"max_output_tokens must be an integer, got {tokens!r}")
        if int(tokens) < 1:
            raise ValueError(f"max_output_tokens must be positive, got {tokens!r}")
        self.max_output_tokens = int(tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "systemPrompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatParameters":
        max_tokens = data.get("maxOutputTokens", data.get("maxTokens", 2048))
        temperature = data.get("temperature")
        return cls(
            model=data["model"],
            temperature=0.7 if temperature is None else temperature,
            max_output_tokens=max_tokens,
            system_prompt=data.get("systemPrompt") or "",
        )


@dataclass
class Conversation:
    """一个会话：标题 + 参数 + 有序消息 + 最近更新时间。

    id 一经分配不可修改；messages 中最多只有一条 system 消息，且必须位于开头。
    """

    id: str
    title: str
    parameters: ChatParameters
    messages: List[Message] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("conversation id must not be empty")
        for idx, msg in enumerate(self.messages):
            if msg.role == "system" and idx != 0:
                raise ValueError("system message is only allowed as the first message")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__ and value != self.__dict__["id"]:
            raise AttributeError("conversation id is immutable")
        super().__setattr__(name, value)

    @property
    def system_message(self) -> Optional[Message]:
        if self.messages and self.messages[0].role == "system":
            return self.messages[0]
        return None

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "parameters": self.parameters.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conversation":
        """从持久化记录构造会话。

        同时兼容旧版扩展的扁平结构（model/temperature/maxTokens/systemPrompt
        直接挂在会话上，timestamp 为毫秒时间戳）。
        """

        params_raw = data.get("parameters")
        if not isinstance(params_raw, Mapping):
            params_raw = data
        raw_ts = data.get("updatedAt", data.get("timestamp"))
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_TITLE,
            parameters=ChatParameters.from_dict(params_raw),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            updated_at=parse_timestamp(raw_ts) if raw_ts is not None else utc_now(),
        )


@dataclass
class WireRequest:
    """Provider 专属的 HTTP 请求。"""

    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    method: str = "POST"
