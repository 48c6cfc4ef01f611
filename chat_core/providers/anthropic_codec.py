"""Anthropic Messages API 的编解码。

与 OpenAI 风格的差异：
1. system 消息不进入 messages，而是放到独立的 system 字段；
2. 认证使用 x-api-key 头，并必须携带 anthropic-version；
3. 成功回复位于 content[0].text。

Anthropic 不接受连续两条同角色的消息（例如上一轮请求失败后
用户又发了一条），这里把相邻的同角色消息合并为一条。
对话也必须以 user 开头，上下文裁剪后留在最前面的 assistant 消息会被丢弃。
"""

from typing import Any, Dict, List, Mapping

from chat_core.domain.models import ChatParameters, Message
from chat_core.providers.base import dig_text, parse_error_payload


class AnthropicCodec:
    provider = "anthropic"

    def __init__(self, version: str):
        self._version = version

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self._version,
            "Content-Type": "application/json",
        }

    def build_body(self, messages: List[Message], parameters: ChatParameters) -> Dict[str, Any]:
        system_parts: List[str] = []
        converted: List[Dict[str, str]] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
                continue
            if converted and converted[-1]["role"] == msg.role:
                converted[-1]["content"] += "\n\n" + msg.content
            else:
                converted.append({"role": msg.role, "content": msg.content})
        while converted and converted[0]["role"] == "assistant":
            converted.pop(0)
        return {
            "model": parameters.model,
            "messages": converted,
            "system": "\n\n".join(system_parts),
            "max_tokens": parameters.max_output_tokens,
            "temperature": parameters.temperature,
        }

    def extract_reply(self, body: Mapping[str, Any]) -> str:
        return dig_text(body, ("content", 0, "text"), self.provider)

    def parse_error(self, body: Any):
        return parse_error_payload(body)
