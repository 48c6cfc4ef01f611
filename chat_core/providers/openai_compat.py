"""OpenAI 兼容协议的编解码。

OpenAI、Mistral 与 OpenRouter 都使用 chat/completions 端点：
- 认证: Authorization: Bearer <api_key>
- 请求体: {model, messages:[{role, content}], temperature, max_tokens}
- 成功回复: choices[0].message.content

OpenRouter 额外要求：模型 ID 去掉 "openrouter/" 路由前缀，
并附带 HTTP-Referer / X-Title 两个请求头标识调用方应用。
"""

from typing import Any, Dict, List, Mapping

from chat_core.domain.models import ChatParameters, Message
from chat_core.providers.base import dig_text, parse_error_payload
from chat_core.providers.registry import OPENROUTER_PREFIX


class OpenAICompatibleCodec:
    def __init__(self, provider: str):
        self.provider = provider

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def transmit_model(self, model: str) -> str:
        return model

    def build_body(self, messages: List[Message], parameters: ChatParameters) -> Dict[str, Any]:
        return {
            "model": self.transmit_model(parameters.model),
            "messages": [m.to_dict() for m in messages],
            "temperature": parameters.temperature,
            "max_tokens": parameters.max_output_tokens,
        }

    def extract_reply(self, body: Mapping[str, Any]) -> str:
        return dig_text(body, ("choices", 0, "message", "content"), self.provider)

    def parse_error(self, body: Any):
        return parse_error_payload(body)


class OpenRouterCodec(OpenAICompatibleCodec):
    def __init__(self, referer: str, title: str):
        super().__init__("openrouter")
        self._referer = referer
        self._title = title

    def build_headers(self, api_key: str) -> Dict[str, str]:
        headers = super().build_headers(api_key)
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers

    def transmit_model(self, model: str) -> str:
        if model.lower().startswith(OPENROUTER_PREFIX):
            return model[len(OPENROUTER_PREFIX):]
        return model
