"""Provider 编解码协议。

上层 ProviderAdapter 不关心具体厂商的 JSON 结构，而是依赖此协议：

- 每个 Provider 变体对应一个 ProviderCodec（见 adapter.build_codecs 查找表）。
- 负责：把统一的 Message / ChatParameters 转成厂商请求体与认证头，
  并从厂商成功响应中取出纯文本回复。

这样接入新厂商时只需要新增一个 Codec 并登记到查找表。
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol

from chat_core.domain.exceptions import MalformedResponse
from chat_core.domain.models import ChatParameters, Message


class ProviderCodec(Protocol):
    """单个 Provider 的请求构造 / 响应解析。"""

    def build_headers(self, api_key: str) -> Dict[str, str]:
        ...

    def build_body(self, messages: List[Message], parameters: ChatParameters) -> Dict[str, Any]:
        ...

    def extract_reply(self, body: Mapping[str, Any]) -> str:
        ...

    def parse_error(self, body: Any) -> tuple[Optional[str], Optional[str]]:
        """返回 (provider_code, message)，无法解析时为 (None, None)。"""

        ...


def malformed(provider: str, path: tuple) -> MalformedResponse:
    return MalformedResponse(
        code="MALFORMED_RESPONSE",
        message=f"{provider} response missing field {'.'.join(str(p) for p in path)}",
        http_status=502,
        provider=provider,
    )


def dig_text(body: Any, path: tuple, provider: str) -> str:
    """按路径逐层取值，任一层缺失或最终值不是字符串都视为格式错误。"""

    current = body
    for key in path:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            raise malformed(provider, path)
    if not isinstance(current, str):
        # 例如 content 为 null（被内容过滤拦截）
        raise malformed(provider, path)
    return current


def parse_error_payload(body: Any) -> tuple[Optional[str], Optional[str]]:
    """解析 {"error": {"message": ..., "code"/"type": ...}} 形式的错误体。

    OpenAI、Mistral、OpenRouter 与 Anthropic 的错误体都基本符合这一结构；
    个别情况下 error 直接是字符串，或者 message 挂在顶层。
    """

    if not isinstance(body, Mapping):
        return None, None
    err = body.get("error")
    if isinstance(err, str):
        return None, err
    if isinstance(err, Mapping):
        code = err.get("code") or err.get("type")
        message = err.get("message")
        return (str(code) if code is not None else None), (str(message) if message else None)
    message = body.get("message") or body.get("detail")
    return None, (str(message) if message else None)
