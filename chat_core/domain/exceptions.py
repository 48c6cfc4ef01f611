"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话层、分发层做统一捕获与用户提示。

Provider 相关错误分为两类：
- 本地即可判定的（MissingCredential、UnsupportedProvider），在任何网络请求前抛出；
- 网络往返之后才知道的（ProviderError、TransportError、MalformedResponse），
  由 ConversationSession 捕获并转换为错误状态。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、provider_code 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class MissingCredential(BusinessError):
    """解析出的 Provider 没有配置 API Key。"""


class UnsupportedProvider(BusinessError):
    """模型名无法映射到任何已知 Provider。"""


class ProviderError(BusinessError):
    """Provider 返回非 2xx 状态码。

    extra 中通常携带 provider 与 provider_code（厂商自己的错误码/类型）。
    """


class RateLimitError(ProviderError):
    """Provider 限流错误 (HTTP 429)，由上层决定是否重试。"""


class TransportError(BusinessError):
    """网络层错误，例如 DNS 失败、连接失败、超时等。"""


class MalformedResponse(BusinessError):
    """Provider 返回成功状态，但响应中缺少预期的回复字段。"""


class InvalidImport(BusinessError):
    """导入的数据未通过结构校验，整个导入操作被拒绝。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class SessionBusy(BusinessError):
    """会话仍在等待上一条回复，不能修改消息或参数。"""


_PROVIDER_LABELS = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "mistral": "Mistral",
    "openrouter": "OpenRouter",
}


def describe_error(error: BaseException) -> str:
    """把异常转换为面向用户的提示文本。

    不同错误类型给出不同的处理建议：缺少密钥提示去设置页，
    网络错误提示检查连接，Provider 错误尽量识别常见错误码。
    """

    if isinstance(error, MissingCredential):
        provider = error.extra.get("provider", "")
        return f"API key not configured for {provider}. Please check settings."
    if isinstance(error, UnsupportedProvider):
        return f"Unsupported model provider: {error.extra.get('model', '')}".rstrip()
    if isinstance(error, TransportError):
        return "Network error. Please check your internet connection."
    if isinstance(error, MalformedResponse):
        return "Invalid response format from API."
    if isinstance(error, ProviderError):
        provider = str(error.extra.get("provider", ""))
        label = _PROVIDER_LABELS.get(provider, provider or "Provider")
        hint = f"{error.extra.get('provider_code') or ''} {error.message}"
        if "invalid_api_key" in hint or error.http_status == 401:
            return f"Invalid {label} API key. Please check your settings."
        if "insufficient_quota" in hint:
            return f"Your {label} account has insufficient quota. Please check your billing status."
        if "permission_error" in hint or error.http_status == 403:
            return f"Your {label} API key does not have permission to use this model."
        if isinstance(error, RateLimitError) or "rate_limit" in hint:
            return f"{label} rate limit exceeded. Please try again later."
        return f"{label} API Error: {error.message}"
    if isinstance(error, BusinessError):
        return error.message
    return str(error) or "An unexpected error occurred."
