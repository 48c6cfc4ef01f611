"""Provider 适配器。

本模块负责：

1. 根据模型 ID 解析 Provider（registry.resolve_provider）。
2. 通过查找表选出 Provider 对应的 Codec，构造 WireRequest（URL、头、JSON 体）。
3. 使用 httpx.AsyncClient 发送请求并区分网络错误、HTTP 错误与格式错误。
4. 从厂商响应中取出纯文本回复。

缺少密钥 / 未知 Provider 在任何网络请求之前就会抛出，方便上层快速失败。
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from chat_core.config.settings import Settings, settings as app_settings
from chat_core.domain.exceptions import (
    MalformedResponse,
    MissingCredential,
    ProviderError,
    RateLimitError,
    TransportError,
    UnsupportedProvider,
)
from chat_core.domain.models import ChatParameters, Message, WireRequest
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.anthropic_codec import AnthropicCodec
from chat_core.providers.base import ProviderCodec
from chat_core.providers.openai_compat import OpenAICompatibleCodec, OpenRouterCodec
from chat_core.providers.registry import (
    KNOWN_PROVIDERS,
    ProviderId,
    all_available_models,
    available_models,
    get_provider_config,
    resolve_provider,
)


def build_codecs(config: Settings) -> Dict[ProviderId, ProviderCodec]:
    """每个已知 Provider 变体对应一个 Codec。"""

    return {
        ProviderId.OPENAI: OpenAICompatibleCodec("openai"),
        ProviderId.ANTHROPIC: AnthropicCodec(config.anthropic_version),
        ProviderId.MISTRAL: OpenAICompatibleCodec("mistral"),
        ProviderId.OPENROUTER: OpenRouterCodec(config.app_referer, config.app_title),
    }


class ProviderAdapter:
    """多 Provider 统一调用入口。

    - credentials: provider-id -> API Key，来自 GlobalSettings，设置变更时通过 refresh() 更新。
    - config: 运行时配置（端点、超时、OpenRouter 标识头等）。
    - transport: 可选的 httpx 传输层，测试时传入 httpx.MockTransport。
    """

    def __init__(
        self,
        credentials: Mapping[str, str],
        config: Settings = app_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credentials: Dict[str, str] = dict(credentials)
        self._config = config
        self._transport = transport
        self._codecs = build_codecs(config)
        missing = [p for p in KNOWN_PROVIDERS if p not in self._codecs]
        if missing:
            raise RuntimeError(f"No codec registered for providers: {missing}")

    def refresh(self, credentials: Mapping[str, str]) -> None:
        self._credentials = dict(credentials)

    # ---- 纯函数部分 ----

    @staticmethod
    def resolve_provider(model: str) -> ProviderId:
        return resolve_provider(model)

    def require_provider(self, model: str) -> ProviderId:
        provider = resolve_provider(model)
        if provider is ProviderId.UNKNOWN:
            raise UnsupportedProvider(
                code="UNSUPPORTED_PROVIDER",
                message=f"Unsupported model provider for model {model!r}",
                model=model,
            )
        return provider

    def require_credential(self, provider: ProviderId) -> str:
        api_key = (self._credentials.get(provider.value) or "").strip()
        if not api_key:
            raise MissingCredential(
                code="MISSING_CREDENTIAL",
                message=f"API key not configured for {provider.value}",
                provider=provider.value,
            )
        return api_key

    def preflight(self, model: str) -> ProviderId:
        """本地检查：Provider 可识别且已配置密钥，否则直接抛错。"""

        provider = self.require_provider(model)
        self.require_credential(provider)
        return provider

    def build_request(
        self,
        provider: ProviderId,
        messages: List[Message],
        parameters: ChatParameters,
        api_key: Optional[str] = None,
    ) -> WireRequest:
        codec = self._codec(provider, parameters.model)
        cfg = get_provider_config(provider)
        base = getattr(self._config, cfg.base_url_setting).rstrip("/")
        key = api_key if api_key is not None else self.require_credential(provider)
        return WireRequest(
            url=f"{base}{cfg.chat_path}",
            headers=codec.build_headers(key),
            body=codec.build_body(messages, parameters),
        )

    def extract_reply(self, provider: ProviderId, body: Optional[Mapping[str, Any]]) -> str:
        if body is None:
            return ""
        return self._codec(provider, "").extract_reply(body)

    @staticmethod
    def available_models(provider: ProviderId | str) -> List[Dict[str, str]]:
        return available_models(provider)

    @staticmethod
    def all_available_models() -> List[Dict[str, str]]:
        return all_available_models()

    # ---- 网络调用 ----

    async def call(
        self,
        model: str,
        messages: List[Message],
        parameters: ChatParameters,
    ) -> Dict[str, Any]:
        """发送一次对话请求，返回厂商原始响应 JSON。"""

        provider = self.preflight(model)
        if parameters.model != model:
            parameters = ChatParameters(
                model=model,
                temperature=parameters.temperature,
                max_output_tokens=parameters.max_output_tokens,
                system_prompt=parameters.system_prompt,
            )
        request = self.build_request(provider, messages, parameters)
        log_ctx = {"provider": provider.value, "model": model}
        log_event(logging.INFO, "Calling provider", log_ctx, message_count=len(messages))
        resp = await self._send(provider, request)
        if resp.status_code >= 400:
            raise self._http_error(provider, resp)
        try:
            data = resp.json()
        except ValueError:
            raise MalformedResponse(
                code="MALFORMED_RESPONSE",
                message=f"{provider.value} returned a non-JSON body",
                http_status=502,
                provider=provider.value,
            )
        log_event(logging.INFO, "Provider responded", log_ctx, status=resp.status_code)
        return data

    async def complete(
        self,
        model: str,
        messages: List[Message],
        parameters: ChatParameters,
    ) -> str:
        """call + extract_reply。"""

        data = await self.call(model, messages, parameters)
        provider = resolve_provider(model)
        if not isinstance(data, Mapping):
            raise MalformedResponse(
                code="MALFORMED_RESPONSE",
                message=f"{provider.value} response is not an object",
                http_status=502,
                provider=provider.value,
            )
        return self.extract_reply(provider, data)

    async def check_credential(self, provider: ProviderId | str, api_key: str) -> Dict[str, Any]:
        """用一次轻量请求检查 API Key 是否可用，返回 {success, message}。"""

        if not api_key:
            return {"success": False, "message": "API key is empty"}
        try:
            pid = ProviderId(str(getattr(provider, "value", provider)).lower())
        except ValueError:
            pid = ProviderId.UNKNOWN
        if pid is ProviderId.UNKNOWN:
            return {"success": False, "message": f"Unsupported provider: {provider}"}

        cfg = get_provider_config(pid)
        base = getattr(self._config, cfg.base_url_setting).rstrip("/")
        codec = self._codecs[pid]
        headers = codec.build_headers(api_key)
        if pid is ProviderId.ANTHROPIC:
            # Anthropic 没有简单的鉴权探测端点，用 1 token 的最小请求代替
            probe = ChatParameters(model="claude-3-sonnet", temperature=0.0, max_output_tokens=1)
            request = WireRequest(
                url=f"{base}{cfg.chat_path}",
                headers=headers,
                body=codec.build_body([Message(role="user", content="Hello")], probe),
            )
        elif pid is ProviderId.OPENROUTER:
            request = WireRequest(url=f"{base}/auth/key", headers=headers, body={}, method="GET")
        else:
            request = WireRequest(url=f"{base}/models", headers=headers, body={}, method="GET")

        try:
            resp = await self._send(pid, request)
        except TransportError as e:
            return {"success": False, "message": f"Error testing API key: {e.message}"}
        if resp.status_code < 400:
            return {"success": True, "message": "API key is valid"}
        err = self._http_error(pid, resp)
        return {"success": False, "message": f"Invalid API key: {err.message}"}

    # ---- 内部实现 ----

    def _codec(self, provider: ProviderId, model: str) -> ProviderCodec:
        codec = self._codecs.get(provider)
        if codec is None:
            raise UnsupportedProvider(
                code="UNSUPPORTED_PROVIDER",
                message=f"Unsupported model provider: {provider.value}",
                model=model,
            )
        return codec

    async def _send(self, provider: ProviderId, request: WireRequest) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.http_timeout,
                trust_env=False,
                transport=self._transport,
            ) as client:
                if request.method == "GET":
                    return await client.get(request.url, headers=request.headers)
                return await client.post(request.url, json=request.body, headers=request.headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接失败、超时等
            log_event(
                logging.WARNING,
                "Provider transport failure",
                {"provider": provider.value},
                error=str(e),
            )
            raise TransportError(
                code="TRANSPORT_ERROR",
                message=f"Failed to call {provider.value} API: {e}",
                http_status=503,
                provider=provider.value,
            )

    def _http_error(self, provider: ProviderId, resp: httpx.Response) -> ProviderError:
        try:
            body = resp.json()
        except ValueError:
            body = None
        provider_code, message = self._codecs[provider].parse_error(body)
        if not message:
            message = f"HTTP {resp.status_code}: Unknown error"
        log_event(
            logging.WARNING,
            "Provider returned error",
            {"provider": provider.value},
            status=resp.status_code,
            provider_code=provider_code,
        )
        error_cls = RateLimitError if resp.status_code == 429 else ProviderError
        return error_cls(
            code="RATE_LIMIT" if resp.status_code == 429 else "PROVIDER_ERROR",
            message=message,
            http_status=resp.status_code,
            provider=provider.value,
            provider_code=provider_code,
        )
