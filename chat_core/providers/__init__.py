"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 编解码协议 (base)。
- 维护 Provider 与模型配置、模型 ID -> Provider 的解析 (registry)。
- 提供各厂商的具体编解码（openai_compat、anthropic_codec）。
- 对外统一的调用入口 (adapter.ProviderAdapter)。
"""

from typing import Mapping, Optional

from chat_core.config.settings import settings
from chat_core.providers.adapter import ProviderAdapter
from chat_core.providers.registry import ProviderId, resolve_provider


def create_adapter(credentials: Optional[Mapping[str, str]] = None) -> ProviderAdapter:
    """创建 ProviderAdapter，未传入密钥时使用运行时配置中的初始密钥。"""

    return ProviderAdapter(credentials if credentials is not None else settings.seed_credentials(), settings)


__all__ = ["ProviderAdapter", "ProviderId", "create_adapter", "resolve_provider"]
