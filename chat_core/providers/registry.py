"""Provider 与模型配置。

本模块负责两件事：

- 把模型 ID（如 "gpt-4"、"claude-3-opus"、"openrouter/meta-llama/llama-3-70b"）
  映射为 ProviderId。映射只依赖字符串前缀/关键字，是纯函数。
- 集中维护每个 Provider 的端点与可选模型列表，便于 UI 展示。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Tuple


class ProviderId(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"
    OPENROUTER = "openrouter"
    UNKNOWN = "unknown"


KNOWN_PROVIDERS: Tuple[ProviderId, ...] = (
    ProviderId.OPENAI,
    ProviderId.ANTHROPIC,
    ProviderId.MISTRAL,
    ProviderId.OPENROUTER,
)

OPENROUTER_PREFIX = "openrouter/"

_PREFIX_RULES: Tuple[Tuple[str, ProviderId], ...] = (
    (OPENROUTER_PREFIX, ProviderId.OPENROUTER),
    ("gpt", ProviderId.OPENAI),
    ("chatgpt", ProviderId.OPENAI),
    ("o1", ProviderId.OPENAI),
    ("o3", ProviderId.OPENAI),
    ("claude", ProviderId.ANTHROPIC),
    ("mistral", ProviderId.MISTRAL),
    ("open-mistral", ProviderId.MISTRAL),
    ("open-mixtral", ProviderId.MISTRAL),
    ("codestral", ProviderId.MISTRAL),
    ("ministral", ProviderId.MISTRAL),
)

# 只能通过聚合平台访问的模型家族
_OPENROUTER_KEYWORDS = ("llama", "gemini", "meta", "cohere", "palm")


def resolve_provider(model: str) -> ProviderId:
    """根据模型 ID 推断 Provider，无法识别时返回 ProviderId.UNKNOWN。"""

    name = (model or "").strip().lower()
    if not name:
        return ProviderId.UNKNOWN
    for prefix, provider in _PREFIX_RULES:
        if name.startswith(prefix):
            return provider
    if any(keyword in name for keyword in _OPENROUTER_KEYWORDS):
        return ProviderId.OPENROUTER
    return ProviderId.UNKNOWN


@dataclass(frozen=True)
class ModelInfo:
    """可选模型的展示信息。"""

    id: str
    name: str


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。

    base_url_setting 指向 AppSettings 中保存基础地址的字段名，
    这样部署时可以通过环境变量或 config.yaml 改写端点。
    """

    provider: ProviderId
    label: str
    base_url_setting: str
    chat_path: str
    models: Tuple[ModelInfo, ...]


OPENAI_CONFIG = ProviderConfig(
    provider=ProviderId.OPENAI,
    label="OpenAI",
    base_url_setting="openai_base_url",
    chat_path="/chat/completions",
    models=(
        ModelInfo("gpt-3.5-turbo", "GPT-3.5 Turbo"),
        ModelInfo("gpt-4", "GPT-4"),
        ModelInfo("gpt-4-turbo", "GPT-4 Turbo"),
        ModelInfo("gpt-4o", "GPT-4o"),
    ),
)

ANTHROPIC_CONFIG = ProviderConfig(
    provider=ProviderId.ANTHROPIC,
    label="Anthropic",
    base_url_setting="anthropic_base_url",
    chat_path="/messages",
    models=(
        ModelInfo("claude-2.1", "Claude 2.1"),
        ModelInfo("claude-3-opus", "Claude 3 Opus"),
        ModelInfo("claude-3-sonnet", "Claude 3 Sonnet"),
    ),
)

MISTRAL_CONFIG = ProviderConfig(
    provider=ProviderId.MISTRAL,
    label="Mistral",
    base_url_setting="mistral_base_url",
    chat_path="/chat/completions",
    models=(
        ModelInfo("mistral-small", "Mistral Small"),
        ModelInfo("mistral-medium", "Mistral Medium"),
        ModelInfo("mistral-large", "Mistral Large"),
    ),
)

OPENROUTER_CONFIG = ProviderConfig(
    provider=ProviderId.OPENROUTER,
    label="OpenRouter",
    base_url_setting="openrouter_base_url",
    chat_path="/chat/completions",
    models=(
        ModelInfo("openrouter/meta-llama/llama-3-70b-instruct", "Llama 3 70B"),
        ModelInfo("openrouter/google/gemini-pro", "Gemini Pro"),
        ModelInfo("openrouter/cohere/command-r-plus", "Command R+"),
    ),
)


PROVIDER_REGISTRY: Mapping[ProviderId, ProviderConfig] = {
    ProviderId.OPENAI: OPENAI_CONFIG,
    ProviderId.ANTHROPIC: ANTHROPIC_CONFIG,
    ProviderId.MISTRAL: MISTRAL_CONFIG,
    ProviderId.OPENROUTER: OPENROUTER_CONFIG,
}


def get_provider_config(provider: ProviderId | str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    try:
        key = ProviderId(str(getattr(provider, "value", provider)).lower())
    except ValueError:
        raise KeyError(f"Unknown provider: {provider!r}")
    if key not in PROVIDER_REGISTRY:
        raise KeyError(f"Unknown provider: {provider!r}")
    return PROVIDER_REGISTRY[key]


def available_models(provider: ProviderId | str) -> List[Dict[str, str]]:
    try:
        cfg = get_provider_config(provider)
    except KeyError:
        return []
    return [{"id": m.id, "name": m.name} for m in cfg.models]


def all_available_models() -> List[Dict[str, str]]:
    models: List[Dict[str, str]] = []
    for provider in KNOWN_PROVIDERS:
        for m in available_models(provider):
            models.append({**m, "provider": provider.value})
    return models


def display_name(model: str) -> str:
    for cfg in PROVIDER_REGISTRY.values():
        for m in cfg.models:
            if m.id == model:
                return m.name
    return model
