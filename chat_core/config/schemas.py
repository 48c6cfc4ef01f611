"""持久化的设置文档。

两份文档分别存放在键值存储的 globalSettings 与 chatSettings 下，
字段在存储中使用 camelCase，在代码里使用 snake_case。
"""

from typing import Any, Dict, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_core.domain.models import DEFAULT_TITLE, ChatParameters


PROVIDER_IDS = ("openai", "anthropic", "mistral", "openrouter")
REDACTED_CREDENTIAL = "[API_KEY]"


def _empty_credentials() -> Dict[str, str]:
    return {p: "" for p in PROVIDER_IDS}


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=True,
    )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def field_name(cls, key: str) -> str:
        """把 camelCase 或 snake_case 的键统一为字段名，未知键原样返回。"""

        for name, info in cls.model_fields.items():
            if key == name or key == info.alias:
                return name
        return key


class GlobalSettings(_Document):
    """全局设置。"""

    theme: Literal["light", "dark"] = "light"
    default_model: str = Field(default="gpt-3.5-turbo", min_length=1)
    credentials: Dict[str, str] = Field(default_factory=_empty_credentials)
    max_stored_conversations: int = Field(default=100, gt=0)
    context_window_limit: int = Field(default=0, ge=0)
    save_history: bool = True
    font_size: Literal["small", "medium", "large"] = "medium"
    compact_mode: bool = False

    def credential_for(self, provider: str) -> str:
        return self.credentials.get(provider) or ""

    def redacted(self) -> "GlobalSettings":
        """导出用副本：非空密钥替换为占位符。"""

        creds = {k: (REDACTED_CREDENTIAL if v else "") for k, v in self.credentials.items()}
        return self.model_copy(update={"credentials": creds})


class ChatSettings(_Document):
    """新会话使用的默认参数。"""

    model: str = Field(default="gpt-3.5-turbo", min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2048, gt=0)
    system_prompt: str = "You are a helpful assistant."
    title: str = DEFAULT_TITLE

    def to_parameters(self, model: str = "") -> ChatParameters:
        return ChatParameters(
            model=model or self.model,
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
        )


def normalize_keys(model_cls: type, partial: Mapping[str, Any]) -> Dict[str, Any]:
    return {model_cls.field_name(k): v for k, v in partial.items()}
