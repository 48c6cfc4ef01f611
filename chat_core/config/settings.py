"""运行时配置模块。

支持从 .env、config.yaml 以及环境变量加载配置。
这里只放进程级别的配置（存储目录、日志、超时、各 Provider 的地址等）；
用户可编辑的设置（主题、默认模型、API Key 等）由 SettingsStore 持久化。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class AppSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="键值存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    log_level: str = Field(default="INFO", description="日志级别")

    # ---- HTTP ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- Provider 地址 ----
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    anthropic_base_url: str = Field(default="https://api.anthropic.com/v1")
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")
    mistral_base_url: str = Field(default="https://api.mistral.ai/v1")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")

    # OpenRouter 用来识别调用方应用的两个请求头
    app_referer: str = Field(default="https://github.com/solamente0/sololom", description="HTTP-Referer")
    app_title: str = Field(default="Sololom", description="X-Title")

    # ---- 首次运行时写入 GlobalSettings 的初始密钥（可选） ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    mistral_api_key: Optional[str] = Field(default=None, description="Mistral API 密钥")
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "anthropic_api_key", "mistral_api_key", "openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def seed_credentials(self) -> Dict[str, str]:
        """返回配置中已提供的 API Key（provider -> key）。"""

        seeds = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "mistral": self.mistral_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return {k: v for k, v in seeds.items() if v}


settings = AppSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AppSettings
