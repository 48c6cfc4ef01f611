"""用户设置存储。

负责 globalSettings / chatSettings 两份文档的读取、合并写入、重置，
并通过按频道（global / chat）划分的订阅表通知变更。

合并规则：
- 顶层标量字段直接覆盖；
- credentials 按 provider 逐个合并，更新一个 Provider 的密钥不会清空其他密钥。

所有写入都先经过 pydantic 校验，校验失败时不会写入任何内容。
"""

import logging
from typing import Any, Callable, Dict, List, Literal, Mapping

from pydantic import ValidationError as PydanticValidationError

from chat_core.config.schemas import ChatSettings, GlobalSettings, normalize_keys
from chat_core.config.settings import Settings, settings as app_settings
from chat_core.domain.conversation import KeyValueStore
from chat_core.domain.exceptions import ValidationError
from chat_core.infrastructure.logging.logger import logger


GLOBAL_SETTINGS_KEY = "globalSettings"
CHAT_SETTINGS_KEY = "chatSettings"

Channel = Literal["global", "chat"]
CHANNELS = ("global", "chat")

Subscriber = Callable[[Any], None]


def _validation_error(exc: PydanticValidationError) -> ValidationError:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return ValidationError(code="INVALID_SETTINGS", message=details or str(exc))


class SettingsStore:
    def __init__(self, kv: KeyValueStore, config: Settings = app_settings):
        self._kv = kv
        self._config = config
        self._subscribers: Dict[str, List[Subscriber]] = {c: [] for c in CHANNELS}

    # ---- 首次运行 ----

    async def initialize(self) -> GlobalSettings:
        """首次运行时写入默认设置；已有设置时原样返回。"""

        raw = await self._kv.get(GLOBAL_SETTINGS_KEY)
        if raw is not None:
            return await self.get()
        defaults = GlobalSettings()
        seeds = self._config.seed_credentials()
        if seeds:
            defaults = defaults.model_copy(update={"credentials": {**defaults.credentials, **seeds}})
        await self._kv.set(
            {
                GLOBAL_SETTINGS_KEY: defaults.to_document(),
                CHAT_SETTINGS_KEY: ChatSettings().to_document(),
            }
        )
        logger.info(
            "Initialized default settings",
            extra={"extra": {"seeded_providers": sorted(seeds)}},
        )
        return defaults

    # ---- 全局设置 ----

    async def get(self) -> GlobalSettings:
        raw = await self._kv.get(GLOBAL_SETTINGS_KEY)
        if not isinstance(raw, Mapping):
            return GlobalSettings()
        try:
            return GlobalSettings.model_validate(raw)
        except PydanticValidationError as exc:
            # 存储中的文档损坏时退回默认值，不阻塞使用
            logger.warning(
                "Stored global settings invalid, using defaults",
                extra={"extra": {"error": str(exc)}},
            )
            return GlobalSettings()

    async def update(self, partial: Mapping[str, Any]) -> GlobalSettings:
        current = await self.get()
        updated = self.merge(current, partial)
        await self._kv.set({GLOBAL_SETTINGS_KEY: updated.to_document()})
        self._notify("global", updated)
        return updated

    async def reset(self) -> GlobalSettings:
        defaults = GlobalSettings()
        await self._kv.set({GLOBAL_SETTINGS_KEY: defaults.to_document()})
        self._notify("global", defaults)
        return defaults

    @staticmethod
    def merge(current: GlobalSettings, partial: Mapping[str, Any]) -> GlobalSettings:
        """按合并规则生成新的 GlobalSettings（不落盘）。"""

        incoming = normalize_keys(GlobalSettings, partial)
        data = current.model_dump()
        creds = incoming.pop("credentials", None)
        data.update(incoming)
        if creds is not None:
            if not isinstance(creds, Mapping):
                raise ValidationError(code="INVALID_SETTINGS", message="credentials must be a mapping")
            data["credentials"] = {**current.credentials, **creds}
        try:
            return GlobalSettings.model_validate(data)
        except PydanticValidationError as exc:
            raise _validation_error(exc)

    # ---- 会话默认参数 ----

    async def get_chat_defaults(self) -> ChatSettings:
        raw = await self._kv.get(CHAT_SETTINGS_KEY)
        if not isinstance(raw, Mapping):
            return ChatSettings()
        try:
            return ChatSettings.model_validate(raw)
        except PydanticValidationError as exc:
            logger.warning(
                "Stored chat settings invalid, using defaults",
                extra={"extra": {"error": str(exc)}},
            )
            return ChatSettings()

    async def update_chat_defaults(self, partial: Mapping[str, Any]) -> ChatSettings:
        current = await self.get_chat_defaults()
        data = current.model_dump()
        data.update(normalize_keys(ChatSettings, partial))
        try:
            updated = ChatSettings.model_validate(data)
        except PydanticValidationError as exc:
            raise _validation_error(exc)
        await self._kv.set({CHAT_SETTINGS_KEY: updated.to_document()})
        self._notify("chat", updated)
        return updated

    async def reset_chat_defaults(self) -> ChatSettings:
        defaults = ChatSettings()
        await self._kv.set({CHAT_SETTINGS_KEY: defaults.to_document()})
        self._notify("chat", defaults)
        return defaults

    # ---- 点号路径读写，例如 "credentials.openai" ----

    async def get_value(self, key: str, default: Any = None) -> Any:
        value: Any = (await self.get()).model_dump()
        for part in key.split("."):
            if not isinstance(value, Mapping):
                return default
            value = value.get(GlobalSettings.field_name(part), value.get(part))
            if value is None:
                return default
        return value

    async def set_value(self, key: str, value: Any) -> GlobalSettings:
        parts = key.split(".")
        partial: Dict[str, Any] = {parts[-1]: value}
        for part in reversed(parts[:-1]):
            partial = {part: partial}
        top = GlobalSettings.field_name(parts[0])
        if len(parts) > 2 or (len(parts) == 2 and top != "credentials"):
            raise ValidationError(code="INVALID_SETTINGS", message=f"Unsupported settings key: {key}")
        return await self.update(partial)

    async def reload(self) -> GlobalSettings:
        """文档被整体替换（例如导入数据）后，重新读取并通知两个频道。"""

        global_settings = await self.get()
        self._notify("global", global_settings)
        self._notify("chat", await self.get_chat_defaults())
        return global_settings

    # ---- 订阅 ----

    def subscribe(self, channel: str, callback: Subscriber) -> Callable[[], None]:
        if channel not in self._subscribers:
            raise ValidationError(
                code="INVALID_CHANNEL",
                message='Invalid settings type. Must be "global" or "chat".',
            )
        self._subscribers[channel].append(callback)

        def unsubscribe() -> None:
            handlers = self._subscribers[channel]
            if callback in handlers:
                handlers.remove(callback)

        return unsubscribe

    def _notify(self, channel: str, value: Any) -> None:
        for callback in list(self._subscribers[channel]):
            try:
                callback(value)
            except Exception:
                logger.log(
                    logging.ERROR,
                    "Settings subscriber failed",
                    exc_info=True,
                    extra={"extra": {"channel": channel, "subscriber": repr(callback)}},
                )
