"""设置与会话的导出 / 导入。

导出格式：
    {"globalSettings": {...}, "chatSettings": {...}, "conversations": [...], "exportDate": ISO-8601}

默认导出时把非空密钥替换为 "[API_KEY]" 占位符；导入时除非显式要求，
否则保留本地已有密钥，且占位符永远不会覆盖本地密钥。

导入先完整校验，再用一次 set() 写入全部文档，校验失败时不写入任何内容。
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from chat_core.config.schemas import REDACTED_CREDENTIAL, ChatSettings, GlobalSettings, normalize_keys
from chat_core.config.settings_store import CHAT_SETTINGS_KEY, GLOBAL_SETTINGS_KEY, SettingsStore
from chat_core.domain.conversation import KeyValueStore
from chat_core.domain.exceptions import InvalidImport, ValidationError
from chat_core.domain.models import Conversation, format_timestamp, utc_now
from chat_core.infrastructure.logging.logger import log_event
from chat_core.infrastructure.storage.conversation_store import CONVERSATIONS_KEY


def _invalid(message: str) -> InvalidImport:
    return InvalidImport(code="INVALID_IMPORT", message=message)


def _parse_payload(payload: str | Mapping[str, Any]) -> Dict[str, Any]:
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise _invalid(f"Import data is not valid JSON: {e}")
    else:
        data = payload
    if not isinstance(data, Mapping):
        raise _invalid("Import data must be a JSON object")
    return dict(data)


def _legacy_credentials(doc: Mapping[str, Any]) -> Dict[str, Any]:
    """旧版导出使用 apiKeys 字段存放密钥。"""

    doc = dict(doc)
    if "credentials" not in doc and "apiKeys" in doc:
        doc["credentials"] = doc.pop("apiKeys")
    return doc


def merge_credentials(
    current: Mapping[str, str],
    incoming: Optional[Mapping[str, Any]],
    import_credentials: bool,
) -> Dict[str, str]:
    """按导入规则合并密钥：未要求导入时保留本地，占位符不覆盖本地。"""

    merged = dict(current)
    if not import_credentials or not incoming:
        return merged
    for provider, secret in incoming.items():
        if secret == REDACTED_CREDENTIAL:
            continue
        merged[str(provider)] = "" if secret is None else str(secret)
    return merged


class DataTransfer:
    def __init__(self, kv: KeyValueStore, settings_store: SettingsStore):
        self._kv = kv
        self._settings_store = settings_store

    # ---- 全量导出 / 导入 ----

    async def export_data(self, include_credentials: bool = False) -> str:
        global_settings = await self._settings_store.get()
        chat_settings = await self._settings_store.get_chat_defaults()
        conversations = await self._kv.get(CONVERSATIONS_KEY) or []
        if not include_credentials:
            global_settings = global_settings.redacted()
        document = {
            "globalSettings": global_settings.to_document(),
            "chatSettings": chat_settings.to_document(),
            "conversations": conversations,
            "exportDate": format_timestamp(utc_now()),
        }
        log_event(
            logging.INFO,
            "Exported data",
            {},
            conversations=len(conversations),
            include_credentials=include_credentials,
        )
        return json.dumps(document, ensure_ascii=False, indent=2)

    async def import_data(
        self,
        payload: str | Mapping[str, Any],
        overwrite: bool = False,
        import_credentials: bool = False,
    ) -> Dict[str, Any]:
        """导入 export_data 生成的数据。

        Args:
            payload: JSON 字符串或已解析的字典。
            overwrite: True 时用导入数据替换本地设置与会话；False 时合并，
                本地已有的同 ID 会话保留不变。
            import_credentials: 是否导入密钥（占位符始终忽略）。

        Returns:
            {"success": True, "globalSettings", "chatSettings", "conversations": 导入后的会话数}
        """

        data = _parse_payload(payload)
        raw_global = data.get("globalSettings")
        raw_chat = data.get("chatSettings")
        if not isinstance(raw_global, Mapping) or not isinstance(raw_chat, Mapping):
            raise _invalid("Invalid import data format: globalSettings and chatSettings are required")
        raw_conversations = data.get("conversations") or []
        if not isinstance(raw_conversations, list):
            raise _invalid("Invalid import data format: conversations must be a list")

        current_global = await self._settings_store.get()
        incoming_global = _legacy_credentials(raw_global)
        incoming_creds = incoming_global.pop("credentials", None)
        if incoming_creds is not None and not isinstance(incoming_creds, Mapping):
            raise _invalid("Invalid import data format: credentials must be an object")

        base_global = GlobalSettings() if overwrite else current_global
        base_chat = ChatSettings() if overwrite else await self._settings_store.get_chat_defaults()
        try:
            merged_global = GlobalSettings.model_validate(
                {
                    **base_global.model_dump(),
                    **normalize_keys(GlobalSettings, incoming_global),
                    "credentials": merge_credentials(
                        current_global.credentials, incoming_creds, import_credentials
                    ),
                }
            )
            merged_chat = ChatSettings.model_validate(
                {**base_chat.model_dump(), **normalize_keys(ChatSettings, raw_chat)}
            )
        except PydanticValidationError as e:
            raise _invalid(f"Invalid settings in import data: {e}")

        imported = self._validate_conversations(raw_conversations)
        if overwrite:
            conversations = imported
        else:
            existing = await self._kv.get(CONVERSATIONS_KEY) or []
            existing_ids = {c.get("id") for c in existing if isinstance(c, Mapping)}
            conversations = list(existing) + [c for c in imported if c["id"] not in existing_ids]
        conversations = self._cap(conversations, merged_global.max_stored_conversations)

        await self._kv.set(
            {
                GLOBAL_SETTINGS_KEY: merged_global.to_document(),
                CHAT_SETTINGS_KEY: merged_chat.to_document(),
                CONVERSATIONS_KEY: conversations,
            }
        )
        log_event(
            logging.INFO,
            "Imported data",
            {},
            overwrite=overwrite,
            import_credentials=import_credentials,
            conversations=len(conversations),
        )
        await self._settings_store.reload()
        return {
            "success": True,
            "globalSettings": merged_global.to_document(),
            "chatSettings": merged_chat.to_document(),
            "conversations": len(conversations),
        }

    # ---- 设置页导出 / 导入（只包含 globalSettings） ----

    async def export_settings(self, include_credentials: bool = False) -> str:
        global_settings = await self._settings_store.get()
        if not include_credentials:
            global_settings = global_settings.redacted()
        return json.dumps(global_settings.to_document(), ensure_ascii=False, indent=2)

    async def import_settings(
        self,
        payload: str | Mapping[str, Any],
        import_credentials: bool = False,
    ) -> GlobalSettings:
        data = _parse_payload(payload)
        if isinstance(data.get("globalSettings"), Mapping):
            data = dict(data["globalSettings"])
        data = _legacy_credentials(data)
        incoming_creds = data.pop("credentials", None)
        if incoming_creds is not None and not isinstance(incoming_creds, Mapping):
            raise _invalid("Invalid settings file: credentials must be an object")

        current = await self._settings_store.get()
        data["credentials"] = merge_credentials(current.credentials, incoming_creds, import_credentials)
        try:
            merged = SettingsStore.merge(current, data)
        except ValidationError as e:
            raise _invalid(f"Invalid settings file: {e.message}")
        # merge 已完成校验，这里只做一次写入与通知
        return await self._settings_store.update(merged.to_document())

    # ---- 内部实现 ----

    @staticmethod
    def _validate_conversations(raw: List[Any]) -> List[Dict[str, Any]]:
        """逐条校验会话记录，并统一为当前的持久化结构。"""

        records: List[Dict[str, Any]] = []
        seen = set()
        for idx, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise _invalid(f"Conversation #{idx} is not an object")
            try:
                conv = Conversation.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                raise _invalid(f"Conversation #{idx} is invalid: {e}")
            if conv.id in seen:
                continue
            seen.add(conv.id)
            records.append(conv.to_dict())
        return records

    @staticmethod
    def _cap(conversations: List[Dict[str, Any]], cap: int) -> List[Dict[str, Any]]:
        """超过容量时按 updatedAt 保留最新的 cap 条，最近更新在前。"""

        if len(conversations) <= cap:
            return conversations
        ranked = sorted(
            conversations,
            key=lambda c: Conversation.from_dict(c).updated_at,
            reverse=True,
        )
        return ranked[:cap]
