"""对外 API 服务模块。

前台界面与后台之间只通过 {"action": str, "data": dict} 形式的消息通信，
Dispatcher 负责把消息分发到对应的处理函数，并统一返回
{"success": bool, "data"?: ..., "error"?: str}，任何失败都不会向外抛出异常。

支持的 action：
- getResponse（兼容旧名 getLLMResponse）: {model, messages, temperature, maxTokens}
  -> Provider 原始响应体。
- saveConversation: 完整会话记录 -> {success}。
- listConversations: -> 会话记录列表（最近更新在前）。
- deleteConversation: {id} -> {success}。
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from chat_core.config.settings import settings
from chat_core.config.settings_store import SettingsStore
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.exceptions import BusinessError, ValidationError, describe_error
from chat_core.domain.models import ChatParameters, Conversation, Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.conversation_store import KeyValueConversationStore
from chat_core.infrastructure.storage.kv_store import JsonFileKeyValueStore
from chat_core.providers import create_adapter
from chat_core.providers.adapter import ProviderAdapter


Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class Dispatcher:
    def __init__(
        self,
        settings_store: SettingsStore,
        store: ConversationStore,
        adapter: Optional[ProviderAdapter] = None,
    ):
        self._settings_store = settings_store
        self._store = store
        self._adapter = adapter or ProviderAdapter({})
        self._handlers: Dict[str, Handler] = {
            "getResponse": self._get_response,
            "getLLMResponse": self._get_response,
            "saveConversation": self._save_conversation,
            "listConversations": self._list_conversations,
            "deleteConversation": self._delete_conversation,
        }

    async def dispatch(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        action = message.get("action") if isinstance(message, Mapping) else None
        handler = self._handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            logger.warning("Unknown action", extra={"extra": {"action": repr(action)}})
            return {"success": False, "error": f"Unknown action: {action}"}

        data = message.get("data") or {}
        try:
            if not isinstance(data, Mapping):
                raise ValidationError(code="INVALID_REQUEST", message="data must be an object")
            result = await handler(data)
        except BusinessError as e:
            logger.warning(
                f"{action} failed: {e.message}",
                extra={"extra": {"action": action, "code": e.code}},
            )
            return {"success": False, "error": describe_error(e)}
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"{action} rejected invalid data: {e}",
                extra={"extra": {"action": action}},
            )
            return {"success": False, "error": f"Invalid request data: {e}"}
        except Exception as e:
            logger.error(
                f"{action} failed unexpectedly: {e}",
                exc_info=True,
                extra={"extra": {"action": action}},
            )
            return {"success": False, "error": str(e) or "An unexpected error occurred."}

        if result is None:
            return {"success": True}
        return {"success": True, "data": result}

    # ---- handlers ----

    async def _get_response(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        model = data.get("model") or "gpt-3.5-turbo"
        temperature = data.get("temperature")
        parameters = ChatParameters(
            model=model,
            temperature=0.7 if temperature is None else temperature,
            max_output_tokens=data.get("maxTokens") or data.get("maxOutputTokens") or 2048,
            system_prompt=data.get("systemPrompt") or "",
        )
        messages = [Message.from_dict(m) for m in data.get("messages") or []]
        # 每次请求都读取最新密钥
        global_settings = await self._settings_store.get()
        self._adapter.refresh(global_settings.credentials)
        return await self._adapter.call(model, messages, parameters)

    async def _save_conversation(self, data: Mapping[str, Any]) -> None:
        await self._store.upsert(Conversation.from_dict(data))

    async def _list_conversations(self, data: Mapping[str, Any]) -> list:
        return [c.to_dict() for c in await self._store.list()]

    async def _delete_conversation(self, data: Mapping[str, Any]) -> Dict[str, bool]:
        conversation_id = data.get("id")
        if not conversation_id:
            raise ValidationError(code="INVALID_REQUEST", message="id is required")
        return {"deleted": await self._store.delete(str(conversation_id))}


_dispatcher: Optional[Dispatcher] = None


def get_default_dispatcher() -> Dispatcher:
    """获取基于本地 JSON 文件存储的默认 Dispatcher（单例）。"""
    global _dispatcher
    if _dispatcher is None:
        kv = JsonFileKeyValueStore(root=settings.storage_root)
        settings_store = SettingsStore(kv)

        async def capacity() -> int:
            return (await settings_store.get()).max_stored_conversations

        _dispatcher = Dispatcher(
            settings_store=settings_store,
            store=KeyValueConversationStore(kv, capacity=capacity),
            adapter=create_adapter(),
        )
    return _dispatcher


async def dispatch(message: Mapping[str, Any]) -> Dict[str, Any]:
    return await get_default_dispatcher().dispatch(message)
