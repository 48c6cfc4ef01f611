import logging
from typing import Any, Callable, Awaitable, Dict, List, Optional

from chat_core.domain.conversation import ConversationStore, KeyValueStore
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Conversation
from chat_core.infrastructure.logging.logger import log_event


CONVERSATIONS_KEY = "conversations"
DEFAULT_MAX_CONVERSATIONS = 100

CapacityProvider = Callable[[], Awaitable[int]]


class KeyValueConversationStore(ConversationStore):
    """把所有会话作为一个有序列表（最近更新在前）存到键值存储的 conversations 下。

    每次写入都是整表写入：读出 -> 在内存中修改 -> 一次 set() 落盘。
    """

    def __init__(self, kv: KeyValueStore, capacity: Optional[CapacityProvider] = None):
        self._kv = kv
        self._capacity = capacity

    async def upsert(self, conversation: Conversation) -> None:
        items = await self._load_raw()
        record = conversation.to_dict()
        index = next((i for i, c in enumerate(items) if c.get("id") == conversation.id), -1)
        log_ctx: Dict[str, Any] = {"conversation_id": conversation.id}
        if index != -1:
            # 更新已有会话：移到最前面，不触发淘汰
            items.pop(index)
            items.insert(0, record)
            await self._kv.set({CONVERSATIONS_KEY: items})
            log_event(logging.INFO, "Updated conversation", log_ctx, count=len(items))
            return

        items.insert(0, record)
        cap = await self._max_conversations()
        evicted: List[str] = []
        if len(items) > cap:
            items, evicted = self._evict_oldest(items, cap)
        await self._kv.set({CONVERSATIONS_KEY: items})
        log_event(logging.INFO, "Stored conversation", log_ctx, count=len(items))
        if evicted:
            log_event(logging.INFO, "Evicted conversations", log_ctx, evicted=evicted, cap=cap)

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        for raw in await self._load_raw():
            if raw.get("id") == conversation_id:
                return self._to_conversation(raw)
        return None

    async def delete(self, conversation_id: str) -> bool:
        items = await self._load_raw()
        remaining = [c for c in items if c.get("id") != conversation_id]
        if len(remaining) == len(items):
            return False
        await self._kv.set({CONVERSATIONS_KEY: remaining})
        log_event(logging.INFO, "Deleted conversation", {"conversation_id": conversation_id})
        return True

    async def list(self) -> List[Conversation]:
        convs = [self._to_conversation(raw) for raw in await self._load_raw()]
        # 稳定排序：updated_at 相同时保留存储顺序
        convs.sort(key=lambda c: c.updated_at, reverse=True)
        return convs

    async def clear(self) -> None:
        await self._kv.set({CONVERSATIONS_KEY: []})

    async def _max_conversations(self) -> int:
        if self._capacity is None:
            return DEFAULT_MAX_CONVERSATIONS
        return max(1, int(await self._capacity()))

    def _evict_oldest(self, items: List[Dict[str, Any]], cap: int) -> tuple[List[Dict[str, Any]], List[str]]:
        """按 updatedAt 丢弃最旧的会话直到数量等于上限；时间相同时先丢列表靠后的。"""

        ranked = sorted(
            range(len(items)),
            key=lambda i: (self._to_conversation(items[i]).updated_at, -i),
        )
        drop = set(ranked[: len(items) - cap])
        kept = [c for i, c in enumerate(items) if i not in drop]
        evicted = [str(items[i].get("id")) for i in sorted(drop)]
        return kept, evicted

    async def _load_raw(self) -> List[Dict[str, Any]]:
        raw = await self._kv.get(CONVERSATIONS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise BusinessError(code="STORE_READ_ERROR", message="conversations document is not a list")
        return [c for c in raw if isinstance(c, dict)]

    @staticmethod
    def _to_conversation(raw: Dict[str, Any]) -> Conversation:
        try:
            return Conversation.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=f"invalid conversation record: {e}")
