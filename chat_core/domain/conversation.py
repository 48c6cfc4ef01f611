from typing import Any, List, Mapping, Optional, Protocol

from .models import Conversation


class KeyValueStore(Protocol):
    """异步键值存储（文档级）抽象，语义上对应浏览器的 storage.sync。

    每个 key 对应一个完整的 JSON 文档：globalSettings、chatSettings、conversations。
    set() 接收多个 key，要么全部写入，要么一个都不写。
    """

    async def get(self, key: str) -> Any:
        ...

    async def set(self, items: Mapping[str, Any]) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...


class ConversationStore(Protocol):
    async def upsert(self, conversation: Conversation) -> None:
        ...

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def delete(self, conversation_id: str) -> bool:
        ...

    async def list(self) -> List[Conversation]:
        ...

    async def clear(self) -> None:
        ...
