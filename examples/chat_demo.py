"""Minimal demonstration of a conversation session."""

import asyncio

from chat_core.config.settings_store import SettingsStore
from chat_core.domain.exceptions import BusinessError, describe_error
from chat_core.engine.session import ConversationSession
from chat_core.infrastructure.storage.conversation_store import KeyValueConversationStore
from chat_core.infrastructure.storage.kv_store import JsonFileKeyValueStore


async def main() -> None:
    kv = JsonFileKeyValueStore()
    settings_store = SettingsStore(kv)
    await settings_store.initialize()

    async def capacity() -> int:
        return (await settings_store.get()).max_stored_conversations

    store = KeyValueConversationStore(kv, capacity=capacity)
    session = await ConversationSession.open(store, settings_store)
    question = "用一句话解释什么是上下文窗口"
    print("User:", question)
    try:
        result = await session.send(question)
        if result.status == "ok":
            print("Assistant:", result.reply)
        else:
            print("Error:", result.error_message)
    except BusinessError as e:
        print("Error:", describe_error(e))
    finally:
        session.close()


if __name__ == "__main__":
    asyncio.run(main())
