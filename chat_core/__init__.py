"""Chat Core 顶层包。

该包提供多 Provider 对话客户端的核心实现，
包括配置加载、领域模型、Provider 适配、上下文窗口、
会话引擎、设置与会话的持久化以及前后台消息分发等能力。
"""

from chat_core.engine.session import ConversationSession, SendResult, SessionState
from chat_core.providers.adapter import ProviderAdapter

__all__ = ["ConversationSession", "ProviderAdapter", "SendResult", "SessionState"]
