"""会话引擎：上下文窗口裁剪、会话状态机与对话记录导出。"""

from chat_core.engine.context_window import trim
from chat_core.engine.session import ConversationSession, SendResult, SessionState
from chat_core.engine.transcript import export_transcript

__all__ = ["ConversationSession", "SendResult", "SessionState", "export_transcript", "trim"]
