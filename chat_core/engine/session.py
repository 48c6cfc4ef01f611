"""会话引擎核心模块。

ConversationSession 负责单个会话的一次次消息往返：

1. 本地预检（Provider 可识别、已配置密钥），失败直接抛出；
2. 按上下文窗口裁剪历史，拼接本次用户消息，调用 ProviderAdapter；
3. 成功时追加助手回复、生成标题、落盘；失败时进入错误状态并返回失败结果。

状态机：IDLE -> AWAITING_RESPONSE -> IDLE / ERROR_DISPLAYED。
同一会话同一时间只允许一个未完成的 send，通过状态判断保证，不使用锁。
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4

from chat_core.config.schemas import GlobalSettings
from chat_core.config.settings_store import SettingsStore
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.exceptions import (
    BusinessError,
    MalformedResponse,
    MissingCredential,
    ProviderError,
    SessionBusy,
    TransportError,
    UnsupportedProvider,
    describe_error,
)
from chat_core.domain.models import (
    DEFAULT_TITLE,
    ChatParameters,
    Conversation,
    Message,
    new_conversation_id,
)
from chat_core.engine.context_window import trim
from chat_core.engine.transcript import Transcript, export_transcript
from chat_core.infrastructure.logging.logger import log_event
from chat_core.providers.adapter import ProviderAdapter


TITLE_MAX_CHARS = 30


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    ERROR_DISPLAYED = "error_displayed"


@dataclass
class SendResult:
    """一次 send 的结果。

    status:
        - "ok": 收到回复并追加到会话。
        - "rejected": 空消息或上一条仍在等待回复，未做任何事。
        - "failed": Provider / 网络 / 响应格式错误，用户消息已保留，助手消息未追加。
    """

    status: Literal["ok", "rejected", "failed"]
    reply: Optional[str] = None
    error: Optional[BusinessError] = None
    error_message: Optional[str] = None
    persisted: bool = False


def derive_title(text: str) -> str:
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


class ConversationSession:
    def __init__(
        self,
        conversation: Conversation,
        global_settings: GlobalSettings,
        adapter: ProviderAdapter,
        store: ConversationStore,
        placeholder_title: str = DEFAULT_TITLE,
    ):
        self._conversation = conversation
        self._placeholder_title = placeholder_title
        self._settings = global_settings
        self._adapter = adapter
        self._store = store
        self._state = SessionState.IDLE
        self._last_error: Optional[BusinessError] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    async def open(
        cls,
        store: ConversationStore,
        settings_store: SettingsStore,
        adapter: Optional[ProviderAdapter] = None,
        conversation_id: Optional[str] = None,
        bind: bool = True,
    ) -> "ConversationSession":
        """按 ID 打开已有会话，ID 为空或不存在时用默认参数新建会话。"""

        global_settings = await settings_store.get()
        chat_defaults = await settings_store.get_chat_defaults()
        placeholder_title = chat_defaults.title or DEFAULT_TITLE
        conversation = await store.get_by_id(conversation_id) if conversation_id else None
        if conversation is None:
            conversation = Conversation(
                id=new_conversation_id(),
                title=placeholder_title,
                parameters=chat_defaults.to_parameters(model=global_settings.default_model),
            )
            log_event(
                logging.INFO,
                "Created new conversation",
                {"conversation_id": conversation.id},
                model=conversation.parameters.model,
            )
        if adapter is None:
            adapter = ProviderAdapter(global_settings.credentials)
        session = cls(conversation, global_settings, adapter, store, placeholder_title)
        if bind:
            session.bind(settings_store)
        return session

    # ---- 只读属性 ----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def messages(self) -> List[Message]:
        return list(self._conversation.messages)

    @property
    def last_error(self) -> Optional[BusinessError]:
        return self._last_error

    @property
    def global_settings(self) -> GlobalSettings:
        return self._settings

    # ---- 设置订阅 ----

    def bind(self, settings_store: SettingsStore) -> None:
        """订阅全局设置变更，变更后刷新本会话与 Adapter 使用的设置。"""

        self.close()
        self._unsubscribe = settings_store.subscribe("global", self.apply_settings)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def apply_settings(self, global_settings: GlobalSettings) -> None:
        self._settings = global_settings
        self._adapter.refresh(global_settings.credentials)

    # ---- 消息往返 ----

    async def send(self, text: str) -> SendResult:
        """发送一条用户消息。

        Args:
            text: 用户输入，首尾空白会被去掉。

        Returns:
            SendResult。空消息或正在等待回复时返回 rejected。

        Raises:
            UnsupportedProvider / MissingCredential: 本地预检失败，会话进入
            ERROR_DISPLAYED，消息列表保持不变。
        """

        user_text = (text or "").strip()
        if not user_text or self._state is SessionState.AWAITING_RESPONSE:
            return SendResult(status="rejected")

        start_time = time.time()
        conv = self._conversation
        params = conv.parameters
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conv.id,
            "model": params.model,
        }

        # 1. 本地预检，任何网络请求之前
        try:
            self._adapter.preflight(params.model)
        except (UnsupportedProvider, MissingCredential) as e:
            self._fail(e, log_ctx)
            raise

        # 2. 裁剪上下文并拼接本次用户消息
        self._state = SessionState.AWAITING_RESPONSE
        history = self._context(conv.messages, params)
        user_msg = Message(role="user", content=user_text)
        request_messages = history + [user_msg]
        conv.messages.append(user_msg)
        log_event(
            logging.INFO,
            "Sending message",
            log_ctx,
            history_count=len(conv.messages) - 1,
            sent_count=len(request_messages),
            window=self._settings.context_window_limit,
        )

        # 3. 调用 provider
        try:
            reply = await self._adapter.complete(params.model, request_messages, params)
        except (ProviderError, TransportError, MalformedResponse) as e:
            self._fail(e, log_ctx)
            return SendResult(status="failed", error=e, error_message=describe_error(e))
        except Exception:
            # 未预期的异常照常抛出，但不能让会话卡在等待状态
            self._state = SessionState.ERROR_DISPLAYED
            raise

        # 4. 追加回复、生成标题、落盘
        conv.messages.append(Message(role="assistant", content=reply))
        conv.touch()
        if conv.title in (DEFAULT_TITLE, self._placeholder_title):
            conv.title = derive_title(user_text)
        self._state = SessionState.IDLE
        self._last_error = None

        persisted = False
        if self._settings.save_history:
            persisted = await self._persist(log_ctx)

        log_event(
            logging.INFO,
            "Completed exchange",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            persisted=persisted,
        )
        return SendResult(status="ok", reply=reply, persisted=persisted)

    # ---- 其他会话操作 ----

    async def clear(self) -> None:
        """清空对话，只保留 system 消息。等待回复期间调用会抛出 SessionBusy。"""

        self._ensure_idle("clear")
        system = self._conversation.system_message
        self._conversation.messages = [system] if system else []
        self._conversation.touch()
        if self._state is SessionState.ERROR_DISPLAYED:
            self._state = SessionState.IDLE
            self._last_error = None
        if self._settings.save_history:
            await self._persist({"conversation_id": self._conversation.id})

    async def update_parameters(self, **changes: Any) -> ChatParameters:
        """修改会话参数，例如 update_parameters(model="claude-3-opus", temperature=0.2)。"""

        self._ensure_idle("update_parameters")
        current = self._conversation.parameters
        unknown = set(changes) - {"model", "temperature", "max_output_tokens", "system_prompt"}
        if unknown:
            raise ValueError(f"unknown chat parameters: {sorted(unknown)}")
        data = {
            "model": current.model,
            "temperature": current.temperature,
            "max_output_tokens": current.max_output_tokens,
            "system_prompt": current.system_prompt,
        }
        data.update(changes)
        self._conversation.parameters = ChatParameters(**data)
        self._conversation.touch()
        if self._settings.save_history:
            await self._persist({"conversation_id": self._conversation.id})
        return self._conversation.parameters

    def export(self, fmt: str = "markdown") -> Transcript:
        return export_transcript(self._conversation, fmt)

    # ---- 内部实现 ----

    def _ensure_idle(self, operation: str) -> None:
        if self._state is SessionState.AWAITING_RESPONSE:
            raise SessionBusy(
                code="SESSION_BUSY",
                message=f"Cannot {operation} while waiting for a response",
                conversation_id=self._conversation.id,
            )

    def _context(self, history: List[Message], params: ChatParameters) -> List[Message]:
        messages = list(history)
        if params.system_prompt and not (messages and messages[0].role == "system"):
            messages.insert(0, Message(role="system", content=params.system_prompt))
        return trim(messages, self._settings.context_window_limit)

    def _fail(self, error: BusinessError, log_ctx: Dict[str, Any]) -> None:
        self._state = SessionState.ERROR_DISPLAYED
        self._last_error = error
        log_event(
            logging.WARNING,
            "Message exchange failed",
            log_ctx,
            code=error.code,
            error=error.message,
        )

    async def _persist(self, log_ctx: Dict[str, Any]) -> bool:
        try:
            await self._store.upsert(self._conversation)
        except BusinessError as e:
            # 保存失败不影响本次回复
            log_event(logging.ERROR, "Failed to save conversation", log_ctx, code=e.code, error=e.message)
            return False
        return True
