"""对话轮次编排器。

把一条用户消息变成一轮完整的对话：

1. 校验（空内容、正在生成、没有可用模型）与匿名配额检查，失败时不修改任何状态；
2. 占用单槽生成许可，按 drafting -> awaiting -> streaming -> finalizing 的状态图执行；
3. 流式片段到达即追加到占位 assistant 消息并通知 UI；
4. 尽力持久化，首轮对话后在后台生成标题；
5. 任何退出路径都会释放生成许可。

transcript 在每一轮开始时被绑定到本轮；期间切换或新建会话只会替换
orchestrator 当前展示的列表，不会把本轮的片段写进别的会话。
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import uuid4

from chat_core.config.settings import Settings, settings
from chat_core.domain.conversation import Conversation, ConversationStore
from chat_core.domain.models import Message, TurnResult, UsageStats
from chat_core.flows.graph import build_turn_graph
from chat_core.flows.state import TurnState
from chat_core.infrastructure.logging.logger import logger
from chat_core.orchestrator.conversation_cache import ConversationCache
from chat_core.orchestrator.error_messages import QUOTA_EXCEEDED_MESSAGE, classify_error
from chat_core.orchestrator.generation_slot import GenerationSlot
from chat_core.orchestrator.persistence import PersistenceGateway
from chat_core.orchestrator.title_scheduler import TitleScheduler, normalize_title
from chat_core.providers.base import AIProvider, TitleProvider
from chat_core.quota.anonymous_usage import AnonymousQuota


LOAD_ERROR_TITLE = "Error loading conversation"
LOAD_ERROR_MESSAGE = "Failed to load conversation. Please try again."
DELETE_ERROR_MESSAGE = "Failed to delete conversation. Please try again."
RENAME_ERROR_MESSAGE = "Failed to rename conversation. Please try again."

# 监听器收到事件名：transcript / generating / error / conversations / title
Listener = Callable[[str], None]


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


class TurnOrchestrator:
    def __init__(
        self,
        provider: AIProvider,
        store: ConversationStore,
        quota: Optional[AnonymousQuota] = None,
        title_provider: Optional[TitleProvider] = None,
        *,
        owner_id: Optional[str] = None,
        default_model: Optional[str] = None,
        title_delay: Optional[float] = None,
        cfg: Settings = settings,
    ):
        self._cfg = cfg
        self._provider = provider
        self._store = store
        self._owner_id = owner_id
        if quota is None and owner_id is None:
            quota = AnonymousQuota()
        self._quota = quota

        self._slot = GenerationSlot()
        self._cache = ConversationCache(store)
        self._persistence = PersistenceGateway(store, on_conversations=self._set_conversations)
        self._titles: Optional[TitleScheduler] = None
        if title_provider is not None:
            self._titles = TitleScheduler(
                title_provider,
                store,
                delay=title_delay if title_delay is not None else cfg.title_delay_seconds,
                on_title=self._apply_title,
                default_title=cfg.default_title,
            )

        self._transcript: List[Message] = []
        self._active_id: Optional[str] = None
        self._title: str = cfg.default_title
        self._conversations: List[Conversation] = []
        self._last_error: Optional[str] = None
        self._loading_id: Optional[str] = None
        self._selected_model: Optional[str] = default_model if default_model is not None else cfg.default_model
        self._listeners: List[Listener] = []
        self._deleted: Set[str] = set()

        # 仅在一轮进行中有值
        self._turn_transcript: Optional[List[Message]] = None
        self._placeholder: Optional[Message] = None

        self._graph = build_turn_graph(self)

    # ---- UI 可见状态 ----

    @property
    def transcript(self) -> List[Message]:
        return list(self._transcript)

    @property
    def is_generating(self) -> bool:
        return self._slot.active

    @property
    def is_loading(self) -> bool:
        return self._loading_id is not None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._active_id

    @property
    def conversation_title(self) -> str:
        return self._title

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def selected_model(self) -> Optional[str]:
        return self._selected_model

    @selected_model.setter
    def selected_model(self, model: Optional[str]) -> None:
        self._selected_model = model

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """注册状态变化监听器，返回取消注册的函数。"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ---- 对话轮次 ----

    async def send_turn(
        self,
        content: str,
        *,
        regenerate: bool = False,
        target_model: Optional[str] = None,
    ) -> TurnResult:
        """执行一轮对话。

        Args:
            content: 用户输入；regenerate 时忽略。
            regenerate: 为 True 时重新生成最后一条 assistant 回复。
            target_model: 本轮使用的逻辑模型名，不传则使用上次选择的模型。

        Returns:
            TurnResult；被拒绝或超出配额时 transcript 不会有任何变化。
        """
        text = (content or "").strip()
        if not regenerate and not text:
            return TurnResult("rejected", "empty_content")
        if self._slot.active:
            return TurnResult("rejected", "busy")
        model = target_model or self._selected_model
        if not model:
            return TurnResult("rejected", "no_model")
        if regenerate:
            prior = self._last_user_message(self._transcript)
            if prior is None:
                return TurnResult("rejected", "nothing_to_regenerate")
            text = prior.content

        if self._is_anonymous and not regenerate and self._quota is not None and not self._quota.can_send():
            self._last_error = QUOTA_EXCEEDED_MESSAGE
            self._notify("error")
            return TurnResult("quota_exceeded", "limit_reached")

        session = self._slot.try_acquire(self._active_id)
        if session is None:
            return TurnResult("rejected", "busy")

        self._selected_model = model
        placeholder: Optional[Message] = None
        try:
            with self._slot.hold(session):
                self._turn_transcript = self._transcript
                self._last_error = None
                self._notify("generating")
                initial: TurnState = {
                    "content": text,
                    "regenerate": regenerate,
                    "model": model,
                    "conversation_id": self._active_id,
                }
                final = await self._graph.ainvoke(initial)
                placeholder = self._placeholder
        finally:
            turn_messages = self._turn_transcript
            turn_id = session.conversation_id
            self._turn_transcript = None
            self._placeholder = None
            self._deleted.discard(turn_id)
            # 本轮期间重新选中了同一会话：以本轮的列表为准
            if (
                turn_messages is not None
                and turn_id is not None
                and turn_id == self._active_id
                and self._transcript is not turn_messages
            ):
                self._transcript = turn_messages
                self._notify("transcript")
            self._notify("generating")

        if final.get("error_kind"):
            return TurnResult("failed", final["error_kind"], placeholder)
        return TurnResult("completed", None, placeholder)

    async def regenerate(self, target_model: Optional[str] = None) -> TurnResult:
        return await self.send_turn("", regenerate=True, target_model=target_model)

    # ---- 状态图节点 ----

    async def drafting_node(self, state: TurnState) -> TurnState:
        messages = self._turn_transcript
        if state.get("regenerate"):
            if messages and messages[-1].role == "assistant":
                messages.pop()
            prior = self._last_user_message(messages)
            self._notify_transcript(messages)
            return {"phase": "drafting", "user_message_id": prior.id if prior else None}

        user = Message(
            id=new_message_id(),
            conversation_id=state.get("conversation_id"),
            role="user",
            content=state["content"],
        )
        messages.append(user)
        self._notify_transcript(messages)
        return {"phase": "drafting", "user_message_id": user.id}

    async def awaiting_node(self, state: TurnState) -> TurnState:
        messages = self._turn_transcript
        conversation_id = state.get("conversation_id") or new_conversation_id()
        if messages is self._transcript and self._active_id is None:
            self._active_id = conversation_id
        for message in messages:
            if message.conversation_id is None:
                message.conversation_id = conversation_id

        placeholder = Message(
            id=new_message_id(),
            conversation_id=conversation_id,
            role="assistant",
            content="",
            model=state["model"],
            status="pending",
        )
        messages.append(placeholder)
        self._placeholder = placeholder
        session = self._slot.session
        session.conversation_id = conversation_id
        session.message_id = placeholder.id

        # 出错的回复不算一轮交流；之前没有成功回复即视为首轮
        prior_replies = [m for m in messages[:-1] if m.role == "assistant" and m.status != "error"]
        is_first = not prior_replies and self._title_for(conversation_id) == self._cfg.default_title
        self._notify_transcript(messages)
        return {
            "phase": "awaiting",
            "conversation_id": conversation_id,
            "assistant_message_id": placeholder.id,
            "is_first_exchange": is_first,
        }

    async def streaming_node(self, state: TurnState) -> TurnState:
        messages = self._turn_transcript
        placeholder = self._placeholder
        session = self._slot.session
        log_ctx = {"conversation_id": state["conversation_id"], "model": state["model"]}
        history = self._context_for(messages, placeholder, log_ctx)

        def on_chunk(chunk: str) -> None:
            session.append(chunk)
            placeholder.content += chunk
            placeholder.status = "streaming"
            self._notify_transcript(messages)

        self._log(logging.INFO, "Provider call started", log_ctx, provider=getattr(self._provider, "name", None))
        try:
            full_text = await self._provider.send(history, state["model"], on_chunk)
        except Exception as e:
            error = classify_error(e)
            self._log(logging.WARNING, "Provider call failed", log_ctx, error=str(e), kind=error.kind)
            return {"phase": "streaming", "error_kind": error.kind, "error_message": error.user_message}

        if not full_text or not full_text.strip():
            error = classify_error("empty response")
            self._log(logging.WARNING, "Provider returned empty response", log_ctx)
            return {"phase": "streaming", "error_kind": error.kind, "error_message": error.user_message}

        placeholder.content = full_text
        session.text = full_text
        self._log(logging.INFO, "Provider call completed", log_ctx, chars=len(full_text))
        return {"phase": "streaming", "full_text": full_text}

    async def finalizing_node(self, state: TurnState) -> TurnState:
        messages = self._turn_transcript
        placeholder = self._placeholder
        conversation_id = state["conversation_id"]
        regenerate = bool(state.get("regenerate"))
        log_ctx = {"conversation_id": conversation_id, "model": state["model"]}

        placeholder.status = "complete"
        self._notify_transcript(messages)
        try:
            if conversation_id in self._deleted:
                self._log(logging.INFO, "Conversation deleted during turn, skipping persistence", log_ctx)
            else:
                outcome = await self._persistence.persist_turn(
                    conversation_id,
                    self._owner_id,
                    self._title_for(conversation_id),
                    state["model"],
                    None if regenerate else state["content"],
                    placeholder.content,
                )
                self._log(
                    logging.INFO,
                    "Turn persisted",
                    log_ctx,
                    assistant_saved=outcome.assistant_saved,
                    attempts=outcome.assistant_attempts,
                )
                self._cache.put(conversation_id, messages)
                if state.get("is_first_exchange") and self._titles is not None:
                    self._titles.schedule(conversation_id, messages)
            if self._is_anonymous and not regenerate and self._quota is not None:
                self._quota.record()
        except Exception as e:
            error = classify_error(e)
            self._log(logging.ERROR, "Finalizing turn failed", log_ctx, error=str(e))
            return {"phase": "finalizing", "error_kind": error.kind, "error_message": error.user_message}
        return {"phase": "finalizing"}

    async def error_node(self, state: TurnState) -> TurnState:
        messages = self._turn_transcript
        placeholder = self._placeholder
        message = state.get("error_message") or classify_error("").user_message
        placeholder.content = message
        placeholder.status = "error"
        self._last_error = message
        self._notify_transcript(messages)
        self._notify("error")
        return {"phase": "error"}

    # ---- 会话切换与管理 ----

    def new_conversation(self) -> None:
        self._transcript = []
        self._active_id = None
        self._title = self._cfg.default_title
        self._last_error = None
        self._notify("transcript")

    async def select_conversation(self, conversation_id: str) -> List[Message]:
        """切换到指定会话并重新加载 transcript。

        有缓存时先展示缓存，加载完成后整体替换；同一会话正在加载时复用那次加载。
        加载完成时用户已切到别的会话，则只更新缓存。
        """
        session = self._slot.session
        if (
            session is not None
            and session.conversation_id == conversation_id
            and self._turn_transcript is not None
            and conversation_id not in self._deleted
        ):
            # 该会话正在生成，本轮的列表比存储更新，不重新拉取
            self._title = self._title_for(conversation_id)
            self._active_id = conversation_id
            self._transcript = self._turn_transcript
            self._last_error = None
            self._notify("transcript")
            return self.transcript

        coalesced = self._cache.is_loading(conversation_id)
        self._deleted.discard(conversation_id)
        self._active_id = conversation_id
        self._transcript = self._cache.get(conversation_id) or []
        self._title = self._known_title(conversation_id)
        self._last_error = None
        self._loading_id = conversation_id
        self._notify("transcript")

        try:
            messages = await self._cache.load(conversation_id)
        except Exception as e:
            if not coalesced:
                self._log(
                    logging.ERROR,
                    "Failed to load conversation",
                    {"conversation_id": conversation_id},
                    error=str(e),
                )
            self._cache.evict(conversation_id)
            if self._active_id == conversation_id:
                self._transcript = []
                self._title = LOAD_ERROR_TITLE
                self._last_error = LOAD_ERROR_MESSAGE
                self._notify("error")
        else:
            if self._active_id == conversation_id:
                self._transcript = list(messages)
        finally:
            if self._loading_id == conversation_id:
                self._loading_id = None
            self._notify("transcript")
        return self.transcript

    async def delete_conversation(self, conversation_id: str) -> bool:
        log_ctx = {"conversation_id": conversation_id}
        try:
            await self._store.delete_conversation(conversation_id)
        except Exception as e:
            self._log(logging.ERROR, "Failed to delete conversation", log_ctx, error=str(e))
            self._last_error = DELETE_ERROR_MESSAGE
            self._notify("error")
            return False

        session = self._slot.session
        if session is not None and session.conversation_id == conversation_id:
            self._deleted.add(conversation_id)
        if self._titles is not None:
            self._titles.forget(conversation_id)
        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        self._cache.evict(conversation_id)
        if self._active_id == conversation_id:
            self._transcript = []
            self._active_id = None
            self._title = self._cfg.default_title
            self._notify("transcript")
        self._notify("conversations")
        self._log(logging.INFO, "Deleted conversation", log_ctx)
        return True

    async def refresh_conversations(self) -> List[Conversation]:
        try:
            conversations = await self._store.list_conversations(self._owner_id)
        except Exception as e:
            self._log(logging.WARNING, "Failed to refresh conversations", {}, error=str(e))
            return self.conversations
        self._set_conversations(conversations)
        return self.conversations

    def search_conversations(self, term: str) -> List[Conversation]:
        needle = (term or "").strip().lower()
        if not needle:
            return self.conversations
        return [c for c in self._conversations if needle in (c.title or "").lower()]

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        cleaned = normalize_title(title)
        if not cleaned:
            return False
        try:
            await self._store.update_conversation_title(conversation_id, cleaned)
        except Exception as e:
            self._log(
                logging.ERROR,
                "Failed to rename conversation",
                {"conversation_id": conversation_id},
                error=str(e),
            )
            self._last_error = RENAME_ERROR_MESSAGE
            self._notify("error")
            return False
        self._apply_title(conversation_id, cleaned)
        return True

    def quota_stats(self) -> Optional[UsageStats]:
        if self._quota is None:
            return None
        return self._quota.stats()

    async def drain(self) -> None:
        """等待后台的列表刷新与标题任务结束。"""
        await self._persistence.drain()
        if self._titles is not None:
            await self._titles.drain()

    # ---- 内部工具 ----

    @property
    def _is_anonymous(self) -> bool:
        return self._owner_id is None

    @staticmethod
    def _last_user_message(messages: List[Message]) -> Optional[Message]:
        for message in reversed(messages):
            if message.role == "user":
                return message
        return None

    def _context_for(
        self,
        messages: List[Message],
        placeholder: Message,
        log_ctx: Dict[str, Any],
    ) -> List[Message]:
        usable = [
            m for m in messages
            if m is not placeholder and m.status != "error" and m.content.strip()
        ]
        max_context = self._cfg.max_context_messages
        if max_context and len(usable) > max_context:
            self._log(
                logging.INFO,
                "Truncated context",
                log_ctx,
                max_context=max_context,
                trimmed=len(usable) - max_context,
            )
            usable = usable[-max_context:]
        return usable

    def _known_title(self, conversation_id: str) -> str:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation.title or self._cfg.default_title
        return self._cfg.default_title

    def _title_for(self, conversation_id: str) -> str:
        if conversation_id == self._active_id:
            return self._title
        return self._known_title(conversation_id)

    def _set_conversations(self, conversations: List[Conversation]) -> None:
        self._conversations = list(conversations)
        for conversation in self._conversations:
            if (
                conversation.id == self._active_id
                and conversation.title
                and conversation.title != self._cfg.default_title
                and self._title == self._cfg.default_title
            ):
                self._title = conversation.title
        self._notify("conversations")

    def _apply_title(self, conversation_id: str, title: str) -> None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                conversation.title = title
        if conversation_id == self._active_id:
            self._title = title
        self._notify("title")

    def _notify_transcript(self, messages: List[Message]) -> None:
        if messages is self._transcript:
            self._notify("transcript")

    def _notify(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self._log(logging.WARNING, "Listener failed", {}, event=event, error=str(e))

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
