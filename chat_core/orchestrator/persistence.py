"""持久化网关。

把一轮对话尽力写入存储，但不让存储失败影响 UI：

- ensure_conversation: 先在已知会话里查找，查不到或查询失败都直接尝试创建；
  创建失败只记日志，不阻止后续消息写入。
- save_user_message: 只尝试一次。
- save_assistant_message: 失败后立即重试一次（无退避，最多两次）。
- schedule_refresh: 写入完成后在后台刷新会话列表，失败直接吞掉。

不保证 user/assistant 两条消息的事务性，也不保证 exactly-once。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from chat_core.domain.conversation import Conversation, ConversationStore
from chat_core.infrastructure.logging.logger import logger


ConversationsCallback = Callable[[List[Conversation]], None]


@dataclass
class PersistOutcome:
    conversation_ok: bool
    user_saved: Optional[bool]
    assistant_saved: bool
    assistant_attempts: int


class PersistenceGateway:
    def __init__(self, store: ConversationStore, on_conversations: Optional[ConversationsCallback] = None):
        self._store = store
        self._on_conversations = on_conversations
        self._tasks: Set[asyncio.Task] = set()

    async def ensure_conversation(
        self,
        conversation_id: str,
        owner_id: Optional[str],
        title: str,
        model: Optional[str],
    ) -> bool:
        log_ctx = {"conversation_id": conversation_id}
        try:
            known = await self._store.list_conversations(owner_id)
            if any(c.id == conversation_id for c in known):
                return True
        except Exception as e:
            self._log(logging.WARNING, "Conversation lookup failed, creating anyway", log_ctx, error=str(e))
        try:
            await self._store.ensure_conversation(conversation_id, owner_id, title, model)
            self._log(logging.INFO, "Ensured conversation", log_ctx)
            return True
        except Exception as e:
            self._log(logging.ERROR, "Failed to create conversation", log_ctx, error=str(e))
            return False

    async def save_user_message(self, conversation_id: str, content: str) -> bool:
        try:
            await self._store.save_message(conversation_id, "user", content)
            return True
        except Exception as e:
            self._log(
                logging.ERROR,
                "Failed to save user message",
                {"conversation_id": conversation_id},
                error=str(e),
            )
            return False

    async def save_assistant_message(self, conversation_id: str, content: str, model: Optional[str]) -> int:
        """保存 assistant 消息，返回成功时的尝试次数；两次都失败返回 0。"""
        log_ctx = {"conversation_id": conversation_id}
        for attempt in (1, 2):
            try:
                await self._store.save_message(conversation_id, "assistant", content, model)
                return attempt
            except Exception as e:
                level = logging.WARNING if attempt == 1 else logging.ERROR
                message = "Assistant message save failed, retrying" if attempt == 1 else "Failed to save assistant message"
                self._log(level, message, log_ctx, attempt=attempt, error=str(e))
        return 0

    async def persist_turn(
        self,
        conversation_id: str,
        owner_id: Optional[str],
        title: str,
        model: Optional[str],
        user_content: Optional[str],
        assistant_content: str,
    ) -> PersistOutcome:
        """持久化一轮对话；user_content 为 None 表示重新生成，不重复写用户消息。"""
        conversation_ok = await self.ensure_conversation(conversation_id, owner_id, title, model)
        user_saved: Optional[bool] = None
        if user_content is not None:
            user_saved = await self.save_user_message(conversation_id, user_content)
        attempts = await self.save_assistant_message(conversation_id, assistant_content, model)
        self.schedule_refresh(owner_id)
        return PersistOutcome(
            conversation_ok=conversation_ok,
            user_saved=user_saved,
            assistant_saved=attempts > 0,
            assistant_attempts=attempts,
        )

    def schedule_refresh(self, owner_id: Optional[str]) -> asyncio.Task:
        task = asyncio.create_task(self._refresh(owner_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """等待所有后台刷新结束（测试与关闭时使用）。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _refresh(self, owner_id: Optional[str]) -> None:
        try:
            conversations = await self._store.list_conversations(owner_id)
            if self._on_conversations is not None:
                self._on_conversations(conversations)
        except Exception as e:
            self._log(logging.DEBUG, "Conversation list refresh failed", {}, error=str(e))

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
