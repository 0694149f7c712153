"""会话标题生成调度器。

每个会话最多尝试一次：延迟一小段时间后在后台调用 TitleProvider，
得到可用标题就更新内存状态并写入存储。失败或返回占位值时静默放弃，不重试。

任务按 conversation_id 记录，与持久化之间没有顺序保证；
标题更新是“最后写入为准”，与 meta 的其他写入竞争也无害。
"""

import asyncio
import re
from typing import Callable, Dict, List, Optional, Set

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import TitleProvider


MAX_TITLE_LENGTH = 50

_QUOTES = "\"'`“”‘’"

# Provider 明确表示“没有合适标题”时返回的占位值
PLACEHOLDER_TITLES = {
    "untitled",
    "untitled conversation",
    "new conversation",
    "new chat",
    "nieuwe conversatie",
}

TitleCallback = Callable[[str, str], None]


def normalize_title(raw: str) -> str:
    title = re.sub(r"\s+", " ", raw or "").strip()
    title = title.strip(_QUOTES).strip()
    title = title.rstrip(".!。").strip()
    title = title.strip(_QUOTES).strip()
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH].rstrip()
    return title


def is_degenerate(title: str, default_title: str) -> bool:
    lowered = title.lower()
    return not title or lowered == default_title.lower() or lowered in PLACEHOLDER_TITLES


class TitleScheduler:
    def __init__(
        self,
        provider: TitleProvider,
        store: ConversationStore,
        delay: Optional[float] = None,
        on_title: Optional[TitleCallback] = None,
        default_title: Optional[str] = None,
    ):
        self._provider = provider
        self._store = store
        self._delay = settings.title_delay_seconds if delay is None else delay
        self._on_title = on_title
        self._default_title = default_title or settings.default_title
        self._attempted: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, conversation_id: str, transcript: List[Message]) -> Optional[asyncio.Task]:
        """为会话安排一次标题生成；同一会话只会安排一次。"""
        if conversation_id in self._attempted:
            return None
        self._attempted.add(conversation_id)
        # 拷贝一份，后续 transcript 的变化不影响摘要输入
        snapshot = list(transcript)
        task = asyncio.create_task(self._run(conversation_id, snapshot))
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t, cid=conversation_id: self._forget(cid, t))
        return task

    def forget(self, conversation_id: str) -> None:
        """会话被删除后不再记录；进行中的任务照常结束。"""
        self._attempted.discard(conversation_id)

    def pending(self, conversation_id: str) -> bool:
        return conversation_id in self._tasks

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def _run(self, conversation_id: str, transcript: List[Message]) -> None:
        log_ctx = {"conversation_id": conversation_id}
        try:
            if self._delay > 0:
                await asyncio.sleep(self._delay)
            raw = await self._provider.summarize(transcript)
            title = normalize_title(raw)
            if is_degenerate(title, self._default_title):
                logger.info("Title derivation skipped", extra={"extra": {**log_ctx, "raw": raw}})
                return
            if self._on_title is not None:
                self._on_title(conversation_id, title)
            await self._store.update_conversation_title(conversation_id, title)
            logger.info("Conversation titled", extra={"extra": {**log_ctx, "title": title}})
        except Exception as e:
            logger.info("Title derivation failed", extra={"extra": {**log_ctx, "error": str(e)}})

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]
