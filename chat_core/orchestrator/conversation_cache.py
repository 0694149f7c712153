"""会话 transcript 缓存与加载合并。

缓存只是 UI 的镜像：每次加载都整体替换条目，从不逐字段合并；空 transcript 同样会被缓存。
同一会话的加载在进行中时，重复请求复用进行中的那一次，不会再次访问存储。
"""

import asyncio
from typing import Dict, List, Optional

from chat_core.domain.conversation import ConversationStore
from chat_core.domain.models import Message


class ConversationCache:
    def __init__(self, store: ConversationStore):
        self._store = store
        self._entries: Dict[str, List[Message]] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def get(self, conversation_id: str) -> Optional[List[Message]]:
        entry = self._entries.get(conversation_id)
        return list(entry) if entry is not None else None

    def put(self, conversation_id: str, messages: List[Message]) -> None:
        self._entries[conversation_id] = list(messages)

    def evict(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    def is_loading(self, conversation_id: str) -> bool:
        return conversation_id in self._inflight

    def start_load(self, conversation_id: str) -> asyncio.Task:
        """启动一次加载，已有进行中的加载则直接返回它。"""
        task = self._inflight.get(conversation_id)
        if task is None:
            task = asyncio.create_task(self._fetch(conversation_id))
            self._inflight[conversation_id] = task
            task.add_done_callback(lambda t, cid=conversation_id: self._finish(cid, t))
        return task

    async def load(self, conversation_id: str) -> List[Message]:
        # shield: 调用方被取消时不影响其他等待同一加载的调用方
        return await asyncio.shield(self.start_load(conversation_id))

    async def _fetch(self, conversation_id: str) -> List[Message]:
        try:
            rows = await self._store.list_messages(conversation_id)
        except Exception:
            self.evict(conversation_id)
            raise
        messages = [
            Message(
                id=row.id,
                conversation_id=conversation_id,
                role=row.role,
                content=row.content,
                model=row.model,
                created_at=row.created_at,
                status="complete",
            )
            for row in rows
        ]
        self.put(conversation_id, messages)
        return messages

    def _finish(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(conversation_id) is task:
            del self._inflight[conversation_id]
        # 结果由等待方读取；这里取一次异常，避免无人等待时的告警
        if not task.cancelled():
            task.exception()
