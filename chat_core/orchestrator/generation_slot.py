"""单槽生成许可。

槽里持有的值就是当前的 StreamSession：槽被占用 <=> 生成标志为真 <=> StreamSession 存在。
释放槽即丢弃 StreamSession，hold() 保证在任何退出路径上都会释放。
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from chat_core.domain.models import StreamSession


class GenerationSlot:
    def __init__(self) -> None:
        self._session: Optional[StreamSession] = None

    @property
    def active(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[StreamSession]:
        return self._session

    def try_acquire(self, conversation_id: Optional[str] = None) -> Optional[StreamSession]:
        # 检查与占用之间没有 await，单线程事件循环下即为原子操作
        if self._session is not None:
            return None
        self._session = StreamSession(conversation_id=conversation_id)
        return self._session

    def release(self, session: StreamSession) -> None:
        if self._session is session:
            self._session = None

    @contextmanager
    def hold(self, session: StreamSession) -> Iterator[StreamSession]:
        try:
            yield session
        finally:
            self.release(session)
