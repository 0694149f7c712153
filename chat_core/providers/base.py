"""Provider 抽象接口。

编排层不直接依赖具体后端的 HTTP 细节，而是依赖这里的协议：

- AIProvider: 把 transcript + 模型名发给语言模型后端，按到达顺序回调文本片段，
  最终返回完整文本。
- TitleProvider: 根据目前的对话内容生成一个简短标题。

这样可以在不改编排代码的前提下替换后端（edge function、直连 API、测试替身等）。
"""

from typing import Callable, List, Protocol

from chat_core.domain.models import Message


ChunkCallback = Callable[[str], None]


class AIProvider(Protocol):
    """语言模型 Provider 协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - send(transcript, model, on_chunk): 流式生成，每个片段立即回调 on_chunk，
      结束后返回完整文本；传输/认证/限流失败时抛出异常。
    """

    name: str

    async def send(self, transcript: List[Message], model: str, on_chunk: ChunkCallback) -> str:
        ...


class TitleProvider(Protocol):
    """会话标题摘要协议。"""

    async def summarize(self, transcript: List[Message]) -> str:
        ...
