"""对话轮次使用的统一数据模型。

- Message: transcript 中的一条消息（user/assistant），带瞬时 status。
- StreamSession: 当前正在进行的一次生成，最多同时存在一个。
- TurnResult: send_turn 的返回值，告诉 UI 本轮是完成、被拒绝还是失败。
- UsageStats: 匿名配额的统计快照。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional


# transcript 中只有两种角色
Role = Literal["user", "assistant"]

# 消息的瞬时状态，不落库
MessageStatus = Literal["pending", "streaming", "complete", "error"]

TurnStatus = Literal["completed", "rejected", "quota_exceeded", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """一条对话消息。

    - user 消息创建后不再修改。
    - assistant 消息在流式过程中只追加 content，完成后冻结；
      出错时 content 被整体替换为错误提示。
    - model: 仅 assistant 消息设置，记录生成所用的逻辑模型名。
    """

    id: str
    conversation_id: Optional[str]
    role: Role
    content: str
    model: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    status: MessageStatus = "complete"


@dataclass
class StreamSession:
    """当前活跃的生成会话（不持久化）。"""

    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    text: str = ""

    def append(self, chunk: str) -> None:
        self.text += chunk


@dataclass
class TurnResult:
    """一次 send_turn 的结果。

    - status: completed / rejected / quota_exceeded / failed。
    - reason: 机器可读原因，例如 "busy"、"empty_content"、"timeout"。
    - message: 本轮的 assistant 消息（被拒绝时为 None）。
    """

    status: TurnStatus
    reason: Optional[str] = None
    message: Optional[Message] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"


@dataclass
class UsageStats:
    """匿名用量快照。"""

    used: int
    limit: int
    window_reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)
