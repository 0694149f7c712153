from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from .models import Message, Role, utcnow


DEFAULT_TITLE = "Untitled Conversation"


@dataclass
class Conversation:
    id: str
    title: str = DEFAULT_TITLE
    owner_id: Optional[str] = None
    model: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class ConversationStore(Protocol):
    """持久化网关依赖的存储接口，所有方法都是协程。"""

    async def ensure_conversation(
        self,
        conversation_id: str,
        owner_id: Optional[str],
        title: str,
        model: Optional[str],
    ) -> None:
        ...

    async def save_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        model: Optional[str] = None,
    ) -> Message:
        ...

    async def list_conversations(self, owner_id: Optional[str]) -> List[Conversation]:
        ...

    async def list_messages(self, conversation_id: str) -> List[Message]:
        ...

    async def delete_conversation(self, conversation_id: str) -> None:
        ...

    async def update_conversation_title(self, conversation_id: str, title: str) -> None:
        ...
