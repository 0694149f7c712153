"""State definition for the turn graph."""

from __future__ import annotations

from typing import Optional, TypedDict


class TurnState(TypedDict, total=False):
    """State shared across turn graph nodes.

    transcript 本身由编排器持有，这里只记录本轮的标识与结果。
    """

    content: str
    regenerate: bool
    model: str
    conversation_id: Optional[str]
    user_message_id: Optional[str]
    assistant_message_id: Optional[str]
    is_first_exchange: bool
    full_text: Optional[str]
    error_kind: Optional[str]
    error_message: Optional[str]
    phase: str
