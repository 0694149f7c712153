import asyncio
from collections import defaultdict
from typing import Dict, List, Optional

import pytest

from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import BusinessError, StoreError
from chat_core.domain.models import Message


class MemoryStore:
    """In-memory ConversationStore with call counting and failure injection."""

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.calls: Dict[str, int] = defaultdict(int)
        # "list_messages" / "save_message:assistant" -> remaining failures
        self.failures: Dict[str, int] = {}
        self.list_messages_gate: Optional[asyncio.Event] = None
        self._seq = 0

    def fail(self, key: str, times: int = 1) -> None:
        self.failures[key] = times

    def _maybe_fail(self, key: str) -> None:
        remaining = self.failures.get(key, 0)
        if remaining > 0:
            self.failures[key] = remaining - 1
            raise StoreError(code="STORE_WRITE_ERROR", message=f"{key} failed")

    async def ensure_conversation(self, conversation_id, owner_id, title, model):
        self.calls["ensure_conversation"] += 1
        self._maybe_fail("ensure_conversation")
        if conversation_id not in self.conversations:
            self.conversations[conversation_id] = Conversation(
                id=conversation_id, title=title, owner_id=owner_id, model=model
            )
            self.messages.setdefault(conversation_id, [])

    async def save_message(self, conversation_id, role, content, model=None):
        self.calls["save_message"] += 1
        self.calls[f"save_message:{role}"] += 1
        self._maybe_fail("save_message")
        self._maybe_fail(f"save_message:{role}")
        if conversation_id not in self.conversations:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        self._seq += 1
        message = Message(
            id=f"row-{self._seq}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            model=model,
        )
        self.messages[conversation_id].append(message)
        return message

    async def list_conversations(self, owner_id):
        self.calls["list_conversations"] += 1
        self._maybe_fail("list_conversations")
        return [c for c in self.conversations.values() if c.owner_id == owner_id]

    async def list_messages(self, conversation_id):
        self.calls["list_messages"] += 1
        if self.list_messages_gate is not None:
            await self.list_messages_gate.wait()
        self._maybe_fail("list_messages")
        return list(self.messages.get(conversation_id, []))

    async def delete_conversation(self, conversation_id):
        self.calls["delete_conversation"] += 1
        self._maybe_fail("delete_conversation")
        if conversation_id not in self.conversations:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        del self.conversations[conversation_id]
        self.messages.pop(conversation_id, None)

    async def update_conversation_title(self, conversation_id, title):
        self.calls["update_conversation_title"] += 1
        self._maybe_fail("update_conversation_title")
        if conversation_id not in self.conversations:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        self.conversations[conversation_id].title = title


class ScriptedProvider:
    """AIProvider that replays fixed chunks; `gate` holds the call open."""

    name = "scripted"

    def __init__(self, chunks=("Hi", " there"), full_text=None, error=None):
        self.chunks = list(chunks)
        self.full_text = full_text
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def send(self, transcript, model, on_chunk):
        self.calls.append(([(m.role, m.content) for m in transcript], model))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        for chunk in self.chunks:
            on_chunk(chunk)
        if self.full_text is not None:
            return self.full_text
        return "".join(self.chunks)


class FixedTitleProvider:
    def __init__(self, title="Greeting Chat", error=None):
        self.title = title
        self.error = error
        self.calls = 0

    async def summarize(self, transcript):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.title


async def wait_until(predicate, attempts: int = 500) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def provider():
    return ScriptedProvider()
