"""基于本地 JSON 文件的 ConversationStore 实现。

目录结构::

    <root>/conversations/<conversation_id>/meta.json
    <root>/conversations/<conversation_id>/messages.jsonl

文件 IO 很小，直接在事件循环里同步执行：同一时刻只有一个协程在写，
meta.json 的读改写不会被并发的标题更新打断。
"""

import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore
from chat_core.domain.exceptions import BusinessError, StoreError
from chat_core.domain.models import Message, Role


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    async def ensure_conversation(
        self,
        conversation_id: str,
        owner_id: Optional[str],
        title: str,
        model: Optional[str],
    ) -> None:
        """不存在时创建会话；已存在则什么都不做（幂等）。"""
        cdir = self._conv_root / conversation_id
        if (cdir / "meta.json").exists():
            return
        try:
            cdir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=conversation_id,
            title=title,
            owner_id=owner_id,
            model=model,
            created_at=now,
            updated_at=now,
        )
        self._write_meta(cdir, conv)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        return self._read_meta(conversation_id)

    async def list_conversations(self, owner_id: Optional[str]) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                conv = self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8")))
            except Exception:
                continue
            if conv.owner_id == owner_id:
                items.append(conv)
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    async def save_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        model: Optional[str] = None,
    ) -> Message:
        cdir = self._conv_root / conversation_id
        if not (cdir / "meta.json").exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        message = Message(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            model=model,
        )
        try:
            payload = {
                "id": message.id,
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "model": model,
                "created_at": _iso(message.created_at),
            }
            with (cdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
            conv = self._read_meta(conversation_id)
            conv.updated_at = datetime.now(timezone.utc)
            if model:
                conv.model = model
            self._write_meta(cdir, conv)
        except BusinessError:
            raise
        except Exception as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        return message

    async def list_messages(self, conversation_id: str) -> List[Message]:
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[Message] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except Exception:
                continue
        items.sort(key=lambda m: m.created_at)
        return items

    async def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        try:
            shutil.rmtree(cdir)
        except Exception as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    async def update_conversation_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题。"""
        conv = self._read_meta(conversation_id)
        conv.title = title
        conv.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._conv_root / conversation_id, conv)

    def _read_meta(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        except Exception as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "owner_id": conv.owner_id,
            "model": conv.model,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except Exception as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or settings.default_title,
            owner_id=data.get("owner_id"),
            model=data.get("model"),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            model=data.get("model"),
            created_at=_parse_dt(data["created_at"]),
            status="complete",
        )
