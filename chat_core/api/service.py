"""对外 API 服务模块。

提供简化的协程接口供上层应用（UI、脚本）调用，返回普通 dict。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore
from chat_core.domain.models import Message, TurnResult
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.orchestrator.turn_orchestrator import TurnOrchestrator
from chat_core.providers import create_provider, create_title_provider


_store: Optional[ConversationStore] = None
_orchestrator: Optional[TurnOrchestrator] = None


def get_default_orchestrator() -> TurnOrchestrator:
    """获取默认的匿名会话编排器实例（单例）。"""
    global _store, _orchestrator
    if _store is None:
        _store = JsonConversationStore(root=settings.storage_root)
    if _orchestrator is None:
        _orchestrator = TurnOrchestrator(
            provider=create_provider(),
            store=_store,
            title_provider=create_title_provider(),
        )
    return _orchestrator


def set_default_orchestrator(orchestrator: Optional[TurnOrchestrator]) -> None:
    """替换默认编排器（测试或登录后切换身份时使用）。"""
    global _orchestrator
    _orchestrator = orchestrator


def _message_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "model": message.model,
        "status": message.status,
        "created_at": message.created_at.isoformat(),
    }


def _conversation_dict(conversation: Conversation) -> Dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "model": conversation.model,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
    }


def _turn_dict(orchestrator: TurnOrchestrator, result: TurnResult) -> Dict[str, Any]:
    return {
        "status": result.status,
        "reason": result.reason,
        "conversation_id": orchestrator.active_conversation_id,
        "assistant_message": _message_dict(result.message) if result.message else None,
        "error": orchestrator.last_error,
    }


async def send_message(
    content: str,
    conversation_id: Optional[str] = None,
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """发送一条消息并等待本轮结束。

    Args:
        content: 用户输入内容
        conversation_id: 会话ID（可选；与当前会话不同时先切换过去）
        model: 逻辑模型名（可选，不传则使用上次选择的模型）

    Returns:
        包含本轮状态、会话ID、assistant 消息和错误提示的字典
    """
    orchestrator = get_default_orchestrator()
    try:
        if conversation_id and conversation_id != orchestrator.active_conversation_id:
            await orchestrator.select_conversation(conversation_id)
        result = await orchestrator.send_turn(content, target_model=model)
        return _turn_dict(orchestrator, result)
    except Exception as e:
        logger.error(f"Send failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
        }})
        raise


async def regenerate_last(model: Optional[str] = None) -> Dict[str, Any]:
    """重新生成当前会话最后一条 assistant 回复。"""
    orchestrator = get_default_orchestrator()
    result = await orchestrator.regenerate(target_model=model)
    return _turn_dict(orchestrator, result)


async def list_conversations(term: Optional[str] = None) -> List[Dict[str, Any]]:
    """列出当前身份的会话，可按标题关键字过滤。"""
    orchestrator = get_default_orchestrator()
    await orchestrator.refresh_conversations()
    conversations = orchestrator.search_conversations(term) if term else orchestrator.conversations
    return [_conversation_dict(c) for c in conversations]


async def get_conversation_messages(conversation_id: str) -> List[Dict[str, Any]]:
    """切换到指定会话并返回其消息列表。"""
    orchestrator = get_default_orchestrator()
    messages = await orchestrator.select_conversation(conversation_id)
    return [_message_dict(m) for m in messages]


def snapshot() -> Dict[str, Any]:
    """当前 UI 状态快照。"""
    orchestrator = get_default_orchestrator()
    stats = orchestrator.quota_stats()
    return {
        "conversation_id": orchestrator.active_conversation_id,
        "title": orchestrator.conversation_title,
        "is_generating": orchestrator.is_generating,
        "is_loading": orchestrator.is_loading,
        "last_error": orchestrator.last_error,
        "model": orchestrator.selected_model,
        "transcript": [_message_dict(m) for m in orchestrator.transcript],
        "usage": {
            "used": stats.used,
            "limit": stats.limit,
            "remaining": stats.remaining,
            "reset_at": stats.window_reset_at.isoformat(),
        } if stats else None,
    }
