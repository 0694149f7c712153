"""对话轮次编排层：单槽生成许可、持久化网关、标题调度、会话缓存与编排器本身。"""

from chat_core.orchestrator.turn_orchestrator import TurnOrchestrator

__all__ = ["TurnOrchestrator"]
