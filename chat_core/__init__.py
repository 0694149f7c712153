"""Chat Core 顶层包。

该包提供对话应用的轮次编排核心，
包括配置加载、领域模型、Provider 适配、匿名配额、
持久化网关、标题生成与会话缓存等能力。
"""

from chat_core.orchestrator import TurnOrchestrator

__all__ = ["TurnOrchestrator"]
