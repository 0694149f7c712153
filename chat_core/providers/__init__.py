"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护逻辑模型与后端的映射 (registry)。
- 提供具体实现 (edge_client、title_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.providers.base import AIProvider, TitleProvider
from chat_core.providers.edge_client import EdgeFunctionClient
from chat_core.providers.title_client import HeuristicTitleProvider, LlmTitleProvider


def create_provider(access_token: Optional[str] = None) -> AIProvider:
    """创建对话 Provider；带 access_token 时以登录用户身份调用。"""

    return EdgeFunctionClient(settings, access_token=access_token)


def create_title_provider() -> TitleProvider:
    """配置了标题接口时使用 LLM 摘要，否则退回本地启发式标题。"""

    if getattr(settings, "title_base_url", None) and getattr(settings, "title_api_key", None):
        return LlmTitleProvider(settings)
    return HeuristicTitleProvider()
