"""会话标题 Provider。

- LlmTitleProvider: 调用 OpenAI 兼容的 chat/completions 接口做一次非流式摘要。
- HeuristicTitleProvider: 不联网，直接取第一条用户消息作为标题。

两者都只返回原始文本，清洗与占位值判断由 TitleScheduler 负责。
"""

from typing import List

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import Message
from chat_core.prompts import load_system_prompt


# 标题只看开头几条消息就够了
_TITLE_CONTEXT_MESSAGES = 4


class LlmTitleProvider:
    """基于语言模型的标题摘要。"""

    def __init__(self, cfg=settings):
        self._settings = cfg

    async def summarize(self, transcript: List[Message]) -> str:
        base = getattr(self._settings, "title_base_url", None)
        api_key = getattr(self._settings, "title_api_key", None)
        if not base or not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="TITLE_BASE_URL/TITLE_API_KEY not set")
        msgs = [{"role": "system", "content": load_system_prompt("title")}]
        for m in transcript[:_TITLE_CONTEXT_MESSAGES]:
            if m.content:
                msgs.append({"role": m.role, "content": m.content})
        payload = {
            "model": self._settings.title_model,
            "messages": msgs,
            "temperature": 0.3,
            "max_tokens": 32,
            "stream": False,
        }
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout or 30.0, trust_env=False) as client:
                resp = await client.post(
                    f"{base.rstrip('/')}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Title provider rate limit")
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class HeuristicTitleProvider:
    """取第一条用户消息作为标题。"""

    async def summarize(self, transcript: List[Message]) -> str:
        for m in transcript:
            if m.role == "user" and m.content.strip():
                return m.content
        return ""
