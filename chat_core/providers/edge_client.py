"""托管后端 edge function Provider 适配器。

每个逻辑模型对应一个 edge function：
- URL: {edge_base_url}/functions/v1/{endpoint}
- 认证: 已登录用户使用 Authorization: Bearer <access_token>，匿名用户使用 apikey: <anon key>

流式后端返回 SSE，每行形如 ``data: {...}``，兼容两种负载：
- ``{"type": "chunk", "content": "..."}`` / ``{"type": "complete", "content": "..."}``
- OpenAI 风格的 ``{"choices": [{"delta": {"content": "..."}}]}``

非流式后端返回一次性 JSON ``{"response": "..."}``。
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import (
    ApiError,
    AuthError,
    EmptyResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from chat_core.domain.models import Message
from chat_core.prompts import load_system_prompt
from chat_core.providers.base import ChunkCallback
from chat_core.providers.registry import ModelConfig, get_model_config


# 保留 \t \n \r，其余控制字符在发送前剔除
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


class EdgeFunctionClient:
    """Edge function Provider 客户端实现。"""

    name = "edge"

    def __init__(self, cfg=settings, access_token: Optional[str] = None):
        self._settings = cfg
        self._access_token = access_token

    async def send(self, transcript: List[Message], model: str, on_chunk: ChunkCallback) -> str:
        model_cfg = self._model_config(model)
        payload = self._build_payload(transcript, model_cfg)
        headers = self._headers()
        base = getattr(self._settings, "edge_base_url", "").rstrip("/")
        url = f"{base}/functions/v1/{model_cfg.endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                if model_cfg.streaming:
                    return await self._send_stream(client, url, payload, headers, on_chunk)
                return await self._send_once(client, url, payload, headers, on_chunk)
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"Request timed out: {e}")
        except httpx.RequestError as e:
            raise NetworkError(
                code="NETWORK_ERROR",
                message="Network error. Please check your internet connection and try again.",
                detail=str(e),
            )

    # ---- 流式 ----

    async def _send_stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        on_chunk: ChunkCallback,
    ) -> str:
        full_text = ""
        started = False
        async with client.stream("POST", url, json=payload, headers=headers) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                self._raise_for_status(resp)
            async for line in resp.aiter_lines():
                data = self._parse_sse_line(line)
                if data is None:
                    continue
                kind = data.get("type")
                if kind == "complete":
                    # complete 事件携带的全文优先于本地拼接的结果
                    final = data.get("content") or ""
                    if final.strip():
                        full_text = final
                    continue
                if kind == "error":
                    raise ApiError(code="STREAM_ERROR", message=str(data.get("error") or "Stream error"))
                if kind == "chunk":
                    text = data.get("content") or ""
                else:
                    text = self._delta_text(data)
                if not text:
                    continue
                started = True
                full_text += text
                # 不做缓冲，收到即回调
                on_chunk(text)
        if not started:
            raise EmptyResponseError(
                code="EMPTY_RESPONSE",
                message="Empty response: no streaming data received from AI service",
            )
        if not full_text.strip():
            raise EmptyResponseError(code="EMPTY_RESPONSE", message="Empty response received from AI service")
        return full_text

    # ---- 非流式 ----

    async def _send_once(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        on_chunk: ChunkCallback,
    ) -> str:
        resp = await client.post(url, json=payload, headers=headers)
        if resp.status_code >= 400:
            self._raise_for_status(resp)
        data = resp.json()
        if data.get("error"):
            raise ApiError(code="API_ERROR", message=str(data["error"]))
        content = data.get("response") or ""
        if not content.strip():
            raise EmptyResponseError(code="EMPTY_RESPONSE", message="Empty response received from AI service")
        on_chunk(content)
        return content

    # ---- 辅助方法 ----

    def _model_config(self, model: str) -> ModelConfig:
        try:
            return get_model_config(model)
        except KeyError:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"Unknown model: {model}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
            return headers
        anon_key = getattr(self._settings, "edge_anon_key", None)
        if not anon_key:
            raise ValidationError(code="MISSING_API_KEY", message="EDGE_ANON_KEY not set")
        headers["apikey"] = anon_key
        return headers

    def _build_payload(self, transcript: List[Message], model_cfg: ModelConfig) -> Dict[str, Any]:
        msgs = [{"role": "system", "content": load_system_prompt("chat")}]
        for m in transcript:
            content = _CONTROL_CHARS.sub("", m.content or "").strip()
            if content:
                msgs.append({"role": m.role, "content": content})
        return {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": model_cfg.default_temperature,
            "max_tokens": model_cfg.max_tokens,
            "stream": model_cfg.streaming,
        }

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        status = resp.status_code
        if status == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message="Rate limit exceeded. Please wait a moment and try again.",
                http_status=status,
            )
        if status == 401:
            raise AuthError(code="UNAUTHORIZED", message="Authentication failed. Please login again.", http_status=status)
        if status == 403:
            raise AuthError(code="FORBIDDEN", message="Access denied. Please check your permissions.", http_status=status)
        if status >= 500:
            raise ApiError(code="SERVER_ERROR", message="Server error. Please try again later.", http_status=status)
        raise ApiError(
            code="API_ERROR",
            message=f"Request failed with status {status}. Please try again.",
            http_status=status,
            body=resp.text,
        )

    @staticmethod
    def _parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
        if not line:
            return None
        data_str = line
        if data_str.startswith("data:"):
            data_str = data_str[5:].strip()
        else:
            data_str = data_str.strip()
        if not data_str or data_str == "[DONE]":
            return None
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _delta_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""
