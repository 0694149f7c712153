"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except Exception as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 模型与 Provider ----
    default_model: Optional[str] = Field(
        default="DeepSeek-V3",
        description="未显式指定模型时使用的逻辑模型名，由 registry 映射到具体后端",
    )
    edge_base_url: str = Field(
        default="http://localhost:54321",
        description="托管后端（edge functions）的基础 URL",
    )
    edge_anon_key: Optional[str] = Field(default=None, description="匿名访问使用的 anon key")

    # 标题生成（OpenAI 兼容 chat/completions 接口）
    title_base_url: Optional[str] = Field(
        default=None,
        description="标题摘要接口基础 URL；为空时使用本地启发式标题",
    )
    title_api_key: Optional[str] = Field(default=None, description="标题摘要接口密钥")
    title_model: str = Field(default="deepseek-chat", description="标题摘要使用的模型 ID")

    http_timeout: Optional[float] = Field(
        default=None,
        ge=1.0,
        description="HTTP 超时时间（秒）；为空表示生成请求不设超时",
    )
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")

    # ---- 匿名用户配额 ----
    anonymous_daily_limit: int = Field(default=20, ge=1, description="匿名用户每日消息上限")
    anonymous_burst_limit: int = Field(default=5, ge=1, description="突发窗口内允许的消息数")
    anonymous_burst_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="突发限速窗口长度（秒）",
    )
    quota_reset_hour: int = Field(default=2, ge=0, le=23, description="每日配额重置的本地小时")
    quota_state_file: Optional[str] = Field(
        default=None,
        description="匿名配额状态文件；为空则只保存在内存中",
    )

    # ---- 会话标题 ----
    default_title: str = Field(default="Untitled Conversation", description="新会话默认标题")
    title_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="标题生成任务的延迟启动时间（秒），避免与主流程争抢",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("edge_anon_key", "title_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
