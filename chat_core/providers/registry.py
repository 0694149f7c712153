"""模型注册表。

本模块将“逻辑模型名”与“具体后端”解耦：

- 逻辑名（logical_name）：UI 与编排层使用的名称，例如 "DeepSeek-V3"。
- endpoint：托管后端上对应的 edge function 名称，例如 "deepseek-chat"。
- provider_model：厂商实际的模型 ID，例如 "deepseek-chat"。

上层只关心逻辑名，具体走哪个后端、是否流式由这里集中配置。"""

from dataclasses import dataclass
from typing import List, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider: str
    endpoint: str
    provider_model: str
    streaming: bool = True
    max_tokens: int = 4000
    default_temperature: float = 0.7


MODEL_REGISTRY: Mapping[str, ModelConfig] = {
    "DeepSeek-V3": ModelConfig(
        logical_name="DeepSeek-V3",
        provider="DeepSeek",
        endpoint="deepseek-chat",
        provider_model="deepseek-chat",
    ),
    "DeepSeek-R1": ModelConfig(
        logical_name="DeepSeek-R1",
        provider="DeepSeek",
        endpoint="deepseek-chat",
        provider_model="deepseek-reasoner",
    ),
    # 以下后端返回一次性 JSON，不走 SSE
    "Claude": ModelConfig(
        logical_name="Claude",
        provider="Claude",
        endpoint="claude-chat",
        provider_model="claude-3-5-sonnet-latest",
        streaming=False,
    ),
    "Mistral": ModelConfig(
        logical_name="Mistral",
        provider="Mistral",
        endpoint="mistral-chat",
        provider_model="mistral-large-latest",
        streaming=False,
    ),
    "Groq": ModelConfig(
        logical_name="Groq",
        provider="Groq",
        endpoint="groq-chat",
        provider_model="llama-3.3-70b-versatile",
        streaming=False,
    ),
}


def get_model_config(name: str) -> ModelConfig:
    """根据逻辑名获取 ModelConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in MODEL_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown model: {name!r}")


def available_models() -> List[str]:
    return list(MODEL_REGISTRY)
