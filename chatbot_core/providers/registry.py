"""Provider 与模型配置。

集中维护 OpenAI 兼容 Provider 的默认值（base URL、默认模型及其参数边界），
客户端和工厂函数都从这里取默认值。"""

from dataclasses import dataclass
from typing import Mapping


@dataclass
class ModelConfig:
    """单个模型的默认参数。"""

    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    default_model: ModelConfig
    site_name: str = "SenangWebs Chatbot"
    timeout: float = 30.0
    retry_attempts: int = 2
    retry_delay: float = 1.0


# 参数合法区间
MAX_TOKENS_RANGE = (1, 32768)
TEMPERATURE_RANGE = (0.0, 2.0)


OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    default_model=ModelConfig(
        provider_model="openai/gpt-3.5-turbo",
        max_tokens=500,
        default_temperature=0.7,
    ),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openrouter": OPENROUTER_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
