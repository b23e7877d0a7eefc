"""LLM Provider 集成层。

该包下的模块负责：
- 定义补全客户端抽象接口 (base)。
- 维护 Provider 默认配置与参数边界 (registry)。
- 解码 text/event-stream 事件帧 (sse)。
- 提供具体实现 (openrouter_client)。
"""

from typing import Optional

from chatbot_core.config.settings import settings
from chatbot_core.providers.base import CompletionClient
from chatbot_core.providers.openrouter_client import OpenRouterClient


def create_client(name: Optional[str] = None) -> CompletionClient:
    """根据名称创建补全客户端实例，目前只有 openrouter（OpenAI 兼容）。"""

    provider_name = (name or "openrouter").lower()
    if provider_name != OpenRouterClient.name:
        raise KeyError(f"Unknown provider: {provider_name!r}")
    return OpenRouterClient(settings)


def ai_configured() -> bool:
    """当前配置是否足以创建客户端：有密钥，或者指向自建代理。"""

    return bool(getattr(settings, "openrouter_api_key", None)) or bool(
        getattr(settings, "uses_custom_base_url", False)
    )
