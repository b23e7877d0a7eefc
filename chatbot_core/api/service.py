"""对外 API 服务模块。

提供简化的函数接口供上层应用（Web 组件、命令行等渲染层）调用。
"""

from typing import Any, Dict, Optional

from chatbot_core.config.settings import settings
from chatbot_core.context.window import ContextWindow
from chatbot_core.domain.models import BotMetadata, StreamCallbacks
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.knowledge.loader import load_knowledge_base
from chatbot_core.providers import ai_configured, create_client
from chatbot_core.router.dialogue_router import DialogueRouter
from chatbot_core.router.routing import RoutingMode


_router: Optional[DialogueRouter] = None


def build_router() -> DialogueRouter:
    """按当前配置组装路由器。

    keyword-only 模式或既没有密钥也没有代理地址时不创建客户端，
    此时上下文窗口也不创建。
    """
    knowledge_base = load_knowledge_base(settings.knowledge_base_path)
    mode = RoutingMode(settings.mode)
    client = None
    context = None
    if mode is not RoutingMode.KEYWORD_ONLY and ai_configured():
        client = create_client()
        context = ContextWindow(
            system_prompt=settings.system_prompt,
            max_messages=settings.context_max_messages,
            max_tokens=settings.context_max_tokens,
        )
    return DialogueRouter(
        knowledge_base,
        client=client,
        context=context,
        mode=mode,
        hybrid_threshold=settings.hybrid_threshold,
        bot_metadata=BotMetadata(bot_name=settings.bot_name, theme_color=settings.theme_color),
        streaming=settings.streaming,
        inject_knowledge=settings.inject_knowledge,
    )


def get_default_router() -> DialogueRouter:
    """获取默认的路由器实例（单例），首次创建时调用 init()。"""
    global _router
    if _router is None:
        _router = build_router()
        _router.init()
    return _router


def reset_default_router() -> None:
    global _router
    _router = None


async def run_chat(
    user_input: str,
    callbacks: Optional[StreamCallbacks] = None,
) -> Dict[str, Any]:
    """运行一轮对话。

    Args:
        user_input: 用户输入内容
        callbacks: 流式回调（可选）

    Returns:
        包含 reply、options、source 等字段的字典

    Raises:
        各种 domain.exceptions 中定义的配置异常
    """
    try:
        router = get_default_router()
        response = await router.handle_input(user_input, callbacks)
        return response.to_dict()
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "error": str(e),
        }})
        raise


def select_option(target_id: str) -> Dict[str, Any]:
    """点击选项按钮。"""
    return get_default_router().handle_option_selection(target_id).to_dict()
