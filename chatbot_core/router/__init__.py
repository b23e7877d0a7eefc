"""对话路由：模式决策表、回复文案与 DialogueRouter。"""

from chatbot_core.router.dialogue_router import DialogueRouter
from chatbot_core.router.routing import RouteAction, RoutingMode, decide_route

__all__ = ["DialogueRouter", "RouteAction", "RoutingMode", "decide_route"]
