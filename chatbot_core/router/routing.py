"""路由模式与决策表。

模式是每个路由器实例的固定配置，不在对话过程中切换。决策表以数据形式
描述 (模式, 是否配置 AI, 是否命中, 置信度是否达标) → 动作，
None 表示该列取任意值，规则按顺序匹配第一条。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from chatbot_core.domain.models import MatchResult


class RoutingMode(str, Enum):
    KEYWORD_ONLY = "keyword-only"
    AI_ONLY = "ai-only"
    HYBRID = "hybrid"


class RouteAction(str, Enum):
    KEYWORD = "keyword"  # 返回命中节点的预置回复
    FALLBACK = "fallback"  # 返回兜底回复
    AI = "ai"  # 调用流式客户端
    CONFIG_ERROR = "config_error"  # AI 未配置的提示


@dataclass(frozen=True)
class RoutingRule:
    mode: RoutingMode
    ai_configured: Optional[bool]
    matched: Optional[bool]
    confident: Optional[bool]
    action: RouteAction

    def applies(self, mode: RoutingMode, ai_configured: bool, matched: bool, confident: bool) -> bool:
        return (
            self.mode == mode
            and self.ai_configured in (None, ai_configured)
            and self.matched in (None, matched)
            and self.confident in (None, confident)
        )


ROUTING_TABLE: Tuple[RoutingRule, ...] = (
    RoutingRule(RoutingMode.KEYWORD_ONLY, None, True, None, RouteAction.KEYWORD),
    RoutingRule(RoutingMode.KEYWORD_ONLY, None, False, None, RouteAction.FALLBACK),
    RoutingRule(RoutingMode.AI_ONLY, True, None, None, RouteAction.AI),
    RoutingRule(RoutingMode.AI_ONLY, False, None, None, RouteAction.CONFIG_ERROR),
    RoutingRule(RoutingMode.HYBRID, True, True, True, RouteAction.KEYWORD),
    RoutingRule(RoutingMode.HYBRID, True, True, False, RouteAction.AI),
    RoutingRule(RoutingMode.HYBRID, True, False, None, RouteAction.AI),
    RoutingRule(RoutingMode.HYBRID, False, True, None, RouteAction.KEYWORD),
    RoutingRule(RoutingMode.HYBRID, False, False, None, RouteAction.FALLBACK),
)


def decide_route(
    mode: RoutingMode,
    ai_configured: bool,
    result: MatchResult,
    threshold: float,
) -> RouteAction:
    """按决策表选择动作。"""

    matched = result.matched
    confident = matched and result.confidence >= threshold
    for rule in ROUTING_TABLE:
        if rule.applies(mode, ai_configured, matched, confident):
            return rule.action
    raise ValueError(f"No routing rule for mode {mode!r}")
