"""Chatbot Core 顶层包。

该包提供混合式对话路由的核心实现，
包括配置加载、领域模型、关键词匹配、上下文窗口、
流式补全客户端与对话路由器等能力。
"""

from chatbot_core.router import DialogueRouter, RoutingMode

__all__ = ["DialogueRouter", "RoutingMode"]
