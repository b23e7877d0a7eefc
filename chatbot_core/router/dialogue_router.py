"""对话路由器核心模块。

把用户输入交给关键词匹配器打分，再按路由模式决定返回预置回复，
还是带着上下文窗口调用流式补全客户端；结果同时写回对话历史与上下文。

每个 DialogueRouter 实例对应一段对话。同一时刻最多只允许一个进行中的
AI 请求：第二次调用会立即拿到“请稍候”回复，而不是排队。
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import uuid4

from chatbot_core.context.window import ContextWindow
from chatbot_core.domain.exceptions import BusinessError, ConfigurationError, ValidationError
from chatbot_core.domain.models import (
    BotMetadata,
    HistoryEntry,
    HistorySource,
    HistoryType,
    ImportResult,
    KnowledgeNode,
    RouterResponse,
    StreamCallbacks,
    StreamChunk,
    utcnow_iso,
)
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.knowledge.matcher import find_relevant_nodes, match
from chatbot_core.providers.base import CompletionClient
from chatbot_core.router.messages import (
    AI_NOT_CONFIGURED_REPLY,
    CANCELLED_REPLY,
    FALLBACK_REPLY,
    OPTION_NOT_FOUND_REPLY,
    PLEASE_WAIT_REPLY,
    user_facing_error,
)
from chatbot_core.router.routing import RouteAction, RoutingMode, decide_route

HISTORY_VERSION = "2.0"
WELCOME_NODE_ID = "welcome"


class DialogueRouter:
    def __init__(
        self,
        knowledge_base: Iterable[KnowledgeNode],
        *,
        client: Optional[CompletionClient] = None,
        context: Optional[ContextWindow] = None,
        mode: Union[RoutingMode, str] = RoutingMode.KEYWORD_ONLY,
        hybrid_threshold: float = 0.3,
        bot_metadata: Optional[BotMetadata] = None,
        streaming: bool = True,
        inject_knowledge: bool = False,
    ):
        """初始化路由器。

        Args:
            knowledge_base: 知识节点集合，至少一个，id 不可重复
            client: 流式补全客户端（可选），必须与 context 同时提供
            context: 上下文窗口（可选）
            mode: 路由模式 keyword-only / ai-only / hybrid
            hybrid_threshold: hybrid 模式下使用关键词回复的最低置信度
            bot_metadata: 机器人名称、主题色等导出元数据
            streaming: 仅用于状态展示，补全始终以流式方式请求
            inject_knowledge: 调用模型前是否把相关节点内容注入 system prompt
        """
        nodes = tuple(knowledge_base)
        if not nodes:
            raise ConfigurationError(code="EMPTY_KNOWLEDGE_BASE", message="Knowledge base must not be empty")
        self._nodes: Dict[str, KnowledgeNode] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise ConfigurationError(code="DUPLICATE_KNOWLEDGE_NODE", message=f"Duplicate node id: {node.id!r}")
            self._nodes[node.id] = node
        if (client is None) != (context is None):
            raise ConfigurationError(
                code="INCOMPLETE_AI_CONFIG",
                message="client and context must be provided together",
            )
        try:
            self.mode = RoutingMode(mode)
        except ValueError:
            raise ConfigurationError(code="INVALID_MODE", message=f"Unknown routing mode: {mode!r}")
        if not 0.0 <= hybrid_threshold <= 1.0:
            raise ConfigurationError(code="INVALID_THRESHOLD", message="hybrid_threshold must be within [0, 1]")

        self.knowledge_base = nodes
        self.client = client
        self.context = context
        self.hybrid_threshold = hybrid_threshold
        self.bot_metadata = bot_metadata or BotMetadata()
        self.streaming = streaming
        self.inject_knowledge = inject_knowledge
        self.history: List[HistoryEntry] = []
        self.current_node: Optional[KnowledgeNode] = None
        self._base_system_prompt = context.system_prompt if context is not None else None
        self._ai_request: Optional[object] = None
        self._log_ctx: Dict[str, Any] = {"conversation_id": f"c-{uuid4().hex}", "mode": self.mode.value}

    @property
    def ai_enabled(self) -> bool:
        return self.client is not None

    @property
    def ai_response_in_progress(self) -> bool:
        return self._ai_request is not None

    def init(self) -> RouterResponse:
        """选中欢迎节点并写入历史，返回欢迎语。"""

        self.current_node = self._welcome_node()
        options = self.current_node.options_as_dicts()
        self._add_to_history("bot", self.current_node.reply, node_id=self.current_node.id, options=options)
        return RouterResponse(reply=self.current_node.reply, options=options)

    async def handle_input(self, text: str, callbacks: Optional[StreamCallbacks] = None) -> RouterResponse:
        """处理一条用户输入并返回回复。

        先记录用户消息，再匹配关键词，然后按决策表路由：
        预置回复 / 兜底回复 / AI 未配置提示 / 调用流式客户端。
        """

        callbacks = callbacks or StreamCallbacks()
        self._add_to_history("user", text)
        if self.context is not None:
            self.context.add_message("user", text)

        result = match(text, self.knowledge_base)
        action = decide_route(self.mode, self.ai_enabled, result, self.hybrid_threshold)
        self._log(
            logging.DEBUG,
            "Routing decision",
            best_match=result.node_id,
            score=result.score,
            confidence=result.confidence,
            threshold=self.hybrid_threshold,
            action=action.value,
        )

        if action is RouteAction.AI:
            return await self._handle_ai_response(text, callbacks)
        if action is RouteAction.CONFIG_ERROR:
            self._add_to_history("bot", AI_NOT_CONFIGURED_REPLY, source="error")
            return RouterResponse(reply=AI_NOT_CONFIGURED_REPLY, source="error")
        if action is RouteAction.KEYWORD:
            node = self._nodes[result.node_id]
            self.current_node = node
            options = node.options_as_dicts()
            self._add_to_history("bot", node.reply, node_id=node.id, options=options, source="keyword")
            if self.context is not None:
                self.context.add_message("assistant", node.reply)
            return RouterResponse(reply=node.reply, options=options, source="keyword", confidence=result.confidence)

        self._add_to_history("bot", FALLBACK_REPLY, source="fallback")
        return RouterResponse(reply=FALLBACK_REPLY, source="fallback")

    async def _handle_ai_response(self, text: str, callbacks: StreamCallbacks) -> RouterResponse:
        if self.ai_response_in_progress:
            self._log(logging.WARNING, "AI response already in progress")
            return RouterResponse(reply=PLEASE_WAIT_REPLY, source="error")

        token = object()
        self._ai_request = token
        try:
            if self.inject_knowledge:
                self._enhance_prompt_with_knowledge(text)
            messages = self.context.get_context(True)
            started = False

            def on_chunk(chunk: StreamChunk) -> None:
                # onStart 在收到第一个增量时触发，而不是请求发出时
                nonlocal started
                if not started:
                    started = True
                    if callbacks.on_start:
                        callbacks.on_start()
                if callbacks.on_chunk:
                    callbacks.on_chunk(chunk)

            self._log(logging.INFO, "Calling provider", message_count=len(messages), model=self.client.model)
            try:
                result = await self.client.send_message(messages, on_chunk=on_chunk)
            except Exception as error:
                reply = user_facing_error(error)
                self._log(
                    logging.ERROR,
                    "AI response failed",
                    kind=error.kind.value if isinstance(error, BusinessError) else "unknown",
                    error=str(error),
                )
                # cancel_ai_response 已经写入了取消回复
                if self._ai_request is token:
                    self._add_to_history("bot", reply, source="error")
                if callbacks.on_error:
                    callbacks.on_error(error)
                return RouterResponse(reply=reply, source="error")

            if self._ai_request is not token:
                self._log(logging.INFO, "Discarded response finished after cancel", model=result.model)
                return RouterResponse(reply=CANCELLED_REPLY, source="error")

            self._add_to_history("bot", result.content, source="api", model=result.model)
            self.context.add_message("assistant", result.content)
            self._log(logging.INFO, "Stored AI response", model=result.model, length=len(result.content))
            if callbacks.on_complete:
                callbacks.on_complete(result)
            return RouterResponse(reply=result.content, source="api", model=result.model)
        finally:
            if self._ai_request is token:
                self._ai_request = None

    def _enhance_prompt_with_knowledge(self, text: str) -> None:
        """以配置的系统提示词为基础，注入与输入相关的节点内容。"""

        self.context.set_system_prompt(self._base_system_prompt)
        relevant = find_relevant_nodes(text, self.knowledge_base)
        if relevant:
            knowledge = "\n\n".join(f"Topic: {n.id}\nInformation: {n.reply}" for n in relevant)
            self.context.inject_knowledge(knowledge)

    def handle_option_selection(self, target_id: str) -> RouterResponse:
        """沿选项边直接跳转到目标节点，不经过匹配器也不调用模型。"""

        node = self._nodes.get(target_id)
        if node is None:
            self._add_to_history("bot", OPTION_NOT_FOUND_REPLY, source="fallback")
            return RouterResponse(reply=OPTION_NOT_FOUND_REPLY, source="fallback")
        self.current_node = node
        options = node.options_as_dicts()
        self._add_to_history("bot", node.reply, node_id=node.id, options=options)
        return RouterResponse(reply=node.reply, options=options)

    def cancel_ai_response(self) -> bool:
        """中止进行中的 AI 请求，立即记录取消回复，之后的输入可以马上发起新请求。"""

        if self.client is not None and self.ai_response_in_progress:
            self._ai_request = None
            self.client.cancel()
            self._add_to_history("bot", CANCELLED_REPLY, source="error")
            self._log(logging.INFO, "AI response cancelled")
            return True
        return False

    # ---- 历史记录 ----

    def get_history(self) -> Dict[str, Any]:
        return {
            "version": HISTORY_VERSION,
            "timestamp": utcnow_iso(),
            "botName": self.bot_metadata.bot_name,
            "themeColor": self.bot_metadata.theme_color,
            "messages": [entry.to_dict() for entry in self.history],
            "currentNodeId": self.current_node.id if self.current_node else None,
            "mode": self.mode.value,
            "apiEnabled": self.ai_enabled,
        }

    def export_history(self) -> str:
        data = self.get_history()
        data["apiConfig"] = (
            {"model": self.client.model, "lastUsed": utcnow_iso()} if self.client is not None else None
        )
        return json.dumps(data, ensure_ascii=False, indent=2)

    def load_history(self, history_data: Union[str, Mapping[str, Any]]) -> ImportResult:
        """恢复 export_history() 导出的历史，并据此重建上下文窗口。

        任何格式问题都以 ImportResult(success=False) 返回，不抛异常，
        且不会修改当前状态。
        """

        try:
            data = json.loads(history_data) if isinstance(history_data, str) else history_data
            if not isinstance(data, Mapping) or not data.get("version") or not isinstance(data.get("messages"), list):
                raise ValidationError(
                    code="INVALID_HISTORY",
                    message="Invalid history format: missing required fields",
                )
            entries = []
            for raw in data["messages"]:
                if not isinstance(raw, Mapping):
                    raise ValidationError(code="INVALID_HISTORY", message="History entries must be objects")
                entries.append(HistoryEntry.from_dict(raw))
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to load history", error=e.message)
            return ImportResult(success=False, error=e.message)
        except ValueError as e:
            self._log(logging.WARNING, "Failed to load history", error=str(e))
            return ImportResult(success=False, error=str(e))

        version = str(data["version"])
        if not version.startswith(("1.", "2.")):
            self._log(logging.WARNING, "History version may not be fully compatible", version=version)

        if data.get("botName"):
            self.bot_metadata.bot_name = data["botName"]
        if data.get("themeColor"):
            self.bot_metadata.theme_color = data["themeColor"]
        self.history = entries
        node = self._nodes.get(data.get("currentNodeId") or "")
        if node is not None:
            self.current_node = node

        if self.context is not None:
            self.context.clear()
            for entry in entries:
                # 错误提示不是模型回复，不发给 Provider
                if entry.source == "error":
                    continue
                self.context.add_message("user" if entry.type == "user" else "assistant", entry.content)

        self._log(logging.INFO, "Loaded history", message_count=len(self.history))
        return ImportResult(success=True, message_count=len(self.history))

    def clear_history(self) -> RouterResponse:
        """清空历史与上下文，重新从欢迎节点开始。"""

        self.history = []
        if self.context is not None:
            self.context.clear()
        return self.init()

    def get_current_state(self) -> Dict[str, Any]:
        return {
            "current_node_id": self.current_node.id if self.current_node else None,
            "message_count": len(self.history),
            "last_message_timestamp": self.history[-1].timestamp if self.history else None,
        }

    def get_api_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.ai_enabled,
            "mode": self.mode.value,
            "streaming": self.streaming,
            "model": self.client.get_model_info() if self.client is not None else None,
            "context_stats": self.context.get_stats() if self.context is not None else None,
            "response_in_progress": self.ai_response_in_progress,
        }

    # ---- 辅助方法 ----

    def _welcome_node(self) -> KnowledgeNode:
        return self._nodes.get(WELCOME_NODE_ID) or self.knowledge_base[0]

    def _add_to_history(
        self,
        entry_type: HistoryType,
        content: str,
        node_id: Optional[str] = None,
        options: Optional[List[Dict[str, str]]] = None,
        source: HistorySource = "keyword",
        model: Optional[str] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=f"msg-{uuid4().hex}",
            type=entry_type,
            content=content,
            timestamp=utcnow_iso(),
            source=source,
        )
        if entry_type == "bot":
            entry.node_id = node_id
            entry.options = options or None
            entry.model = model
        self.history.append(entry)
        return entry

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload = dict(self._log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
