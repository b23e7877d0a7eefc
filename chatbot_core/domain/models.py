"""统一的对话数据模型。

本模块定义了 Matcher、ContextWindow、流式客户端与 DialogueRouter
之间共享的标准数据结构：

- KnowledgeNode / NodeOption: 静态知识图谱中的一个节点及其跳转选项。
- MatchResult: 一次关键词匹配的得分与置信度。
- ContextMessage: 上下文窗口中的一条消息（带 token 估算）。
- HistoryEntry: 路由器维护的只追加对话历史。
- StreamChunk / CompletionResult: 流式补全的增量与最终结果。
- RouterResponse: 路由器每次返回给渲染层的结构。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple

# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]
VALID_ROLES: Tuple[str, ...] = ("system", "user", "assistant")

# 历史记录来源：关键词命中 / 模型回复 / 兜底回复 / 错误提示
HistorySource = Literal["keyword", "api", "fallback", "error"]
HistoryType = Literal["user", "bot"]


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NodeOption:
    """节点上的一个跳转按钮。"""

    label: str
    target_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "target_id": self.target_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeOption":
        # 兼容旧格式的 reply_id 字段
        target = data.get("target_id") or data.get("reply_id") or data.get("targetId")
        if not target:
            raise ValueError(f"option {data!r} has no target id")
        return cls(label=str(data.get("label") or target), target_id=str(target))


@dataclass(frozen=True)
class KnowledgeNode:
    """知识图谱中的一个节点，启动时加载，之后只读。"""

    id: str
    keywords: Tuple[str, ...]
    reply: str
    options: Tuple[NodeOption, ...] = ()

    def options_as_dicts(self) -> Optional[List[Dict[str, str]]]:
        if not self.options:
            return None
        return [opt.to_dict() for opt in self.options]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KnowledgeNode":
        node_id = data.get("id")
        if not node_id:
            raise ValueError("knowledge node requires an id")
        raw_keywords = data.get("keywords", data.get("keyword")) or []
        if isinstance(raw_keywords, str):
            raw_keywords = [raw_keywords]
        keywords: List[str] = []
        for kw in raw_keywords:
            kw = str(kw).strip()
            if kw and kw not in keywords:
                keywords.append(kw)
        options = tuple(NodeOption.from_dict(o) for o in (data.get("options") or []))
        return cls(
            id=str(node_id),
            keywords=tuple(keywords),
            reply=str(data.get("reply") or ""),
            options=options,
        )


@dataclass(frozen=True)
class MatchResult:
    """一次输入的最佳匹配。node_id 为 None 表示没有任何关键词命中。"""

    node_id: Optional[str]
    score: int
    confidence: float

    @property
    def matched(self) -> bool:
        return self.node_id is not None


@dataclass
class ContextMessage:
    """上下文窗口中的一条消息。

    - token_estimate: 按 ⌈字符数/4⌉ 估算的 token 数，写入时计算一次。
    - created_at: ISO 8601 UTC 时间戳，导出快照时作为 timestamp 字段。
    """

    role: Role
    content: str
    created_at: str
    token_estimate: int

    def to_payload(self) -> Dict[str, str]:
        """去掉元数据，只保留发给 Provider 的 role/content。"""

        return {"role": self.role, "content": self.content}


@dataclass
class HistoryEntry:
    """对话历史中的一条记录（只追加，不裁剪）。"""

    id: str
    type: HistoryType
    content: str
    timestamp: str
    source: HistorySource = "keyword"
    node_id: Optional[str] = None
    options: Optional[List[Dict[str, str]]] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
            "source": self.source,
        }
        if self.type == "bot":
            payload["nodeId"] = self.node_id
            if self.options:
                payload["options"] = self.options
            if self.model:
                payload["model"] = self.model
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        entry_type = data.get("type")
        if entry_type not in ("user", "bot"):
            raise ValueError(f"invalid history entry type: {entry_type!r}")
        return cls(
            id=str(data.get("id") or ""),
            type=entry_type,
            content=str(data.get("content") or ""),
            timestamp=str(data.get("timestamp") or ""),
            source=data.get("source") or "keyword",
            node_id=data.get("nodeId"),
            options=data.get("options"),
            model=data.get("model"),
        )


@dataclass
class StreamChunk:
    """流式补全的一次增量。"""

    delta_content: str
    accumulated_content: str
    done: bool = False


@dataclass
class CompletionResult:
    """一次流式补全结束后的完整结果。"""

    content: str
    model: str
    done: bool = True


@dataclass
class RouterResponse:
    """路由器返回给渲染层的结果。"""

    reply: str
    options: Optional[List[Dict[str, str]]] = None
    source: Optional[HistorySource] = None
    confidence: Optional[float] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"reply": self.reply, "options": self.options}
        if self.source is not None:
            payload["source"] = self.source
        if self.confidence is not None:
            payload["confidence"] = self.confidence
        if self.model is not None:
            payload["model"] = self.model
        return payload


@dataclass
class ImportResult:
    """导入/加载快照的结构化结果，失败时不抛异常。"""

    success: bool
    message_count: int = 0
    error: Optional[str] = None


@dataclass
class BotMetadata:
    bot_name: str = "Bot"
    theme_color: str = "#007bff"
    created_at: str = field(default_factory=utcnow_iso)


@dataclass
class StreamCallbacks:
    """handle_input 接受的回调集合，全部可选。

    - on_start: 收到第一个增量时触发一次（不是请求发出时）。
    - on_chunk: 每个 StreamChunk 触发一次。
    - on_complete: 流式结束后收到 CompletionResult。
    - on_error: 最终失败时收到异常。
    """

    on_start: Optional[Callable[[], None]] = None
    on_chunk: Optional[Callable[[StreamChunk], None]] = None
    on_complete: Optional[Callable[[CompletionResult], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
