"""知识库加载。

节点集合在启动时构建一次，之后不再修改。支持：
- 内置默认图谱（knowledge.defaults）。
- YAML / JSON 文件：顶层为节点列表，或包含 ``nodes`` 键的映射。
"""

import json
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple

import yaml

from chatbot_core.domain.exceptions import ConfigurationError
from chatbot_core.domain.models import KnowledgeNode
from chatbot_core.knowledge.defaults import DEFAULT_KNOWLEDGE_BASE_DATA


def build_knowledge_base(items: Iterable[Mapping[str, Any]]) -> Tuple[KnowledgeNode, ...]:
    nodes: List[KnowledgeNode] = []
    seen: set[str] = set()
    for raw in items:
        try:
            node = KnowledgeNode.from_dict(raw)
        except (ValueError, AttributeError, TypeError) as e:
            raise ConfigurationError(code="INVALID_KNOWLEDGE_NODE", message=str(e))
        if node.id in seen:
            raise ConfigurationError(code="DUPLICATE_KNOWLEDGE_NODE", message=f"Duplicate node id: {node.id!r}")
        seen.add(node.id)
        nodes.append(node)
    return tuple(nodes)


def default_knowledge_base() -> Tuple[KnowledgeNode, ...]:
    return build_knowledge_base(DEFAULT_KNOWLEDGE_BASE_DATA)


def load_knowledge_base(path: Optional[str | Path] = None) -> Tuple[KnowledgeNode, ...]:
    """从文件加载知识库；未指定路径时返回默认图谱。"""

    if path is None:
        return default_knowledge_base()
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(code="KNOWLEDGE_READ_ERROR", message=str(e))
    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(code="KNOWLEDGE_PARSE_ERROR", message=str(e))
    if isinstance(data, Mapping):
        data = data.get("nodes")
    if not isinstance(data, list):
        raise ConfigurationError(
            code="KNOWLEDGE_PARSE_ERROR",
            message=f"{p} must contain a list of nodes",
        )
    return build_knowledge_base(data)
