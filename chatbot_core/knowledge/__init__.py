"""静态知识图谱与关键词匹配。"""

from chatbot_core.knowledge.loader import default_knowledge_base, load_knowledge_base
from chatbot_core.knowledge.matcher import confidence_for_score, find_relevant_nodes, match

__all__ = [
    "confidence_for_score",
    "default_knowledge_base",
    "find_relevant_nodes",
    "load_knowledge_base",
    "match",
]
