"""关键词置信度匹配。

纯函数实现：同样的输入和节点列表永远得到同样的结果，没有副作用，
可以在每次按键时调用。
"""

from typing import List, Sequence

from chatbot_core.domain.models import KnowledgeNode, MatchResult


def confidence_for_score(score: int) -> float:
    """把命中次数映射到 [0, 1] 置信度：首次命中 0.5，之后每次 +0.1，封顶 1.0。"""

    if score <= 0:
        return 0.0
    return min(0.5 + (score - 1) * 0.1, 1.0)


def score_node(words: Sequence[str], node: KnowledgeNode) -> int:
    """统计 (关键词, 单词) 对中互相包含的次数。

    双向包含：输入到一半的单词和复数形式都算命中。
    """

    score = 0
    for keyword in node.keywords:
        kw = keyword.lower()
        for word in words:
            if word in kw or kw in word:
                score += 1
    return score


def match(text: str, nodes: Sequence[KnowledgeNode]) -> MatchResult:
    """返回得分严格最高的节点；同分时保留节点顺序中靠前的那个。"""

    words = text.lower().split()
    best_id = None
    best_score = 0
    for node in nodes:
        score = score_node(words, node)
        if score > best_score:
            best_score = score
            best_id = node.id
    return MatchResult(node_id=best_id, score=best_score, confidence=confidence_for_score(best_score))


def find_relevant_nodes(text: str, nodes: Sequence[KnowledgeNode]) -> List[KnowledgeNode]:
    """找出关键词整体出现在输入中的节点，用于给模型注入知识。"""

    lowered = text.lower()
    relevant: List[KnowledgeNode] = []
    for node in nodes:
        if any(kw.lower() in lowered for kw in node.keywords):
            relevant.append(node)
    return relevant
