"""领域层模型与异常。

包含：
- models: KnowledgeNode / ContextMessage / HistoryEntry / StreamChunk 等数据结构。
- exceptions: 带 ErrorKind 分类的业务异常类型定义。
"""
