"""Provider 抽象接口。

DialogueRouter 不直接依赖具体厂商的 HTTP 实现，而是依赖此协议：

- 每个厂商实现一个 CompletionClient（如 OpenRouterClient）。
- 负责：发送补全请求、解码流式事件、重试瞬时错误，并支持取消。
"""

from typing import Any, Callable, Dict, List, Optional, Protocol

from chatbot_core.domain.models import CompletionResult, StreamChunk


class CompletionClient(Protocol):
    """流式补全客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - model: 当前使用的模型 ID。
    - send_message(...): 执行一次流式调用，返回最终 CompletionResult。
    - cancel(): 中止进行中的请求。
    """

    name: str
    model: str

    async def send_message(
        self,
        messages: List[Dict[str, str]],
        on_chunk: Optional[Callable[[StreamChunk], None]] = None,
        on_complete: Optional[Callable[[CompletionResult], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> CompletionResult:
        ...

    def cancel(self) -> bool:
        ...

    def get_model_info(self) -> Dict[str, Any]:
        ...
