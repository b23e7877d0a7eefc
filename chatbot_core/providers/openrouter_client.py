"""OpenRouter（OpenAI 兼容）Provider 适配器。

本模块负责：

1. 把 [{role, content}] 消息列表转换为 chat/completions 流式请求。
2. 逐块读取 text/event-stream 响应，增量解码并回调 StreamChunk。
3. 把 HTTP 状态码 / 网络异常映射为带 ErrorKind 的业务异常。
4. 对可重试错误做指数退避重试，并支持用户取消与超时中止。

每次尝试（以及每次退避等待）都运行在独立的 asyncio Task 中，
cancel() 和超时计时器通过取消这个 Task 让挂起中的 await 立即失败，
再根据中止原因转换成 RequestCancelledError 或 RequestTimeoutError。
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from chatbot_core.config.settings import settings
from chatbot_core.domain.exceptions import (
    ApiError,
    AuthError,
    BadRequestError,
    BusinessError,
    ConfigurationError,
    NetworkError,
    ParseError,
    RateLimitError,
    RequestCancelledError,
    RequestTimeoutError,
    ServerUnavailableError,
)
from chatbot_core.domain.models import CompletionResult, StreamChunk
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.providers.registry import MAX_TOKENS_RANGE, OPENROUTER_CONFIG, TEMPERATURE_RANGE
from chatbot_core.providers.sse import SSELineBuffer, delta_content, extract_payload, finish_reason, parse_payload

# 只配置了自建代理地址、没有密钥时使用的占位 key，由代理负责注入真实凭证
PROXY_API_KEY = "proxy-mode"

ABORT_CANCELLED = "cancelled"
ABORT_TIMEOUT = "timeout"


@dataclass
class _RequestState:
    """一次 send_message 调用期间的可变状态。"""

    cancelled: bool = False
    abort_reason: Optional[str] = None
    task: Optional[asyncio.Future] = None
    timer: Optional[asyncio.TimerHandle] = None


class OpenRouterClient:
    """OpenRouter 提供方客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - send_message: 对外统一调用入口，返回 CompletionResult。
    - cancel: 中止进行中的请求或退避等待。
    """

    name = "openrouter"

    def __init__(
        self,
        cfg=settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        defaults = OPENROUTER_CONFIG
        self.base_url = (getattr(cfg, "openrouter_base_url", None) or defaults.base_url).rstrip("/")
        api_key = getattr(cfg, "openrouter_api_key", None)
        if not api_key and self.base_url != defaults.base_url:
            api_key = PROXY_API_KEY
        self.api_key = api_key
        self.model = getattr(cfg, "model", None) or defaults.default_model.provider_model
        self.max_tokens = _setting(cfg, "max_tokens", defaults.default_model.max_tokens)
        self.temperature = _setting(cfg, "temperature", defaults.default_model.default_temperature)
        self.site_name = getattr(cfg, "site_name", None) or defaults.site_name
        self.site_url = getattr(cfg, "site_url", None) or ""
        self.timeout = _setting(cfg, "http_timeout", defaults.timeout)
        self.retry_attempts = _setting(cfg, "retry_attempts", defaults.retry_attempts)
        self.retry_delay = _setting(cfg, "retry_delay", defaults.retry_delay)
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._active: Optional[_RequestState] = None
        self._validate()

    def _validate(self) -> None:
        """构造时校验配置，任何问题都是不可重试的 ConfigurationError。"""

        if not self.api_key or not str(self.api_key).strip():
            raise ConfigurationError(code="MISSING_API_KEY", message="OpenRouter API key is required")
        if not self.base_url.startswith("http"):
            raise ConfigurationError(code="INVALID_BASE_URL", message="Invalid base URL")
        lo, hi = MAX_TOKENS_RANGE
        if not lo <= self.max_tokens <= hi:
            raise ConfigurationError(
                code="INVALID_MAX_TOKENS",
                message=f"max_tokens should be between {lo} and {hi}",
            )
        lo, hi = TEMPERATURE_RANGE
        if not lo <= self.temperature <= hi:
            raise ConfigurationError(
                code="INVALID_TEMPERATURE",
                message=f"temperature should be between {lo} and {hi}",
            )
        if self.timeout <= 0:
            raise ConfigurationError(code="INVALID_TIMEOUT", message="timeout must be positive")
        if self.retry_attempts < 0 or self.retry_delay < 0:
            raise ConfigurationError(code="INVALID_RETRY", message="retry settings must not be negative")

    @property
    def in_progress(self) -> bool:
        return self._active is not None

    async def send_message(
        self,
        messages: List[Dict[str, str]],
        on_chunk: Optional[Callable[[StreamChunk], None]] = None,
        on_complete: Optional[Callable[[CompletionResult], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> CompletionResult:
        """执行一次流式补全，失败时按 ErrorKind 决定是否重试。

        可重试错误最多尝试 retry_attempts + 1 次，第 n 次重试前等待
        retry_delay × 2^(n-1) 秒；不可重试错误只尝试一次。最终失败的异常
        先交给 on_error，再抛给调用方。
        """

        state = _RequestState()
        self._active = state
        attempt = 0
        try:
            while True:
                self._log(
                    logging.DEBUG,
                    "Sending completion request",
                    attempt=attempt + 1,
                    max_attempts=self.retry_attempts + 1,
                    message_count=len(messages),
                )
                try:
                    result = await self._guarded(
                        state,
                        self._attempt(state, messages, on_chunk),
                        timeout=self.timeout,
                    )
                except BusinessError as error:
                    self._log(
                        logging.WARNING,
                        "Completion attempt failed",
                        attempt=attempt + 1,
                        kind=error.kind.value,
                        error=error.message,
                    )
                    if not error.retryable:
                        raise
                    attempt += 1
                    if attempt > self.retry_attempts:
                        raise
                    delay = self.retry_delay * 2 ** (attempt - 1)
                    self._log(logging.INFO, "Retrying completion request", delay_seconds=delay, attempt=attempt + 1)
                else:
                    if on_complete:
                        on_complete(result)
                    return result
                await self._guarded(state, self._sleep(delay))
        except BusinessError as error:
            if on_error:
                on_error(error)
            raise
        finally:
            self._clear_timer(state)
            if self._active is state:
                self._active = None

    def cancel(self) -> bool:
        """中止进行中的请求；没有请求时返回 False。"""

        state = self._active
        if state is None:
            return False
        self._abort(state, ABORT_CANCELLED)
        self._log(logging.INFO, "Request cancelled")
        return True

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    # ---- 请求与中止 ----

    async def _guarded(self, state: _RequestState, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """在可中止的 Task 中运行 coro。

        timeout 只约束等待响应头的阶段，_attempt 收到响应头后会清掉计时器。
        """

        if state.cancelled:
            coro.close()
            raise RequestCancelledError(code="CANCELLED", message="Request cancelled by user")
        task = asyncio.ensure_future(coro)
        state.task = task
        state.abort_reason = None
        if timeout:
            loop = asyncio.get_running_loop()
            state.timer = loop.call_later(timeout, self._abort, state, ABORT_TIMEOUT)
        try:
            return await task
        except asyncio.CancelledError:
            if state.abort_reason == ABORT_CANCELLED:
                raise RequestCancelledError(code="CANCELLED", message="Request cancelled by user")
            if state.abort_reason == ABORT_TIMEOUT:
                raise RequestTimeoutError(code="TIMEOUT", message=f"Request timed out after {self.timeout}s")
            raise
        finally:
            self._clear_timer(state)
            state.task = None

    def _abort(self, state: _RequestState, reason: str) -> None:
        if reason == ABORT_CANCELLED:
            state.cancelled = True
        state.abort_reason = reason
        if state.task is not None and not state.task.done():
            state.task.cancel()

    @staticmethod
    def _clear_timer(state: _RequestState) -> None:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

    async def _attempt(
        self,
        state: _RequestState,
        messages: List[Dict[str, str]],
        on_chunk: Optional[Callable[[StreamChunk], None]],
    ) -> CompletionResult:
        payload = self._build_payload(messages)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._build_headers(),
                ) as resp:
                    self._clear_timer(state)
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        raise self._map_status_error(resp.status_code, body)
                    return await self._read_stream(resp, on_chunk)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(code="TIMEOUT", message=str(e) or "Request timed out")
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被拒绝、读取中断等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    async def _read_stream(
        self,
        resp: httpx.Response,
        on_chunk: Optional[Callable[[StreamChunk], None]],
    ) -> CompletionResult:
        """逐块读取 SSE 响应体并累积增量内容。

        单个格式错误的帧只记录日志并跳过，不会中断整条流；
        finish_reason 仅用于日志，循环以底层读取结束为准。
        """

        buffer = SSELineBuffer()
        accumulated = ""
        async for raw in resp.aiter_bytes():
            for line in buffer.feed(raw):
                data_str = extract_payload(line)
                if data_str is None:
                    continue
                try:
                    event = parse_payload(data_str)
                except json.JSONDecodeError as e:
                    err = ParseError(code="PARSE_ERROR", message=str(e))
                    self._log(logging.WARNING, "Failed to parse SSE data", line=line[:200], error=err.message)
                    continue
                content = delta_content(event)
                if content:
                    accumulated += content
                    if on_chunk:
                        on_chunk(StreamChunk(delta_content=content, accumulated_content=accumulated))
                reason = finish_reason(event)
                if reason:
                    self._log(logging.DEBUG, "Stream finished", finish_reason=reason)
        leftover = buffer.pending()
        if leftover.strip():
            self._log(logging.DEBUG, "Discarded incomplete trailing line", line=leftover[:200])
        return CompletionResult(content=accumulated, model=self.model)

    # ---- 辅助方法 ----

    def _build_payload(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
        }

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.site_name,
        }
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        return headers

    @staticmethod
    def _map_status_error(status: int, body: bytes) -> BusinessError:
        """把非 2xx 状态码映射为带分类的业务异常。"""

        detail = _error_detail(body)
        if status == 401:
            return AuthError(
                code="INVALID_API_KEY",
                message="Invalid API key. Please check your OpenRouter API key.",
                http_status=status,
            )
        if status == 403:
            return AuthError(
                code="ACCESS_FORBIDDEN",
                message="Access forbidden. Please check your API key permissions.",
                http_status=status,
            )
        if status == 429:
            return RateLimitError(
                code="RATE_LIMIT",
                message="Rate limit exceeded. Please try again later.",
                http_status=status,
            )
        if status >= 500:
            return ServerUnavailableError(
                code="SERVICE_UNAVAILABLE",
                message="OpenRouter service is temporarily unavailable. Please try again.",
                http_status=status,
            )
        if status == 400:
            return BadRequestError(code="BAD_REQUEST", message=f"Bad request: {detail}", http_status=status)
        return ApiError(code="API_ERROR", message=f"API error ({status}): {detail}", http_status=status)

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        fields.setdefault("provider", OpenRouterClient.name)
        logger.log(level, message, extra={"extra": fields})


def _setting(cfg, name: str, default):
    value = getattr(cfg, name, None)
    return default if value is None else value


def _error_detail(body: bytes) -> str:
    try:
        data = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return "Unknown error occurred"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return "Unknown error occurred"
