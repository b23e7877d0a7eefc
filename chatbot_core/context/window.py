"""对话上下文滑动窗口。

维护发给 Provider 的最近若干条消息，同时满足两个上限：

1. 消息条数不超过 max_messages。
2. 估算 token 总数不超过 max_tokens，但至少保留最近 2 条消息
   （一轮 user/assistant 交换），即使它们本身已经超过预算。

total_token_estimate 在每次增删时增量维护，只有 clear/import 时才重置。
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional

from chatbot_core.domain.exceptions import BusinessError, ConfigurationError, ValidationError
from chatbot_core.domain.models import VALID_ROLES, ContextMessage, ImportResult, utcnow_iso
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.prompts import load_system_prompt

SNAPSHOT_VERSION = "1.0"
# token 预算裁剪时至少保留的消息数
MIN_RETAINED_MESSAGES = 2


def estimate_tokens(text: str) -> int:
    """粗略估算：约 4 个字符一个 token。"""

    if not text:
        return 0
    return math.ceil(len(text) / 4)


class ContextWindow:
    def __init__(
        self,
        system_prompt: Optional[str] = None,
        max_messages: int = 10,
        max_tokens: int = 2000,
    ):
        _check_limit("max_messages", max_messages)
        _check_limit("max_tokens", max_tokens)
        self.system_prompt = load_system_prompt() if system_prompt is None else system_prompt
        self.max_messages = max_messages
        self.max_tokens = max_tokens
        self.messages: List[ContextMessage] = []
        self.total_token_estimate = 0

    def add_message(self, role: str, content: str) -> None:
        """追加一条消息并立即按上限裁剪。"""

        if role not in VALID_ROLES:
            raise ValidationError(code="INVALID_ROLE", message=f"Invalid message role: {role!r}")
        if not content:
            logger.warning("Ignored empty context message", extra={"extra": {"role": role}})
            return

        message = ContextMessage(
            role=role,
            content=content,
            created_at=utcnow_iso(),
            token_estimate=estimate_tokens(content),
        )
        self.messages.append(message)
        self.total_token_estimate += message.token_estimate
        self._log(
            logging.DEBUG,
            "Added context message",
            role=role,
            tokens=message.token_estimate,
        )
        self._trim()

    def get_context(self, include_system_prompt: bool = True) -> List[Dict[str, str]]:
        """返回发给 Provider 的 [{role, content}] 列表，不修改存储的消息。"""

        payload: List[Dict[str, str]] = []
        if include_system_prompt and self.system_prompt:
            payload.append({"role": "system", "content": self.system_prompt})
        payload.extend(m.to_payload() for m in self.messages)
        return payload

    def get_last_messages(self, count: int = 5) -> List[ContextMessage]:
        if count <= 0:
            return []
        return list(self.messages[-count:])

    def clear(self) -> None:
        """清空消息，保留系统提示词。"""

        self.messages = []
        self.total_token_estimate = 0
        self._log(logging.DEBUG, "Context cleared")

    def set_system_prompt(self, prompt: str) -> None:
        self.system_prompt = prompt

    def inject_knowledge(self, knowledge: str) -> None:
        """把知识库片段追加到系统提示词末尾。"""

        if not knowledge:
            return
        self.system_prompt = f"{self.system_prompt}\n\nRelevant knowledge base information:\n{knowledge}"

    def get_stats(self) -> Dict[str, Any]:
        return {
            "message_count": len(self.messages),
            "estimated_tokens": self.total_token_estimate,
            "max_messages": self.max_messages,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt[:50] + "..." if self.system_prompt else None,
        }

    def summarize(self) -> str:
        """把窗口前半部分压缩成一段预览文本，少于 3 条消息时返回空串。"""

        if len(self.messages) < 3:
            return ""
        head = self.messages[: len(self.messages) // 2]
        lines = []
        for m in head:
            preview = m.content[:100]
            suffix = "..." if len(m.content) > 100 else ""
            lines.append(f"{m.role}: {preview}{suffix}")
        return "Previous conversation summary:\n" + "\n".join(lines)

    def export(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "timestamp": utcnow_iso(),
            "systemPrompt": self.system_prompt,
            "maxMessages": self.max_messages,
            "maxTokens": self.max_tokens,
            "messages": [
                {"role": m.role, "content": m.content, "timestamp": m.created_at}
                for m in self.messages
            ],
            "stats": self.get_stats(),
        }

    def import_snapshot(self, data: Any) -> ImportResult:
        """从 export() 的结果恢复窗口。

        先完整校验再修改状态；校验失败时窗口保持原样并返回 success=False。
        消息逐条经过 add_message 回放，因此同样受裁剪规则约束。
        """

        try:
            entries = _validate_snapshot(data)
        except BusinessError as e:
            logger.warning("Context import failed", extra={"extra": {"error": e.message}})
            return ImportResult(success=False, error=e.message)

        self.clear()
        if data.get("systemPrompt"):
            self.system_prompt = data["systemPrompt"]
        if data.get("maxMessages"):
            self.max_messages = data["maxMessages"]
        if data.get("maxTokens"):
            self.max_tokens = data["maxTokens"]
        for role, content in entries:
            self.add_message(role, content)
        self._log(logging.DEBUG, "Imported context", message_count=len(self.messages))
        return ImportResult(success=True, message_count=len(self.messages))

    def _trim(self) -> None:
        while len(self.messages) > self.max_messages:
            removed = self.messages.pop(0)
            self.total_token_estimate -= removed.token_estimate
            self._log(
                logging.DEBUG,
                "Evicted oldest message",
                role=removed.role,
                remaining=len(self.messages),
            )

        while self.total_token_estimate > self.max_tokens and len(self.messages) > MIN_RETAINED_MESSAGES:
            removed = self.messages.pop(0)
            self.total_token_estimate -= removed.token_estimate
            self._log(
                logging.DEBUG,
                "Evicted message to reduce tokens",
                role=removed.role,
                remaining_tokens=self.total_token_estimate,
            )

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        logger.log(level, message, extra={"extra": fields})


def _check_limit(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(code="INVALID_CONTEXT_LIMIT", message=f"{name} must be a positive integer")


def _validate_snapshot(data: Any) -> List[tuple]:
    if not isinstance(data, Mapping) or not isinstance(data.get("messages"), list):
        raise ValidationError(code="INVALID_SNAPSHOT", message="Invalid context data format")
    for key in ("maxMessages", "maxTokens"):
        if data.get(key) is not None:
            try:
                _check_limit(key, data[key])
            except ConfigurationError as e:
                raise ValidationError(code="INVALID_SNAPSHOT", message=e.message)
    entries = []
    for idx, msg in enumerate(data["messages"]):
        if not isinstance(msg, Mapping):
            raise ValidationError(code="INVALID_SNAPSHOT", message=f"Message {idx} is not an object")
        role, content = msg.get("role"), msg.get("content")
        if role not in VALID_ROLES or not isinstance(content, str):
            raise ValidationError(code="INVALID_SNAPSHOT", message=f"Message {idx} has invalid role or content")
        entries.append((role, content))
    return entries
