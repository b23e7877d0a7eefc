"""Server-Sent Events 行解码。

网络分块可能在一行中间、甚至在一个多字节 UTF-8 字符中间断开，
因此字节先经过增量解码器，再进入行缓冲，不完整的尾部留到下一次。
"""

import codecs
import json
from typing import Any, List, Optional

DATA_PREFIX = "data: "
DONE_LINE = "data: [DONE]"


class SSELineBuffer:
    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[str]:
        """喂入一段原始字节，返回其中已经完整的行。"""

        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return lines

    def pending(self) -> str:
        """流结束时缓冲区里剩下的不完整内容。"""

        return self._buffer + self._decoder.decode(b"", final=True)


def extract_payload(line: str) -> Optional[str]:
    """从一行中取出事件负载；空行、结束行、非 data 行返回 None。"""

    stripped = line.strip()
    if not stripped or stripped == DONE_LINE:
        return None
    if not stripped.startswith(DATA_PREFIX):
        return None
    return stripped[len(DATA_PREFIX):]


def parse_payload(payload: str) -> Any:
    """解析 JSON 负载，格式错误时抛 json.JSONDecodeError。"""

    return json.loads(payload)


def delta_content(event: Any) -> Optional[str]:
    """取 choices[0].delta.content，任一层缺失都返回 None。"""

    choice = _first_choice(event)
    delta = choice.get("delta") if choice else None
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def finish_reason(event: Any) -> Optional[str]:
    choice = _first_choice(event)
    return choice.get("finish_reason") if choice else None


def _first_choice(event: Any) -> Optional[dict]:
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return choices[0]
