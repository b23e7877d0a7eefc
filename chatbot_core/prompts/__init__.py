"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取 system prompt 文本，
作为 ContextWindow 的默认系统提示词。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "en") -> str:
    """加载聊天机器人的默认系统提示词（去掉首尾空白）。"""

    fname = PROMPTS_DIR / locale / "chatbot_system.md"
    return fname.read_text(encoding="utf-8").strip()
