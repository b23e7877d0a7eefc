"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级：
初始化参数 > 环境变量 > .env > config.yaml > secrets 目录。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHATBOT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatbotSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    openrouter_base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="OpenAI 兼容接口基础URL，也可以指向自建代理",
    )
    model: str = Field(default="openai/gpt-3.5-turbo", description="模型 ID")
    max_tokens: int = Field(default=500, ge=1, le=32768)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    site_name: str = Field(default="SenangWebs Chatbot", description="X-Title 归属头")
    site_url: str = Field(default="", description="HTTP-Referer 归属头")
    http_timeout: float = Field(default=30.0, ge=1.0, description="等待响应头的超时时间（秒）")
    retry_attempts: int = Field(default=2, ge=0, le=10, description="失败后的额外重试次数")
    retry_delay: float = Field(default=1.0, ge=0.0, description="指数退避的基础间隔（秒）")

    # ---- 路由相关配置 ----
    mode: Literal["keyword-only", "ai-only", "hybrid"] = Field(default="keyword-only")
    hybrid_threshold: float = Field(default=0.3, ge=0.0, le=1.0, description="hybrid 模式下的置信度阈值")
    streaming: bool = Field(default=True, description="是否启用流式输出")
    inject_knowledge: bool = Field(default=False, description="调用模型前是否把相关知识注入 system prompt")
    knowledge_base_path: Optional[str] = Field(default=None, description="知识库 YAML/JSON 文件路径")
    bot_name: str = Field(default="Bot")
    theme_color: str = Field(default="#007bff")

    # ---- 上下文窗口 ----
    system_prompt: Optional[str] = Field(default=None, description="为空时从 prompts 目录加载")
    context_max_messages: int = Field(default=10, ge=1, le=100, description="最大上下文消息数")
    context_max_tokens: int = Field(default=2000, ge=1, description="上下文 token 预算")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    debug: bool = Field(default=False, description="输出 DEBUG 级别日志")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("openrouter_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith("http"):
            raise ValueError("base URL must start with http")
        return v.rstrip("/")

    @property
    def uses_custom_base_url(self) -> bool:
        return self.openrouter_base_url != DEFAULT_BASE_URL

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatbotSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatbotSettings
