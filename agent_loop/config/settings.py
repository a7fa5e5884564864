"""配置管理模块。

支持从环境变量、.env、config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AGENT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="ollama",
        description="默认使用的 Provider 名称，例如 ollama、openai、groq",
    )
    default_model: Optional[str] = Field(
        default=None,
        description="模型名，为空时使用 Provider 注册表中的默认模型",
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容接口的 API 密钥")
    openai_base_url: Optional[str] = Field(default=None, description="覆盖 Provider 默认的基础 URL")
    http_timeout: float = Field(default=30.0, ge=1.0, description="模型调用 HTTP 超时时间（秒）")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="采样温度")
    max_tokens: int = Field(default=4096, ge=1, description="单次回复最大 token 数")

    # ---- 推理循环 ----
    max_iterations: int = Field(
        default=10,
        ge=1,
        le=50,
        description="单轮对话内 think 调用的最大次数（基础模式）",
    )
    stream_max_iterations: int = Field(
        default=8,
        ge=1,
        le=50,
        description="单轮对话内 think 调用的最大次数（流式 UI 模式）",
    )
    dispatch_timeout: float = Field(default=15.0, gt=0, description="单次工具执行超时（秒）")
    max_tool_output_chars: int = Field(default=5000, ge=100, description="工具输出截断阈值（字符）")
    max_list_entries: int = Field(default=50, ge=1, description="list_directory 最多返回条目数")

    # ---- 流式通道与会话 ----
    stream_buffer_limit: int = Field(
        default=256,
        ge=1,
        description="流式通道中允许积压的未发送事件数，超过后关闭连接",
    )
    max_sessions: int = Field(default=1000, ge=1, description="内存中最多保留的会话数")
    session_idle_seconds: float = Field(default=3600.0, gt=0, description="会话空闲淘汰时间（秒）")

    # ---- 工具访问范围 ----
    workspace_root: str = Field(
        default_factory=lambda: str(Path.cwd()),
        description="文件工具可访问的根目录",
    )
    allow_tool_absolute_path: bool = Field(
        default=False,
        description="是否允许工具访问根目录以外的绝对路径（默认禁止）",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

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


settings = Settings()
