"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供 OpenAI 兼容协议的具体实现 (openai_compat)。
"""

from typing import Optional

from agent_loop.config.settings import settings
from agent_loop.providers.base import ProviderClient
from agent_loop.providers.openai_compat import OpenAICompatClient
from agent_loop.providers.registry import OLLAMA_CONFIG, PROVIDER_REGISTRY


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider，未知名称回退到 ollama。"""

    provider_name = (name or getattr(settings, "default_provider", "ollama")).lower()
    config = PROVIDER_REGISTRY.get(provider_name, OLLAMA_CONFIG)
    return OpenAICompatClient(settings, config)


def resolve_model(client: ProviderClient, model: Optional[str] = None) -> str:
    """返回实际使用的模型 ID：显式参数 > 配置 > Provider 默认模型。"""

    explicit = model or getattr(settings, "default_model", None)
    if explicit:
        return explicit
    config = getattr(client, "config", None)
    return config.default_model if config else "default"


__all__ = ["ProviderClient", "OpenAICompatClient", "create_provider", "resolve_model"]
