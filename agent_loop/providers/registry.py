"""Provider 与模型配置。

所有 Provider 都走 OpenAI 兼容的 chat/completions 接口，差别只在
基础 URL、默认模型、默认 API Key 以及 chat/completions 的路径。
上层只关心 Provider 名称，具体用哪个底层模型由这里集中配置。"""

from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    label: str
    base_url: str
    default_model: str
    # None 表示必须由用户提供 API Key
    default_api_key: Optional[str] = None
    completions_path: str = "/chat/completions"
    max_tokens: int = 4096


OLLAMA_CONFIG = ProviderConfig(
    name="ollama",
    label="Ollama (local)",
    base_url="http://localhost:11434/v1",
    default_model="llama3.1",
    default_api_key="ollama",
)

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    label="OpenAI",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4o-mini",
)

GROQ_CONFIG = ProviderConfig(
    name="groq",
    label="Groq Cloud",
    base_url="https://api.groq.com/openai/v1",
    default_model="llama-3.1-70b-versatile",
)

GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    label="Google Gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta/openai",
    default_model="gemini-2.0-flash",
)

GITHUB_CONFIG = ProviderConfig(
    name="github",
    label="GitHub Models",
    base_url="https://models.inference.ai.azure.com",
    default_model="gpt-4o-mini",
)

# Kimi / Moonshot 与 GLM / BigModel 同样兼容 OpenAI 协议
KIMI_CONFIG = ProviderConfig(
    name="kimi",
    label="Kimi (Moonshot)",
    base_url="https://api.moonshot.cn/v1",
    default_model="kimi-k2-turbo-preview",
    max_tokens=8192,
)

GLM_CONFIG = ProviderConfig(
    name="glm",
    label="GLM (BigModel)",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    default_model="glm-4.6",
    max_tokens=8192,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    cfg.name: cfg
    for cfg in (
        OLLAMA_CONFIG,
        OPENAI_CONFIG,
        GROQ_CONFIG,
        GEMINI_CONFIG,
        GITHUB_CONFIG,
        KIMI_CONFIG,
        GLM_CONFIG,
    )
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
