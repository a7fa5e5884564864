"""OpenAI 兼容 Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 chat/completions 请求格式。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。

Ollama、OpenAI、Groq、Gemini、GitHub Models、Kimi、GLM 都使用这一套格式，
区别只在 ProviderConfig 中的 URL 与默认模型。
"""

import httpx
import json
from typing import Any, Dict, List, Optional

from agent_loop.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
)
from agent_loop.domain.exceptions import NetworkError, ApiError, RateLimitError, ValidationError
from agent_loop.providers.registry import ProviderConfig
from agent_loop.tools.definitions import ToolDef, ToolCall, assign_call_ids


class OpenAICompatClient:
    """OpenAI 兼容接口的客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    """

    def __init__(self, settings, config: ProviderConfig):
        # Settings 里包含 api_key、base_url 覆盖、超时等配置
        self._settings = settings
        self._config = config
        self.name = config.name

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def _api_key(self) -> Optional[str]:
        return getattr(self._settings, "openai_api_key", None) or self._config.default_api_key

    def _base_url(self) -> str:
        base = getattr(self._settings, "openai_base_url", None) or self._config.base_url
        return base.rstrip("/")

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 构造 HTTP 请求 payload。
        2. 发送请求并捕获网络错误/限流/服务端错误（超时由 http_timeout 约束）。
        3. 使用统一的解析函数构造 ChatResult。
        """

        api_key = self._api_key()
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message=f"API key for {self.name} not set")
        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self._base_url()}{self._config.completions_path}",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时、读超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code == 429:
            # 限流错误交给上层处理
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit")
        if resp.status_code >= 400:
            # 其他 HTTP 错误统一包装为 ApiError
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(code="INVALID_RESPONSE", message="response body is not JSON", http_status=502)
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 OpenAI 兼容的请求 JSON。"""

        msgs = [self._message_to_payload(m) for m in req.messages]
        payload: Dict[str, Any] = {
            "model": req.model or self._config.default_model,
            "messages": msgs,
            "temperature": req.temperature,
            "max_tokens": req.max_tokens or self._config.max_tokens,
            "top_p": req.top_p,
        }
        # 工具调用：只有请求中携带了工具定义时才附带 tools 字段
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message")
            if not msg:
                continue
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=i, message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema(),
            },
        }

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条厂商 message 转换为 ChatMessage。

        同时负责把 tool_calls 字段解析为统一的 ToolCall 列表，
        arguments 保持原始文本；id 原样保留，缺失或重复时重新编号。
        """

        tool_calls: List[ToolCall] = []
        for call in payload.get("tool_calls") or []:
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or "",
                    name=func.get("name") or call.get("name") or "",
                    arguments=self._raw_arguments(func.get("arguments")),
                )
            )

        # 部分兼容实现仍会返回旧版 function_call 字段
        function_call = payload.get("function_call")
        if function_call:
            tool_calls.append(
                ToolCall(
                    id=function_call.get("id") or "",
                    name=function_call.get("name") or "",
                    arguments=self._raw_arguments(function_call.get("arguments")),
                )
            )
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content"),
            tool_calls=assign_call_ids(tool_calls) or None,
        )

    @staticmethod
    def _raw_arguments(raw: Any) -> str:
        """统一 arguments 为字符串。

        大多数实现返回 JSON 字符串，个别（如 Ollama 原生格式）直接返回对象，
        这里序列化回字符串，校验交给 CapabilityRegistry。
        """

        if raw is None:
            return ""
        if isinstance(raw, str):
            return raw
        return json.dumps(raw, ensure_ascii=False)

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.tool_calls:
            payload["content"] = message.content
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
                for call in message.tool_calls
            ]
        else:
            payload["content"] = message.content or ""
        if message.role == "tool":
            payload["tool_call_id"] = message.tool_call_id or ""
            if message.name:
                payload["name"] = message.name
        return payload
