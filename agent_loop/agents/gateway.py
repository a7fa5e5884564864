"""ModelGateway：把会话和工具 schema 发给模型，返回解析好的决策。

模型要么返回纯文本（最终回答），要么返回有序的工具调用列表。
调用失败（网络、接口错误、超时）或没有任何可用响应时抛出 GatewayFault，
由推理循环把它转换为本轮的终止错误，不在这里重试。
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging

from agent_loop.domain.exceptions import BusinessError, GatewayFault
from agent_loop.domain.models import ChatMessage, ChatRequest, ChatResult, ChatUsage
from agent_loop.infrastructure.logging.logger import log_event
from agent_loop.providers.base import ProviderClient
from agent_loop.tools.definitions import ToolCall, ToolDef, assign_call_ids


@dataclass
class Decision:
    text: Optional[str] = None
    invocations: List[ToolCall] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None

    @property
    def has_invocations(self) -> bool:
        return bool(self.invocations)


class ModelGateway:
    def __init__(
        self,
        provider_client: ProviderClient,
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ):
        self._provider = provider_client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def provider_name(self) -> str:
        return getattr(self._provider, "name", "unknown")

    @property
    def model(self) -> str:
        return self._model

    def think(self, messages: Sequence[ChatMessage], schemas: Sequence[ToolDef], log_ctx: Optional[dict] = None) -> Decision:
        """调用一次模型并解析决策。

        Raises:
            GatewayFault: 调用失败或响应中没有任何候选回答。
        """

        log_ctx = log_ctx or {}
        req = ChatRequest(
            provider=self.provider_name,
            model=self._model,
            messages=list(messages),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            tools=list(schemas) or None,
            tool_choice="auto",
        )
        log_event(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self.provider_name,
            model=self._model,
            message_count=len(req.messages),
            tool_count=len(schemas),
        )
        try:
            result: ChatResult = self._provider.chat(req)
        except BusinessError as exc:
            raise GatewayFault(f"Model call failed: {exc.message}", cause_code=exc.code) from exc
        except Exception as exc:
            raise GatewayFault(f"Model call failed: {exc}", cause_code=type(exc).__name__) from exc

        if not result or not result.choices:
            raise GatewayFault("Model returned no usable response", code="NO_RESPONSE")

        choice = result.choices[0]
        message = choice.message
        invocations = assign_call_ids(list(message.tool_calls or []))
        if result.usage:
            log_event(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        return Decision(
            text=message.content,
            invocations=invocations,
            usage=result.usage,
            finish_reason=choice.finish_reason,
        )
