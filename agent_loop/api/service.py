"""对外 API 服务模块。

AgentService 把会话存储和推理循环组合成面向调用方的入口：

- submit：基础模式，同步返回最终文本。
- submit_stream：流式模式，返回以 done 结束的事件迭代器。
- reset / history：会话管理。
"""

from dataclasses import asdict
from typing import Any, Dict, Iterator, List, Optional
import threading

from agent_loop.agents.gateway import ModelGateway
from agent_loop.config.settings import settings
from agent_loop.domain.exceptions import TurnCancelled
from agent_loop.domain.models import ChatMessage
from agent_loop.flows.orchestrator import Orchestrator
from agent_loop.infrastructure.logging.logger import logger
from agent_loop.infrastructure.storage.session_store import SessionStore
from agent_loop.providers import create_provider, resolve_model
from agent_loop.streaming.channel import CancelToken, EventChannel
from agent_loop.streaming.events import Event, EventEmitter, EventKind
from agent_loop.tools.builtin import default_registry
from agent_loop.tools.registry import CapabilityRegistry
from agent_loop.tools.ui_tools import ui_registry


def message_to_dict(msg: ChatMessage) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.tool_calls:
        payload["tool_calls"] = [asdict(call) for call in msg.tool_calls]
    if msg.tool_call_id:
        payload["tool_call_id"] = msg.tool_call_id
        payload["name"] = msg.name
    return payload


class AgentService:
    def __init__(
        self,
        orchestrator: Orchestrator,
        store: SessionStore,
        *,
        stream_buffer_limit: Optional[int] = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self._buffer_limit = stream_buffer_limit or settings.stream_buffer_limit

    def submit(self, session_id: str, user_text: str, cancel: Optional[CancelToken] = None) -> str:
        session = self.store.get_or_create(session_id)
        return self.orchestrator.run(session, user_text, cancel)

    def submit_stream(
        self,
        session_id: str,
        user_text: str,
        cancel: Optional[CancelToken] = None,
    ) -> Iterator[Event]:
        """在工作线程中运行一轮，把事件经有界通道交给调用方迭代。

        会话在调用时立即解析（非法 session id 在开始推流前报错）。
        迭代器被提前关闭视为客户端断开，本轮随之取消。
        """

        session = self.store.get_or_create(session_id)
        cancel = cancel or CancelToken()
        channel = EventChannel(self._buffer_limit, cancel=cancel)

        def work() -> None:
            try:
                self.orchestrator.run_streaming(session, user_text, channel, cancel)
            finally:
                channel.close()

        worker = threading.Thread(target=work, name=f"turn-{session_id}", daemon=True)
        worker.start()
        return self._drain(session_id, channel, cancel)

    def _drain(self, session_id: str, channel: EventChannel, cancel: CancelToken) -> Iterator[Event]:
        finished = False
        try:
            for event in channel:
                if event.kind is EventKind.DONE:
                    finished = True
                yield event
            if not finished:
                # 通道溢出或工作线程异常退出：补一个终止序列，流不会没有 done 就结束
                reason = cancel.reason or "stream closed"
                fault = TurnCancelled(reason)
                logger.warning(
                    "Stream ended without done",
                    extra={"extra": {"session_id": session_id, "reason": reason, "dropped": channel.dropped}},
                )
                tail = EventEmitter()
                yield tail.emit(EventKind.ERROR, {"code": fault.code, "message": fault.message})
                finished = True
                yield tail.done(status="error")
        finally:
            if not finished:
                cancel.cancel("client disconnected")
            channel.close()

    def reset(self, session_id: str) -> Dict[str, Any]:
        session = self.store.reset(session_id) or self.store.get_or_create(session_id)
        return {"sessionId": session.id, "messages": len(session.conversation)}

    def history(self, session_id: str) -> List[Dict[str, Any]]:
        session = self.store.get(session_id)
        if session is None:
            return []
        return [message_to_dict(m) for m in session.conversation.messages]

    def info(self) -> Dict[str, Any]:
        gateway = self.orchestrator.gateway
        return {
            "provider": gateway.provider_name,
            "model": gateway.model,
            "mode": self.store.mode,
            "tools": self.orchestrator.registry.names(),
            "maxIterations": self.store.max_iterations,
            **self.store.stats(),
        }


def build_service(
    mode: str = "cli",
    *,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    registry: Optional[CapabilityRegistry] = None,
) -> AgentService:
    """按模式组装服务：cli 使用内置工具集，generative-ui 使用界面组件工具集。"""

    client = create_provider(provider)
    gateway = ModelGateway(
        client,
        model=resolve_model(client, model),
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    if registry is None:
        registry = ui_registry() if mode == "generative-ui" else default_registry()
    orchestrator = Orchestrator(gateway, registry, dispatch_timeout=settings.dispatch_timeout)
    return AgentService(orchestrator, SessionStore(mode))


_services: Dict[str, AgentService] = {}
_services_lock = threading.Lock()


def get_default_service(mode: str = "generative-ui") -> AgentService:
    """获取指定模式的默认服务实例（单例）。"""

    with _services_lock:
        if mode not in _services:
            _services[mode] = build_service(mode)
        return _services[mode]
