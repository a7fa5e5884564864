"""Orchestrator: runs one user turn through the reasoning-loop graph.

A turn always ends with the session in a terminal status (done or error),
an assistant message carrying the user-visible answer, and exactly one
``done`` event as the last emitted event.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from agent_loop.agents.gateway import ModelGateway
from agent_loop.domain.conversation import LoopStatus, Session
from agent_loop.domain.exceptions import BusinessError
from agent_loop.domain.models import ChatMessage
from agent_loop.flows.graph import INTERNAL_ERROR_TEXT, build_graph, close_unanswered, recursion_limit
from agent_loop.flows.state import TurnState
from agent_loop.infrastructure.logging.logger import log_event
from agent_loop.streaming.channel import CancelToken
from agent_loop.streaming.events import EventEmitter, EventKind, EventSink
from agent_loop.tools.registry import CapabilityRegistry


class Orchestrator:
    def __init__(
        self,
        gateway: ModelGateway,
        registry: CapabilityRegistry,
        *,
        max_iterations: Optional[int] = None,
        dispatch_timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.registry = registry
        self.max_iterations = max_iterations
        self._graph = build_graph(gateway, registry, dispatch_timeout)

    def run(self, session: Session, user_text: str, cancel: Optional[CancelToken] = None) -> str:
        """基础模式：运行一轮并返回最终文本。"""

        return self._run_turn(session, user_text, EventEmitter(), cancel)

    def run_streaming(
        self,
        session: Session,
        user_text: str,
        sink: EventSink,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        """流式模式：每一步都作为事件交给 sink，返回值与 run 相同。"""

        return self._run_turn(session, user_text, EventEmitter(sink), cancel)

    def _run_turn(
        self,
        session: Session,
        user_text: str,
        emitter: EventEmitter,
        cancel: Optional[CancelToken],
    ) -> str:
        cancel = cancel or CancelToken()
        log_ctx = {
            "trace_id": uuid.uuid4().hex,
            "session_id": session.id,
            "provider": self.gateway.provider_name,
            "model": self.gateway.model,
        }
        start = time.perf_counter()
        text = INTERNAL_ERROR_TEXT

        with session.lock:
            try:
                if self.max_iterations is not None:
                    session.loop.max_iterations = self.max_iterations
                session.conversation.append(ChatMessage(role="user", content=user_text))
                session.loop.begin_turn()
                session.turns += 1
                session.touch()
                log_event(
                    logging.INFO,
                    "Turn started",
                    log_ctx,
                    turn=session.turns,
                    max_iterations=session.loop.max_iterations,
                    message_count=len(session.conversation),
                )

                state: TurnState = {
                    "session": session,
                    "emitter": emitter,
                    "cancel": cancel,
                    "log_ctx": log_ctx,
                    "decision": None,
                    "failure": None,
                    "final_text": None,
                }
                result = self._graph.invoke(
                    state,
                    config={"recursion_limit": recursion_limit(session.loop.max_iterations)},
                )
                text = result.get("final_text") or INTERNAL_ERROR_TEXT
            except Exception:
                log_event(logging.ERROR, "Turn aborted by unexpected error", log_ctx, exc_info=True)
                text = self._abort(session, emitter, log_ctx)
            finally:
                self._finish(session, emitter, log_ctx)
                session.touch()
                log_event(
                    logging.INFO,
                    "Turn finished",
                    log_ctx,
                    status=session.loop.status.value,
                    iterations=session.loop.iteration,
                    events=emitter.emitted,
                    elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
                )
        return text

    def _abort(self, session: Session, emitter: EventEmitter, log_ctx: dict) -> str:
        """图之外的意外错误：补齐未完成的工具结果，把本轮置为 error。"""

        fault = BusinessError(code="INTERNAL_ERROR", message=INTERNAL_ERROR_TEXT, http_status=500)
        if session.loop.is_terminal:
            last = session.last_message
            if last is not None and last.role == "assistant" and last.content:
                return last.content
        close_unanswered(session, fault)
        session.loop.status = LoopStatus.ERROR
        session.conversation.append(ChatMessage(role="assistant", content=INTERNAL_ERROR_TEXT, meta={"error": fault.code}))
        if not emitter.finished:
            try:
                emitter.emit(EventKind.ERROR, {"code": fault.code, "message": INTERNAL_ERROR_TEXT})
            except Exception:
                log_event(logging.ERROR, "Failed to emit error event", log_ctx, exc_info=True)
        return INTERNAL_ERROR_TEXT

    def _finish(self, session: Session, emitter: EventEmitter, log_ctx: dict) -> None:
        if not session.loop.is_terminal:
            session.loop.status = LoopStatus.ERROR
        try:
            emitter.done(status=session.loop.status.value, iterations=session.loop.iteration)
        except Exception:
            log_event(logging.ERROR, "Failed to emit done event", log_ctx, exc_info=True)
