"""LangGraph construction and node implementations for the reasoning loop.

Graph shape::

    think ──► invoke ──► think ...
      │          └──► fail
      ├──► respond ──► END
      ├──► exhausted ──► END
      └──► fail ──► END

Every node mutates the session in place and returns only the keys it changes.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from agent_loop.agents.gateway import ModelGateway
from agent_loop.domain.conversation import LoopStatus, Session
from agent_loop.domain.exceptions import (
    BusinessError,
    CapabilityExecutionFault,
    GatewayFault,
    IterationBudgetExceeded,
    TurnCancelled,
)
from agent_loop.domain.models import ChatMessage
from agent_loop.flows.state import TurnState
from agent_loop.infrastructure.logging.logger import log_event
from agent_loop.streaming.events import EventKind
from agent_loop.tools.definitions import ToolCall, ToolResult
from agent_loop.tools.registry import CapabilityRegistry, dumps

NO_ANSWER_TEXT = "抱歉，我没有得到可以回复的内容。"
BUDGET_EXHAUSTED_TEXT = "已达到最大思考轮数，仍未得到最终答案。请尝试换个问法或拆分问题。"
CANCELLED_TEXT = "本轮对话已取消。"
GATEWAY_FAULT_TEXT = "模型调用失败，本轮对话已终止：{detail}"
INTERNAL_ERROR_TEXT = "处理请求时发生内部错误，本轮对话已终止。"

MAX_DETAIL_CHARS = 200


def _bounded(text: str, limit: int = MAX_DETAIL_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def failure_text(failure: BusinessError) -> str:
    """把终止本轮的错误转换为有界的用户可见提示。"""

    if isinstance(failure, TurnCancelled):
        return CANCELLED_TEXT
    if isinstance(failure, IterationBudgetExceeded):
        return BUDGET_EXHAUSTED_TEXT
    if isinstance(failure, GatewayFault):
        return GATEWAY_FAULT_TEXT.format(detail=_bounded(failure.message))
    return INTERNAL_ERROR_TEXT


def close_unanswered(session: Session, failure: BusinessError) -> int:
    """给还没有结果的工具调用补上结构化错误结果，保持调用与结果一一对应。"""

    pending = session.conversation.unanswered_invocations()
    content = dumps(failure.to_payload())
    for call in pending:
        session.conversation.append(
            ChatMessage(role="tool", content=content, tool_call_id=call.id, name=call.name)
        )
    return len(pending)


def _dispatch(registry: CapabilityRegistry, call: ToolCall, timeout: Optional[float]) -> ToolResult:
    try:
        return registry.dispatch(call.name, call.arguments, timeout=timeout)
    except Exception as exc:
        fault = CapabilityExecutionFault(call.name, f"Tool execution failed: {exc}")
        return ToolResult(content=dumps(fault.to_payload()), ok=False, error_code=fault.code)


def think_node(state: TurnState, gateway: ModelGateway, registry: CapabilityRegistry) -> Dict:
    session = state["session"]
    loop = session.loop
    cancel = state["cancel"]
    log_ctx = state.get("log_ctx") or {}

    if cancel.cancelled:
        return {"failure": TurnCancelled(cancel.reason or "cancelled"), "decision": None}
    if loop.exhausted:
        return {"failure": IterationBudgetExceeded(loop.max_iterations), "decision": None}

    iteration = loop.advance()
    loop.status = LoopStatus.THINKING
    state["emitter"].emit(EventKind.THINKING, {"iteration": iteration, "max_iterations": loop.max_iterations})
    log_event(logging.INFO, "Think", log_ctx, iteration=iteration, max_iterations=loop.max_iterations)

    try:
        decision = gateway.think(session.conversation.messages, registry.schemas(), log_ctx)
    except GatewayFault as exc:
        log_event(logging.WARNING, "Gateway fault", log_ctx, code=exc.code, error=exc.message)
        return {"failure": exc, "decision": None}
    return {"decision": decision, "failure": None}


def invoke_node(state: TurnState, registry: CapabilityRegistry, dispatch_timeout: Optional[float]) -> Dict:
    session = state["session"]
    loop = session.loop
    emitter = state["emitter"]
    cancel = state["cancel"]
    log_ctx = state.get("log_ctx") or {}
    decision = state["decision"]

    session.conversation.append(
        ChatMessage(
            role="assistant",
            content=decision.text,
            tool_calls=list(decision.invocations),
            meta={"iteration": loop.iteration},
        )
    )
    loop.status = LoopStatus.INVOKING

    for call in decision.invocations:
        if cancel.cancelled:
            failure = TurnCancelled(cancel.reason or "cancelled")
            skipped = close_unanswered(session, failure)
            log_event(logging.INFO, "Dispatch cancelled", log_ctx, skipped=skipped, reason=failure.extra.get("reason"))
            return {"failure": failure, "decision": None}

        emitter.emit(EventKind.TOOL_CALL, {"id": call.id, "name": call.name, "arguments": call.arguments})
        log_event(logging.INFO, "Dispatch", log_ctx, tool=call.name, call_id=call.id)
        result = _dispatch(registry, call, dispatch_timeout)
        session.conversation.append(
            ChatMessage(role="tool", content=result.content, tool_call_id=call.id, name=call.name)
        )
        if not result.ok:
            log_event(logging.WARNING, "Tool returned error", log_ctx, tool=call.name, code=result.error_code)
        if result.ui_action is not None:
            emitter.emit(EventKind.UI_ACTION, result.ui_action.to_dict())
        emitter.emit(
            EventKind.TOOL_RESULT,
            {"id": call.id, "name": call.name, "result": result.content, "ok": result.ok},
        )
    return {"failure": None, "decision": None}


def respond_node(state: TurnState) -> Dict:
    session = state["session"]
    decision = state["decision"]
    session.loop.status = LoopStatus.RESPONDING
    text = decision.text if decision.text and decision.text.strip() else NO_ANSWER_TEXT
    session.conversation.append(ChatMessage(role="assistant", content=text, meta={"iteration": session.loop.iteration}))
    session.loop.status = LoopStatus.DONE
    state["emitter"].emit(EventKind.TEXT, {"content": text})
    return {"final_text": text}


def exhausted_node(state: TurnState) -> Dict:
    session = state["session"]
    failure = state["failure"]
    session.loop.status = LoopStatus.ERROR
    session.conversation.append(
        ChatMessage(role="assistant", content=BUDGET_EXHAUSTED_TEXT, meta={"error": failure.code})
    )
    log_event(logging.WARNING, "Iteration budget exhausted", state.get("log_ctx") or {}, iterations=session.loop.iteration)
    state["emitter"].emit(
        EventKind.ERROR,
        {"code": failure.code, "message": BUDGET_EXHAUSTED_TEXT, "iterations": session.loop.iteration},
    )
    return {"final_text": BUDGET_EXHAUSTED_TEXT}


def fail_node(state: TurnState) -> Dict:
    session = state["session"]
    failure = state["failure"]
    session.loop.status = LoopStatus.ERROR
    close_unanswered(session, failure)
    text = failure_text(failure)
    session.conversation.append(ChatMessage(role="assistant", content=text, meta={"error": failure.code}))
    state["emitter"].emit(EventKind.ERROR, {"code": failure.code, "message": text})
    return {"final_text": text}


def route_after_think(state: TurnState) -> str:
    failure = state.get("failure")
    if isinstance(failure, IterationBudgetExceeded):
        return "exhausted"
    if failure is not None:
        return "fail"
    if state["decision"].has_invocations:
        return "invoke"
    return "respond"


def route_after_invoke(state: TurnState) -> str:
    return "fail" if state.get("failure") is not None else "think"


def build_graph(
    gateway: ModelGateway,
    registry: CapabilityRegistry,
    dispatch_timeout: Optional[float] = None,
) -> CompiledStateGraph:
    graph = StateGraph(TurnState)
    graph.add_node("think", lambda s: think_node(s, gateway, registry))
    graph.add_node("invoke", lambda s: invoke_node(s, registry, dispatch_timeout))
    graph.add_node("respond", respond_node)
    graph.add_node("exhausted", exhausted_node)
    graph.add_node("fail", fail_node)
    graph.set_entry_point("think")
    graph.add_conditional_edges(
        "think",
        route_after_think,
        {"invoke": "invoke", "respond": "respond", "exhausted": "exhausted", "fail": "fail"},
    )
    graph.add_conditional_edges("invoke", route_after_invoke, {"think": "think", "fail": "fail"})
    graph.add_edge("respond", END)
    graph.add_edge("exhausted", END)
    graph.add_edge("fail", END)
    return graph.compile()


def recursion_limit(max_iterations: int) -> int:
    """think + invoke per iteration, plus the terminal nodes."""

    return 2 * max_iterations + 5
