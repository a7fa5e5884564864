import json
import tempfile

from pydantic import BaseModel

from agent_loop.agents.gateway import ModelGateway
from agent_loop.domain.conversation import LoopStatus
from agent_loop.domain.exceptions import NetworkError
from agent_loop.domain.models import ChatChoice, ChatMessage, ChatResult
from agent_loop.flows.graph import BUDGET_EXHAUSTED_TEXT, CANCELLED_TEXT, INTERNAL_ERROR_TEXT, NO_ANSWER_TEXT
from agent_loop.flows.orchestrator import Orchestrator
from agent_loop.infrastructure.storage.session_store import SessionStore
from agent_loop.streaming.channel import CancelToken
from agent_loop.streaming.events import EventKind
from agent_loop.tools.builtin import default_registry
from agent_loop.tools.definitions import ToolCall, ToolDef
from agent_loop.tools.registry import CapabilityRegistry


class ScriptedProvider:
    """按脚本依次返回消息；记录每次调用时看到的消息列表。"""

    name = "scripted"

    def __init__(self, steps):
        self._steps = list(steps)
        self.requests = []

    def chat(self, req):
        self.requests.append(list(req.messages))
        step = self._steps.pop(0) if self._steps else ChatMessage(role="assistant", content="done")
        if callable(step):
            step = step(req)
        if isinstance(step, Exception):
            raise step
        return ChatResult(provider=self.name, model=req.model, choices=[ChatChoice(index=0, message=step)])


def text(content):
    return ChatMessage(role="assistant", content=content)


def calls(*specs, content=None):
    return ChatMessage(
        role="assistant",
        content=content,
        tool_calls=[ToolCall(id=cid, name=name, arguments=args) for cid, name, args in specs],
    )


def _setup(steps, registry=None, max_iterations=10):
    provider = ScriptedProvider(steps)
    orch = Orchestrator(ModelGateway(provider, model="m"), registry or default_registry())
    store = SessionStore("cli", system_prompt="SYS", max_iterations=max_iterations)
    return orch, provider, store


def test_text_only_turn():
    orch, provider, store = _setup([text("hello")])
    session = store.get_or_create("s1")
    assert orch.run(session, "hi") == "hello"
    assert [m.role for m in session.conversation.messages] == ["system", "user", "assistant"]
    assert session.loop.status is LoopStatus.DONE
    assert session.loop.iteration == 1


def test_tool_round_then_answer():
    orch, provider, store = _setup([calls(("c1", "calculator", '{"expression": "2 + 2"}')), text("4")])
    session = store.get_or_create("s1")
    assert orch.run(session, "2+2?") == "4"
    msgs = session.conversation.messages
    assert [m.role for m in msgs] == ["system", "user", "assistant", "tool", "assistant"]
    assert msgs[2].tool_calls[0].id == "c1"
    assert msgs[3].tool_call_id == "c1"
    assert msgs[3].name == "calculator"
    assert json.loads(msgs[3].content)["result"] == 4
    assert session.conversation.check_links() == []
    # 第二次调用模型时能看到工具结果
    assert provider.requests[1][-1].role == "tool"
    assert session.loop.iteration == 2


def test_invocations_run_sequentially_in_order():
    with tempfile.TemporaryDirectory() as d:
        orch, provider, store = _setup(
            [
                calls(
                    ("w", "write_file", '{"path": "x.txt", "content": "payload"}'),
                    ("r", "read_file", '{"path": "x.txt"}'),
                ),
                text("ok"),
            ],
            registry=default_registry(workspace_root=d),
        )
        session = store.get_or_create("s1")
        orch.run(session, "write then read")
        tools = [m for m in session.conversation.messages if m.role == "tool"]
        assert [m.tool_call_id for m in tools] == ["w", "r"]
        assert json.loads(tools[1].content)["content"] == "payload"
        assert session.conversation.check_links() == []


def test_tool_errors_do_not_abort_turn():
    orch, provider, store = _setup(
        [calls(("a", "nope", "{}"), ("b", "calculator", "not json")), text("recovered")]
    )
    session = store.get_or_create("s1")
    assert orch.run(session, "x") == "recovered"
    tools = [m for m in session.conversation.messages if m.role == "tool"]
    assert json.loads(tools[0].content)["error"]["code"] == "CAPABILITY_NOT_FOUND"
    assert json.loads(tools[1].content)["error"]["code"] == "ARGUMENT_VALIDATION_ERROR"
    assert session.loop.status is LoopStatus.DONE


def test_budget_exhaustion():
    counter = iter(range(100))

    def always_call(req):
        return calls((f"c{next(counter)}", "calculator", '{"expression": "1"}'))

    orch, provider, store = _setup([always_call] * 10, max_iterations=3)
    session = store.get_or_create("s1")
    events = []
    result = orch.run_streaming(session, "loop forever", events.append)
    assert result == BUDGET_EXHAUSTED_TEXT
    assert session.loop.status is LoopStatus.ERROR
    assert session.loop.iteration == 3
    assert len(provider.requests) == 3
    assert session.last_message.content == BUDGET_EXHAUSTED_TEXT
    assert session.conversation.check_links() == []
    assert [e.kind for e in events][-2:] == [EventKind.ERROR, EventKind.DONE]
    assert events[-2].data["code"] == "ITERATION_BUDGET_EXCEEDED"
    assert sum(1 for e in events if e.kind is EventKind.THINKING) == 3


def test_gateway_fault_ends_turn_but_session_survives():
    orch, provider, store = _setup(
        [NetworkError(code="NETWORK_ERROR", message="read timeout"), text("back again")]
    )
    session = store.get_or_create("s1")
    events = []
    first = orch.run_streaming(session, "hi", events.append)
    assert "read timeout" in first
    assert session.loop.status is LoopStatus.ERROR
    assert [e.kind for e in events] == [EventKind.THINKING, EventKind.ERROR, EventKind.DONE]
    assert events[1].data["code"] == "GATEWAY_FAULT"

    assert orch.run(session, "again") == "back again"
    assert session.loop.status is LoopStatus.DONE


def test_empty_answer_uses_fallback():
    orch, provider, store = _setup([text("   ")])
    session = store.get_or_create("s1")
    assert orch.run(session, "hi") == NO_ANSWER_TEXT
    assert session.last_message.content == NO_ANSWER_TEXT


def test_cancel_before_first_iteration():
    orch, provider, store = _setup([text("never")])
    session = store.get_or_create("s1")
    cancel = CancelToken()
    cancel.cancel("user")
    events = []
    assert orch.run_streaming(session, "hi", events.append, cancel) == CANCELLED_TEXT
    assert provider.requests == []
    assert [e.kind for e in events] == [EventKind.ERROR, EventKind.DONE]
    assert events[0].data["code"] == "TURN_CANCELLED"


class NoArgs(BaseModel):
    pass


def test_cancel_between_invocations_keeps_links():
    cancel = CancelToken()
    reg = CapabilityRegistry()
    reg.register(ToolDef.from_model("stop", "cancels the turn", NoArgs), lambda a: cancel.cancel("user") or "stopped", args_model=NoArgs)
    reg.register(ToolDef.from_model("never", "must not run", NoArgs), lambda a: "ran", args_model=NoArgs)
    orch, provider, store = _setup([calls(("1", "stop", "{}"), ("2", "never", "{}"))], registry=reg)
    session = store.get_or_create("s1")
    events = []
    assert orch.run_streaming(session, "go", events.append, cancel) == CANCELLED_TEXT
    tools = [m for m in session.conversation.messages if m.role == "tool"]
    assert [m.tool_call_id for m in tools] == ["1", "2"]
    assert json.loads(tools[1].content)["error"]["code"] == "TURN_CANCELLED"
    assert session.conversation.check_links() == []
    assert len(provider.requests) == 1
    assert [e.data["name"] for e in events if e.kind is EventKind.TOOL_CALL] == ["stop"]
    assert events[-1].kind is EventKind.DONE


def test_reset_then_hi_starts_clean():
    orch, provider, store = _setup([calls(("c1", "calculator", '{"expression": "1+1"}')), text("2"), text("hello")])
    session = store.get_or_create("s1")
    orch.run(session, "1+1")
    store.reset("s1")
    assert [m.role for m in session.conversation.messages] == ["system"]
    orch.run(session, "hi")
    seen = provider.requests[-1]
    assert [(m.role, m.content) for m in seen] == [("system", "SYS"), ("user", "hi")]


def test_sink_failure_is_contained():
    orch, provider, store = _setup([text("fine")])
    session = store.get_or_create("s1")

    def broken_sink(event):
        raise RuntimeError("socket closed")

    assert orch.run_streaming(session, "hi", broken_sink) == INTERNAL_ERROR_TEXT
    assert session.loop.status is LoopStatus.ERROR
    assert orch.run(session, "again") == "fine"


def test_done_is_always_last_and_unique():
    orch, provider, store = _setup([calls(("c1", "get_weather", '{"city": "Madrid"}')), text("sunny")])
    session = store.get_or_create("s1")
    events = []
    orch.run_streaming(session, "weather?", events.append)
    kinds = [e.kind for e in events]
    assert kinds == [
        EventKind.THINKING,
        EventKind.TOOL_CALL,
        EventKind.TOOL_RESULT,
        EventKind.THINKING,
        EventKind.TEXT,
        EventKind.DONE,
    ]
    assert events[0].data == {"iteration": 1, "max_iterations": 10}
    assert events[1].data == {"id": "c1", "name": "get_weather", "arguments": '{"city": "Madrid"}'}
    assert events[2].data["ok"] is True
    assert events[-1].data["status"] == "done"
