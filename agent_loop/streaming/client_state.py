"""客户端状态投影。

把服务端推送的事件序列投影为：消息列表、已挂载组件列表、
“思考中”标志、当前工具名和最近一次错误。

reduce() 是纯函数：同样的 (state, event) 永远得到同样的新状态，
不修改传入的 state，可以脱离传输层单独测试。
ClientStateStore 在它外面包一层可订阅的可变容器。
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from agent_loop.infrastructure.logging.logger import logger
from .events import FRAME_DELIMITER, Event, EventKind, FrameDecoder


@dataclass(frozen=True)
class MountedComponent:
    id: str
    component: Optional[str]
    props: Dict[str, Any] = field(default_factory=dict)
    mounted_at: int = 0


@dataclass(frozen=True)
class ClientMessage:
    """一条界面上的消息，components 保存挂在该消息下的组件 id。"""

    id: str
    role: str
    content: str
    timestamp: int
    components: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClientState:
    messages: Tuple[ClientMessage, ...] = ()
    mounted: Tuple[MountedComponent, ...] = ()
    is_thinking: bool = False
    current_tool: Optional[str] = None
    error: Optional[str] = None
    turn_open: bool = False

    def component(self, component_id: str) -> Optional[MountedComponent]:
        for comp in self.mounted:
            if comp.id == component_id:
                return comp
        return None

    def components_of(self, message: ClientMessage) -> List[MountedComponent]:
        return [comp for comp in self.mounted if comp.id in message.components]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_message(state: ClientState, role: str, content: str, timestamp: int) -> ClientMessage:
    return ClientMessage(id=f"msg-{len(state.messages) + 1}", role=role, content=content, timestamp=timestamp)


def _open_assistant_index(state: ClientState) -> Optional[int]:
    if state.turn_open and state.messages and state.messages[-1].role == "assistant":
        return len(state.messages) - 1
    return None


def _replace_message(state: ClientState, idx: int, message: ClientMessage) -> Tuple[ClientMessage, ...]:
    return state.messages[:idx] + (message,) + state.messages[idx + 1:]


def begin_turn(state: ClientState, user_text: str, now: Optional[int] = None) -> ClientState:
    """用户发送消息：追加用户消息和一条空的进行中 assistant 消息。"""

    ts = _now_ms() if now is None else now
    user = _new_message(state, "user", user_text, ts)
    state = replace(state, messages=state.messages + (user,))
    assistant = _new_message(state, "assistant", "", ts)
    return replace(
        state,
        messages=state.messages + (assistant,),
        is_thinking=True,
        current_tool=None,
        error=None,
        turn_open=True,
    )


def _reduce_ui_action(state: ClientState, data: Dict[str, Any], timestamp: int) -> ClientState:
    action = data.get("type")
    component_id = data.get("componentId")
    if not isinstance(component_id, str) or not component_id:
        return state
    props = data.get("props") or {}
    if not isinstance(props, dict):
        return state

    if action == "mount":
        comp = MountedComponent(id=component_id, component=data.get("component"), props=dict(props), mounted_at=timestamp)
        mounted = tuple(c for c in state.mounted if c.id != component_id) + (comp,)
        messages = state.messages
        idx = _open_assistant_index(state)
        if idx is not None:
            owner = messages[idx]
            if component_id not in owner.components:
                messages = _replace_message(state, idx, replace(owner, components=owner.components + (component_id,)))
        return replace(state, mounted=mounted, messages=messages)

    if action == "update":
        if state.component(component_id) is None:
            return state
        mounted = tuple(
            replace(c, props={**c.props, **props}) if c.id == component_id else c for c in state.mounted
        )
        return replace(state, mounted=mounted)

    if action == "unmount":
        mounted = tuple(c for c in state.mounted if c.id != component_id)
        messages = tuple(
            replace(m, components=tuple(cid for cid in m.components if cid != component_id))
            if component_id in m.components
            else m
            for m in state.messages
        )
        return replace(state, mounted=mounted, messages=messages)

    return state


def reduce(state: ClientState, event: Event) -> ClientState:
    kind = event.kind
    data = event.data if isinstance(event.data, dict) else {}

    if kind is EventKind.THINKING:
        return replace(state, is_thinking=True, current_tool=None)

    if kind is EventKind.TOOL_CALL:
        name = data.get("name")
        return replace(state, current_tool=name) if isinstance(name, str) else state

    if kind is EventKind.UI_ACTION:
        return _reduce_ui_action(state, data, event.timestamp)

    if kind is EventKind.TEXT:
        content = data.get("content")
        if not isinstance(content, str):
            return state
        idx = _open_assistant_index(state)
        if idx is None:
            msg = _new_message(state, "assistant", content, event.timestamp)
            return replace(state, messages=state.messages + (msg,), turn_open=True)
        return replace(state, messages=_replace_message(state, idx, replace(state.messages[idx], content=content)))

    if kind is EventKind.ERROR:
        message = data.get("message", data.get("error"))
        if message is None and isinstance(event.data, str):
            message = event.data
        return replace(state, error=str(message)) if message is not None else state

    if kind is EventKind.DONE:
        return replace(state, is_thinking=False, current_tool=None, turn_open=False)

    # tool_result 只用于展示过程，不改变投影
    return state


Listener = Callable[[ClientState], None]


class ClientStateStore:
    """可订阅的客户端状态容器，事件经 reduce() 更新状态后通知订阅者。"""

    def __init__(self, state: Optional[ClientState] = None):
        self._state = state or ClientState()
        self._decoder = FrameDecoder()
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def discarded(self) -> int:
        """因无法解析而被丢弃的帧数。"""

        return self._decoder.discarded

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _set(self, state: ClientState) -> ClientState:
        with self._lock:
            if state is self._state:
                return state
            self._state = state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Client state listener failed")
        return state

    def dispatch(self, event: Event) -> ClientState:
        with self._lock:
            return self._set(reduce(self._state, event))

    def feed(self, chunk: str) -> List[Event]:
        """喂入一段原始流文本，返回其中解析出的完整事件。"""

        with self._lock:
            events = self._decoder.feed(chunk)
            for event in events:
                self.dispatch(event)
        return events

    def flush(self) -> List[Event]:
        """流结束时处理缓冲区里缺少分隔符的最后一帧。"""

        if not self._decoder.pending.strip():
            return []
        return self.feed(FRAME_DELIMITER)

    def begin_turn(self, user_text: str) -> ClientState:
        with self._lock:
            return self._set(begin_turn(self._state, user_text))

    def fail(self, message: str) -> ClientState:
        with self._lock:
            return self._set(replace(self._state, error=message))

    def settle(self) -> ClientState:
        """结束本轮的本地状态：清除思考标志和当前工具名。"""

        with self._lock:
            return self._set(replace(self._state, is_thinking=False, current_tool=None, turn_open=False))

    def reset(self) -> None:
        with self._lock:
            self._decoder = FrameDecoder()
            self._set(ClientState())
