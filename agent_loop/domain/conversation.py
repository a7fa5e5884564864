from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, TYPE_CHECKING
import threading

from .models import ChatMessage

if TYPE_CHECKING:
    from agent_loop.tools.definitions import ToolCall


class LoopStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    INVOKING = "invoking"
    RESPONDING = "responding"
    ERROR = "error"
    DONE = "done"


TERMINAL_STATUSES = frozenset({LoopStatus.ERROR, LoopStatus.DONE})


class Conversation:
    """一个会话内按顺序追加的消息列表。

    第一条消息始终是 system 提示（framing），reset 时截断回它。
    消息只追加、不重排。
    """

    def __init__(self, system_prompt: str):
        self._framing = ChatMessage(role="system", content=system_prompt)
        self._messages: List[ChatMessage] = [self._framing]

    @property
    def framing(self) -> ChatMessage:
        return self._framing

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def truncate_to_framing(self) -> None:
        self._messages = [self._framing]

    def __len__(self) -> int:
        return len(self._messages)

    def unanswered_invocations(self) -> List[ToolCall]:
        """最近一条带 tool_calls 的 assistant 消息中还没有 tool 结果的调用。"""

        for idx in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[idx]
            if msg.role == "assistant":
                answered = {m.tool_call_id for m in self._messages[idx + 1:] if m.role == "tool"}
                return [call for call in (msg.tool_calls or []) if call.id not in answered]
            if msg.role != "tool":
                return []
        return []

    def check_links(self) -> List[str]:
        """检查 tool 消息与最近一条 assistant 工具调用之间的关联关系。

        返回违反约束的描述列表，为空表示：每条 tool 消息的 tool_call_id
        都唯一对应最近一条带 tool_calls 的 assistant 消息中的某个调用，
        且顺序与调用顺序一致、没有重复。
        """

        problems: List[str] = []
        pending: List[str] = []
        seen: set = set()
        for idx, msg in enumerate(self._messages):
            if msg.role == "assistant":
                pending = [call.id for call in (msg.tool_calls or [])]
                seen = set()
                if len(set(pending)) != len(pending):
                    problems.append(f"#{idx}: duplicate invocation ids")
            elif msg.role == "tool":
                if msg.tool_call_id in seen:
                    problems.append(f"#{idx}: duplicate tool result for {msg.tool_call_id}")
                elif not pending or msg.tool_call_id != pending[0]:
                    problems.append(f"#{idx}: tool result {msg.tool_call_id} out of order or unlinked")
                else:
                    pending.pop(0)
                seen.add(msg.tool_call_id)
            else:
                pending = []
                seen = set()
        return problems


@dataclass
class LoopState:
    max_iterations: int
    status: LoopStatus = LoopStatus.IDLE
    iteration: int = 0

    def begin_turn(self) -> None:
        self.iteration = 0
        self.status = LoopStatus.THINKING

    def advance(self) -> int:
        self.iteration += 1
        return self.iteration

    @property
    def exhausted(self) -> bool:
        return self.iteration >= self.max_iterations

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """会话：独占一个 Conversation 和一个 LoopState。"""

    id: str
    conversation: Conversation
    loop: LoopState
    mode: str = "cli"
    created_at: datetime = field(default_factory=_utcnow)
    last_active: datetime = field(default_factory=_utcnow)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    turns: int = 0

    def touch(self) -> None:
        self.last_active = _utcnow()

    def reset(self) -> None:
        self.conversation.truncate_to_framing()
        self.loop.status = LoopStatus.IDLE
        self.loop.iteration = 0
        self.touch()

    @property
    def last_message(self) -> Optional[ChatMessage]:
        msgs = self.conversation.messages
        return msgs[-1] if msgs else None
