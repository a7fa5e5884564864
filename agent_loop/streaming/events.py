"""流式事件与帧编解码。

推理循环的每一步都会映射为一个 Event，按产生顺序推送给远端客户端。
线上格式为 SSE 风格的文本帧：

    data: {"kind": "...", "data": {...}, "timestamp": 1700000000000}\\n\\n

每一轮以且只以一个 done 事件结束，done 总是最后一个事件。
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from agent_loop.domain.exceptions import MalformedEventFrame
from agent_loop.infrastructure.logging.logger import logger

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data:"


class EventKind(str, Enum):
    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    UI_ACTION = "ui_action"
    TEXT = "text"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    data: Any
    timestamp: int

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "data": self.data, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, payload: dict) -> "Event":
        kind = payload.get("kind", payload.get("type"))
        timestamp = payload.get("timestamp", 0)
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise ValueError("timestamp must be a number")
        return cls(kind=EventKind(kind), data=payload.get("data"), timestamp=int(timestamp))


EventSink = Callable[[Event], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventEmitter:
    """把推理循环的生命周期转换为有序事件并交给 sink。

    sink 为 None 时（基础模式）事件只计数不投递。
    done 只会发出一次，之后的事件会被丢弃。
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self._sink = sink
        self._done = False
        self.emitted = 0

    @property
    def finished(self) -> bool:
        return self._done

    def emit(self, kind: EventKind, data: Any = None) -> Optional[Event]:
        if self._done:
            logger.warning("Event after done dropped", extra={"extra": {"kind": kind.value}})
            return None
        event = Event(kind=kind, data=data, timestamp=_now_ms())
        if kind is EventKind.DONE:
            self._done = True
        self.emitted += 1
        if self._sink is not None:
            self._sink(event)
        return event

    def done(self, **data: Any) -> Optional[Event]:
        if self._done:
            return None
        return self.emit(EventKind.DONE, data or None)


def encode_frame(event: Event) -> str:
    return f"{DATA_PREFIX} {json.dumps(event.to_dict(), ensure_ascii=False, default=str)}{FRAME_DELIMITER}"


def decode_frame(frame: str) -> Event:
    """解析单个帧（不含分隔符），失败时抛出 MalformedEventFrame。"""

    text = frame.strip()
    if text.startswith(DATA_PREFIX):
        text = text[len(DATA_PREFIX):].strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedEventFrame(f"frame is not JSON: {exc.msg}", frame) from exc
    if not isinstance(payload, dict):
        raise MalformedEventFrame("frame payload must be an object", frame)
    try:
        return Event.from_dict(payload)
    except (ValueError, TypeError) as exc:
        raise MalformedEventFrame(f"invalid event: {exc}", frame) from exc


class FrameDecoder:
    """增量帧解码器：缓存跨多次读取的不完整帧，坏帧直接丢弃。"""

    def __init__(self) -> None:
        self._buffer = ""
        self.discarded = 0

    def feed(self, chunk: str) -> List[Event]:
        text = (self._buffer + chunk).replace("\r\n", "\n")
        # 末尾单独的 \r 可能是被拆开的 \r\n，留到下一次再判断
        held = ""
        if text.endswith("\r"):
            text, held = text[:-1], "\r"
        parts = text.split(FRAME_DELIMITER)
        # 最后一段可能还不完整，留到下一次
        self._buffer = parts.pop() + held
        events: List[Event] = []
        for part in parts:
            if not part.strip() or part.lstrip().startswith(":"):
                continue
            try:
                events.append(decode_frame(part))
            except MalformedEventFrame as exc:
                self.discarded += 1
                logger.warning("Malformed event frame discarded", extra={"extra": exc.to_payload()["error"]})
        return events

    @property
    def pending(self) -> str:
        return self._buffer
