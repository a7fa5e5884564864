"""有界事件通道与取消信号。

推理循环在工作线程里把事件写入 EventChannel，HTTP 层在另一侧迭代读取。
通道容量有限：消费者太慢导致积压超过上限时，通道直接关闭并取消本轮，
而不是无限占用内存。
"""

from __future__ import annotations

import queue
import threading
from typing import Iterator, Optional

from agent_loop.infrastructure.logging.logger import logger
from .events import Event, EventKind


class CancelToken:
    """轮次级取消信号，推理循环在每次迭代和每次工具调用前检查。"""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class EventChannel:
    def __init__(self, maxsize: int, cancel: Optional[CancelToken] = None, poll_interval: float = 0.5):
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self._cancel = cancel
        self._poll_interval = poll_interval
        self._closed = threading.Event()
        self.overflowed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __call__(self, event: Event) -> None:
        self.put(event)

    def put(self, event: Event) -> None:
        if self.closed:
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.overflowed = True
            self.dropped += 1
            logger.warning(
                "Event channel overflow, closing",
                extra={"extra": {"maxsize": self._queue.maxsize, "kind": event.kind.value}},
            )
            self.close()
            if self._cancel is not None:
                self._cancel.cancel("backpressure")

    def close(self) -> None:
        self._closed.set()

    def __iter__(self) -> Iterator[Event]:
        """按顺序产出事件，直到收到 done、通道溢出或被关闭且已取空。"""

        while True:
            if self.overflowed:
                return
            try:
                event = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                if self.closed:
                    return
                continue
            yield event
            if event.kind is EventKind.DONE:
                self.close()
                return
