"""流式事件协议与客户端状态投影。

- events: Event / EventKind / EventEmitter 与帧编解码。
- channel: 有界事件通道与取消信号。
- client_state: 纯函数 reduce() 与 ClientStateStore。
- client: 通过 HTTP 消费事件流的 StreamClient。
"""

from agent_loop.streaming.channel import CancelToken, EventChannel
from agent_loop.streaming.client_state import ClientState, ClientStateStore, begin_turn, reduce
from agent_loop.streaming.events import Event, EventEmitter, EventKind, FrameDecoder, decode_frame, encode_frame

__all__ = [
    "CancelToken",
    "EventChannel",
    "ClientState",
    "ClientStateStore",
    "begin_turn",
    "reduce",
    "Event",
    "EventEmitter",
    "EventKind",
    "FrameDecoder",
    "decode_frame",
    "encode_frame",
]
