"""流式客户端：把服务端的事件流喂给 ClientStateStore。"""

from typing import Optional

import httpx

from agent_loop.domain.exceptions import ApiError, BusinessError
from agent_loop.infrastructure.logging.logger import logger
from .client_state import ClientState, ClientStateStore


class StreamClient:
    """POST /api/chat 并逐块消费 SSE 响应。

    可以注入现成的 httpx.Client（例如测试里的 Starlette TestClient），
    否则每次 send 使用一个临时客户端。
    """

    def __init__(
        self,
        base_url: str,
        store: ClientStateStore,
        *,
        timeout: Optional[float] = 60.0,
        client: Optional[httpx.Client] = None,
        path: str = "/api/chat",
    ):
        self.base_url = base_url.rstrip("/")
        self.store = store
        self._timeout = timeout
        self._client = client
        self._path = path

    def send(self, message: str, session_id: str = "default") -> ClientState:
        self.store.begin_turn(message)
        client = self._client or httpx.Client(timeout=self._timeout, trust_env=False)
        try:
            with client.stream(
                "POST",
                f"{self.base_url}{self._path}",
                json={"message": message, "sessionId": session_id},
                headers={"Accept": "text/event-stream"},
            ) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    raise ApiError(code="API_ERROR", message=f"HTTP {resp.status_code}", http_status=resp.status_code)
                for chunk in resp.iter_text():
                    self.store.feed(chunk)
                self.store.flush()
        except httpx.HTTPError as exc:
            logger.warning("Stream request failed", extra={"extra": {"error": str(exc)}})
            self.store.fail(str(exc) or type(exc).__name__)
        except BusinessError as exc:
            logger.warning("Stream request rejected", extra={"extra": exc.to_payload()["error"]})
            self.store.fail(exc.message)
        finally:
            if self._client is None:
                client.close()
            self.store.settle()
        return self.store.state
