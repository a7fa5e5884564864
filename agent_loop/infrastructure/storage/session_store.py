"""内存会话存储。

会话 id → Session（独占的 Conversation + LoopState）。
生命周期：第一次提交时创建，reset 时截断回 system 提示，
空闲超过 idle_seconds 或数量超过 max_sessions（按最近使用淘汰）时移除。
"""

from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import threading

from agent_loop.config.settings import settings
from agent_loop.domain.conversation import Conversation, LoopState, Session
from agent_loop.domain.exceptions import ValidationError
from agent_loop.infrastructure.logging.logger import logger
from agent_loop.prompts import load_system_prompt


def default_max_iterations(mode: str) -> int:
    """流式界面模式的上限比命令行模式小。"""

    return settings.stream_max_iterations if mode == "generative-ui" else settings.max_iterations


class SessionStore:
    def __init__(
        self,
        mode: str = "cli",
        *,
        system_prompt: Optional[str] = None,
        max_iterations: Optional[int] = None,
        max_sessions: Optional[int] = None,
        idle_seconds: Optional[float] = None,
    ):
        self.mode = mode
        self._system_prompt = system_prompt if system_prompt is not None else load_system_prompt(mode)
        self._max_iterations = max_iterations or default_max_iterations(mode)
        self._max_sessions = max_sessions or settings.max_sessions
        self._idle = timedelta(seconds=idle_seconds if idle_seconds is not None else settings.session_idle_seconds)
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    def _new_session(self, session_id: str) -> Session:
        return Session(
            id=session_id,
            conversation=Conversation(self._system_prompt),
            loop=LoopState(max_iterations=self._max_iterations),
            mode=self.mode,
        )

    def get_or_create(self, session_id: str) -> Session:
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError(code="INVALID_SESSION_ID", message="sessionId must be a non-empty string")
        with self._lock:
            self._evict_idle_locked(datetime.now(timezone.utc))
            session = self._sessions.get(session_id)
            if session is not None:
                session.touch()
                self._sessions.move_to_end(session_id)
                return session
            session = self._new_session(session_id)
            self._sessions[session_id] = session
            while len(self._sessions) > self._max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("Session evicted", extra={"extra": {"session_id": evicted, "reason": "capacity"}})
            logger.info("Session created", extra={"extra": {"session_id": session_id, "mode": self.mode}})
            return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def reset(self, session_id: str) -> Optional[Session]:
        """截断会话回 system 提示，会话 id 保持不变；不存在时返回 None。"""

        session = self.get(session_id)
        if session is None:
            return None
        # 等待正在进行的一轮结束
        with session.lock:
            session.reset()
        logger.info("Session reset", extra={"extra": {"session_id": session_id}})
        return session

    def drop(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        with self._lock:
            return self._evict_idle_locked(now or datetime.now(timezone.utc))

    def _evict_idle_locked(self, now: datetime) -> List[str]:
        expired = [
            sid
            for sid, session in self._sessions.items()
            if now - session.last_active > self._idle and not session.lock.locked()
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Idle sessions evicted", extra={"extra": {"count": len(expired), "session_ids": expired}})
        return expired

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"sessions": len(self._sessions), "max_sessions": self._max_sessions}

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
