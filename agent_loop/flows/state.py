"""State definition for the reasoning-loop graph."""

from __future__ import annotations

from typing import Any, Dict, Optional, TypedDict

from agent_loop.agents.gateway import Decision
from agent_loop.domain.conversation import Session
from agent_loop.domain.exceptions import BusinessError
from agent_loop.streaming.channel import CancelToken
from agent_loop.streaming.events import EventEmitter


class TurnState(TypedDict, total=False):
    """State shared across graph nodes for one user turn.

    The session (conversation + loop state) is mutated in place; the
    remaining keys only carry the current decision and the turn outcome.
    """

    session: Session
    emitter: EventEmitter
    cancel: CancelToken
    log_ctx: Dict[str, Any]
    decision: Optional[Decision]
    failure: Optional[BusinessError]
    final_text: Optional[str]
