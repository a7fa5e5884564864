"""HTTP API for the agent service.

Endpoints:
  POST /api/chat                 - SSE stream of event frames, body {message, sessionId}
  POST /api/chat/sync            - Run one turn, return the final text as JSON
  POST /api/reset                - Truncate a session back to its system prompt
  GET  /api/history/{session_id} - Conversation messages of a session
  GET  /api/health               - Provider / model / tool info
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional, Tuple

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from agent_loop.api.service import AgentService, get_default_service
from agent_loop.domain.exceptions import BusinessError
from agent_loop.infrastructure.logging.logger import log_event
from agent_loop.streaming.events import Event, encode_frame

DEFAULT_SESSION_ID = "default"


def _error(code: str, message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": {"code": code, "message": message}}, status_code=status_code)


async def _read_turn(request: Request) -> Tuple[Optional[Dict[str, Any]], Optional[JSONResponse]]:
    try:
        body = await request.json()
    except Exception:
        return None, _error("INVALID_JSON", "Invalid JSON body", 400)
    if not isinstance(body, dict):
        return None, _error("INVALID_JSON", "Request body must be an object", 400)
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return None, _error("MISSING_MESSAGE", "Missing required field: message", 400)
    session_id = body.get("sessionId") or DEFAULT_SESSION_ID
    return {"message": message, "session_id": str(session_id)}, None


def create_app(service: Optional[AgentService] = None) -> Starlette:
    """Create the Starlette ASGI app; the default service runs in generative-ui mode."""

    svc = service or get_default_service()

    async def chat(request: Request):
        """POST /api/chat - SSE streaming chat."""
        turn, err = await _read_turn(request)
        if err is not None:
            return err
        try:
            events = svc.submit_stream(turn["session_id"], turn["message"])
        except BusinessError as exc:
            return JSONResponse(exc.to_payload(), status_code=exc.http_status)

        def frames(stream: Iterator[Event]) -> Iterator[str]:
            try:
                for event in stream:
                    yield encode_frame(event)
            finally:
                stream.close()

        return StreamingResponse(
            frames(events),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    async def chat_sync(request: Request) -> JSONResponse:
        """POST /api/chat/sync - Send a message, get the final answer."""
        turn, err = await _read_turn(request)
        if err is not None:
            return err
        try:
            text = await run_in_threadpool(svc.submit, turn["session_id"], turn["message"])
        except BusinessError as exc:
            return JSONResponse(exc.to_payload(), status_code=exc.http_status)
        except Exception as exc:
            log_event(logging.ERROR, "Chat error", {"session_id": turn["session_id"]}, exc_info=True, error=str(exc))
            return _error("INTERNAL_ERROR", str(exc), 500)
        session = svc.store.get(turn["session_id"])
        return JSONResponse(
            {
                "response": text,
                "sessionId": turn["session_id"],
                "status": session.loop.status.value if session else None,
                "iterations": session.loop.iteration if session else 0,
            }
        )

    async def reset(request: Request) -> JSONResponse:
        """POST /api/reset - Reset a session."""
        try:
            body = await request.json()
        except Exception:
            body = {}
        session_id = (body or {}).get("sessionId") or DEFAULT_SESSION_ID
        try:
            result = await run_in_threadpool(svc.reset, str(session_id))
        except BusinessError as exc:
            return JSONResponse(exc.to_payload(), status_code=exc.http_status)
        return JSONResponse({"status": "reset", **result})

    async def history(request: Request) -> JSONResponse:
        """GET /api/history/{session_id} - Conversation messages."""
        session_id = request.path_params["session_id"]
        return JSONResponse({"sessionId": session_id, "messages": svc.history(session_id)})

    async def health(request: Request) -> JSONResponse:
        """GET /api/health - Service info."""
        return JSONResponse({"status": "ok", **svc.info()})

    routes = [
        Route("/api/chat", chat, methods=["POST"]),
        Route("/api/chat/sync", chat_sync, methods=["POST"]),
        Route("/api/reset", reset, methods=["POST"]),
        Route("/api/history/{session_id}", history),
        Route("/api/health", health),
    ]
    return Starlette(routes=routes)
