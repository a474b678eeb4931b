"""HTTP surface: liveness, reply intake and session status.

Routes:
    GET  /               plaintext liveness string
    POST /reply          reply through the default session
    POST /reply/{label}  reply through a named session
    GET  /sessions       lifecycle state per session label
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger

from warelay.constants import LIVENESS_TEXT
from warelay.errors import DispatchError, ValidationError

if TYPE_CHECKING:
    from warelay.app import Application
    from warelay.relay.reply import ReplyDispatcher


async def _read_payload(request: Request) -> Any:
    """Return the parsed JSON body, or the raw text when it is not JSON."""
    body = await request.body()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return body.decode("utf-8", errors="replace")


async def _dispatch(dispatcher: ReplyDispatcher, request: Request) -> JSONResponse:
    payload = await _read_payload(request)
    try:
        result = await dispatcher.handle_reply(payload)
    except ValidationError as e:
        logger.warning(f"Rejected reply payload: {e}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid reply request", "detail": str(e)},
        )
    except DispatchError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e), "detail": e.detail},
        )
    return JSONResponse(content=result)


def create_app(application: Application, *, start_sessions: bool = True) -> FastAPI:
    """Build the FastAPI app around an Application.

    Args:
        application:    Wired components (sessions, dispatchers).
        start_sessions: Initialize sessions on startup and stop them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_sessions:
            application.start_sessions_in_background()
        yield
        if start_sessions:
            await application.stop()

    app = FastAPI(title="WhatsApp Relay", version="0.1.0", lifespan=lifespan)

    @app.get("/", response_class=PlainTextResponse)
    async def liveness() -> str:
        return LIVENESS_TEXT

    @app.get("/sessions")
    async def sessions() -> dict[str, str]:
        return application.sessions.states()

    @app.post("/reply")
    async def reply(request: Request) -> JSONResponse:
        dispatcher = application.default_dispatcher
        if dispatcher is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="No session configured",
            )
        return await _dispatch(dispatcher, request)

    @app.post("/reply/{label}")
    async def reply_for_session(label: str, request: Request) -> JSONResponse:
        dispatcher = application.dispatchers.get(label)
        if dispatcher is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session '{label}'",
            )
        return await _dispatch(dispatcher, request)

    return app
