"""Mock session endpoints."""
import asyncio
import base64
import binascii
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException

from mockserver.api.deps import get_mock_server
from mockserver.exceptions import (
    BadMockError,
    MockServerError,
    PoolError,
    ScriptNotFoundError,
    ScriptParseError,
    SessionNotFoundError,
    WrongAddressError,
)
from mockserver.models import SessionInfo, SessionRequest
from mockserver.scripts.store import NamedScript

logger = structlog.get_logger()
router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _source_from_request(request: SessionRequest):
    provided = [
        value for value in (request.script, request.text, request.messages)
        if value is not None
    ]
    if len(provided) != 1:
        raise HTTPException(
            status_code=400,
            detail="Exactly one of 'script', 'text' or 'messages' is required",
        )

    if request.script is not None:
        return NamedScript(request.script)
    if request.text is not None:
        return request.text

    messages = []
    for index, message in enumerate(request.messages):
        try:
            payload = base64.b64decode(message.payload_b64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(
                status_code=400,
                detail=f"Message {index} payload is not valid base64",
            )
        messages.append((message.direction, payload))
    return messages


def _get_session(server, session_id: str):
    try:
        return server.get_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("", response_model=SessionInfo)
async def create_session(request: SessionRequest, server=Depends(get_mock_server)):
    source = _source_from_request(request)
    try:
        session = await server.start_session(source, request.address, request.timeout_ms)
    except ScriptNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except ScriptParseError as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "message": exc.message,
                "errors": [{"kind": e.kind.value, "line": e.line} for e in exc.errors],
            },
        )
    except (BadMockError, WrongAddressError) as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except PoolError as exc:
        logger.error("failed_to_create_session", error=exc.message)
        raise HTTPException(status_code=503, detail=exc.message)

    logger.info("session_created_via_api", session_id=session.id, port=session.port)
    return session.info()


@router.get("", response_model=List[SessionInfo])
async def list_sessions(server=Depends(get_mock_server)):
    return [session.info() for session in server.list_sessions()]


@router.delete("")
async def forget_finished_sessions(server=Depends(get_mock_server)):
    return {"removed": server.forget_finished()}


@router.get("/{session_id}", response_model=SessionInfo)
async def get_session(session_id: str, server=Depends(get_mock_server)):
    return _get_session(server, session_id).info()


@router.get("/{session_id}/result", response_model=SessionInfo)
async def wait_for_session(
    session_id: str,
    timeout_ms: Optional[int] = None,
    server=Depends(get_mock_server),
):
    """Block until the session finishes; the outcome is in the returned info."""
    session = _get_session(server, session_id)
    timeout = timeout_ms / 1000 if timeout_ms is not None else None
    try:
        await asyncio.wait_for(session.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=408, detail="Session still running")
    except MockServerError:
        # Failure details are reported through the session info
        pass
    return session.info()


@router.delete("/{session_id}", response_model=SessionInfo)
async def stop_session(session_id: str, server=Depends(get_mock_server)):
    try:
        session = await server.stop_session(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.info()
