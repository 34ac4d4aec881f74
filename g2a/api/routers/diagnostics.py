from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ...services.workspace import SessionWorkspace, WorkspaceRegistry
from ..auth import jwt_required
from ..deps import get_registry, get_workspace
from ..events import session_events
from ..sse import sse_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["diagnostics"])


@router.get("/api/diagnostics/{sessionId}", dependencies=[Depends(jwt_required)])
async def diagnostics_snapshot(workspace: SessionWorkspace = Depends(get_workspace)) -> dict:
    return dict(workspace.snapshot())


@router.get("/api/sessions/{sessionId}/events", dependencies=[Depends(jwt_required)])
async def stream_session_events(sessionId: str, workspace: SessionWorkspace = Depends(get_workspace)):
    return sse_response(session_events, workspace.session_id)


@router.websocket("/ws/sessions/{sessionId}")
async def session_events_socket(
    websocket: WebSocket,
    sessionId: str,
    registry: WorkspaceRegistry = Depends(get_registry),
) -> None:
    await websocket.accept()
    # opening the workspace attaches the broker to its bus
    registry.get(sessionId)
    queue = session_events.subscribe(sessionId)
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except WebSocketDisconnect:
        logger.debug("Event socket for %s closed", sessionId)
    finally:
        session_events.unsubscribe(sessionId, queue)
