"""Streaming endpoint.

    WebSocket /ws?token=<bearer>

Protocol:
    1. Client connects with its access token in the query string.
       → Invalid token: server sends {status: "Unauthorized", error: "..."} and closes (1008).
    2. Server pushes envelopes {type, data} for events the user should see,
       e.g. {type: "CREATE_MESSAGE", data: {roomId, id, seq, ...}}.
    3. Client-to-server frames are not part of the protocol and are ignored;
       all outbound actions go through REST.
"""
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from justjio.auth.service import AuthError, decode_access_token

from .hub import hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# 1008 = Policy Violation
POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query("", description="Bearer token of the connecting user"),
) -> None:
    """Authenticate a streaming client and keep it registered until it leaves."""
    await websocket.accept()

    try:
        user = decode_access_token(token)
    except AuthError as e:
        logger.warning(f"[WS] Rejected connection: {e}")
        await websocket.send_json({"status": "Unauthorized", "error": str(e)})
        await websocket.close(code=POLICY_VIOLATION)
        return

    hub.register(websocket, user.user_id)
    try:
        while True:
            frame = await websocket.receive_text()
            logger.debug(f"[WS] Ignoring client frame from {user.user_id}: {frame[:80]}")
    except WebSocketDisconnect:
        logger.info(f"[WS] User {user.user_id} closed the connection")
    finally:
        hub.unregister(websocket, user.user_id)
