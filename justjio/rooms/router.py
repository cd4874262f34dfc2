"""Rooms REST API router.

Endpoints (all require ``Authorization: Bearer <token>``):
    POST /rooms                       - Create a room, caller becomes host
    POST /rooms/{room_id}/join        - Join a room as attendee
    GET  /rooms/{room_id}/messages    - Paginated message history
    POST /rooms/{room_id}/messages    - Send a message

Creating a message pushes {type: "CREATE_MESSAGE", data: <message>} to
every attendee's open streaming connections.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from justjio.auth.service import TokenClaims, get_current_user
from justjio.realtime.channels import CREATE_MESSAGE
from justjio.realtime.hub import hub
from justjio.responses import ApiException, handle_success

from .schemas import CreateMessageRequest, CreateRoomRequest, MessagesPage
from .service import NotRoomMemberError, RoomNotFoundError, room_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def _attendees_or_raise(room_id: str, user: TokenClaims) -> List[str]:
    """Translate membership errors into error envelopes."""
    try:
        return room_service.ensure_member(room_id, user.user_id)
    except RoomNotFoundError:
        raise ApiException(404, "Room not found")
    except NotRoomMemberError:
        raise ApiException(401, "User is not in room")


@router.post("/rooms")
async def create_room(
    request: CreateRoomRequest,
    user: TokenClaims = Depends(get_current_user),
) -> JSONResponse:
    room = room_service.create_room(request.name, user.user_id)
    return handle_success("Created room successfully", room.model_dump(mode="json"))


@router.post("/rooms/{room_id}/join")
async def join_room(
    room_id: str,
    user: TokenClaims = Depends(get_current_user),
) -> JSONResponse:
    try:
        room = room_service.join_room(room_id, user.user_id)
    except RoomNotFoundError:
        raise ApiException(404, "Room not found")
    return handle_success("Joined room successfully", room.model_dump(mode="json"))


@router.get("/rooms/{room_id}/messages")
async def get_messages(
    room_id: str,
    page: int = Query(1, ge=1, description="1-based page number"),
    asc: bool = Query(True, description="Oldest first when true, newest first when false"),
    user: TokenClaims = Depends(get_current_user),
) -> JSONResponse:
    """Get one page of a room's message history.

    Example:
        GET /rooms/abc123/messages?page=1&asc=false
    """
    _attendees_or_raise(room_id, user)
    messages, page_count = room_service.get_messages(room_id, page, asc)
    body = MessagesPage(messages=messages, page=page, pageCount=page_count)
    return handle_success("Retrieved messages successfully", body.model_dump(mode="json"))


@router.post("/rooms/{room_id}/messages")
async def create_message(
    room_id: str,
    request: CreateMessageRequest,
    user: TokenClaims = Depends(get_current_user),
) -> JSONResponse:
    """Store a message and push it to the room's attendees."""
    attendee_ids = _attendees_or_raise(room_id, user)
    message = room_service.save_message(room_id, user.user_id, user.username, request.content)

    delivered = await hub.send_to_users(
        attendee_ids,
        {"type": CREATE_MESSAGE, "data": message.model_dump(mode="json")},
    )
    logger.info(f"[Rooms] Pushed message {message.id} of room {room_id} to {delivered} connection(s)")

    return handle_success("Message saved successfully", message.model_dump(mode="json"))
