"""In-memory rooms and message history.

Stores rooms, their attendees and each room's append-only message list.
Messages get a per-room id and sequence number at save time, so the
history endpoint and the live stream describe the same message with the
same identity.

History is paginated newest-first or oldest-first in fixed-size pages:

    page_count = ceil(message_count / page_size)

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .schemas import Message, Room

logger = logging.getLogger(__name__)

# Default page size for message history pagination
MESSAGE_PAGE_SIZE = 10


class RoomNotFoundError(Exception):
    """Raised when a room id does not exist."""


class NotRoomMemberError(Exception):
    """Raised when a user acts on a room they do not attend."""


class RoomService:
    """Owns rooms, attendee lists and message history."""

    def __init__(self, page_size: int = MESSAGE_PAGE_SIZE) -> None:
        self.page_size = page_size

        # room_id -> Room
        self.rooms: Dict[str, Room] = {}

        # room_id -> list of messages (append-only, in send order)
        self.message_history: Dict[str, List[Message]] = {}

    # =========================================================================
    # Rooms
    # =========================================================================

    def create_room(self, name: str, host_id: str) -> Room:
        room = Room(
            id=str(uuid.uuid4()),
            name=name,
            hostId=host_id,
            createdAt=datetime.now(timezone.utc),
            attendeeIds={host_id},
        )
        self.rooms[room.id] = room
        self.message_history[room.id] = []
        logger.info(f"[Rooms] User {host_id} created room {room.id} ({name})")
        return room

    def get_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def join_room(self, room_id: str, user_id: str) -> Room:
        room = self.get_room(room_id)
        if user_id not in room.attendeeIds:
            room.attendeeIds.add(user_id)
            logger.info(f"[Rooms] User {user_id} joined room {room_id}")
        return room

    def get_attendee_ids(self, room_id: str) -> List[str]:
        return sorted(self.get_room(room_id).attendeeIds)

    def ensure_member(self, room_id: str, user_id: str) -> List[str]:
        """Check membership and return the room's attendee ids.

        Raises:
            RoomNotFoundError: Unknown room.
            NotRoomMemberError: ``user_id`` does not attend the room.
        """
        attendee_ids = self.get_attendee_ids(room_id)
        if user_id not in attendee_ids:
            raise NotRoomMemberError(f"User {user_id} is not in room {room_id}")
        return attendee_ids

    # =========================================================================
    # Messages
    # =========================================================================

    def save_message(
        self,
        room_id: str,
        sender_id: str,
        sender_name: str,
        content: str,
        sent_at: Optional[datetime] = None,
    ) -> Message:
        """Append a message to the room's history, assigning id and seq."""
        self.get_room(room_id)
        history = self.message_history.setdefault(room_id, [])
        next_seq = len(history) + 1
        message = Message(
            id=next_seq,
            roomId=room_id,
            senderId=sender_id,
            senderName=sender_name,
            content=content,
            sentAt=sent_at or datetime.now(timezone.utc),
            seq=next_seq,
        )
        history.append(message)
        logger.info(f"[Rooms] Saved message {message.id} to room {room_id}")
        return message

    def count_pages(self, room_id: str) -> int:
        count = len(self.message_history.get(room_id, []))
        return int(math.ceil(count / self.page_size))

    def get_messages(
        self, room_id: str, page: int = 1, asc: bool = True
    ) -> Tuple[List[Message], int]:
        """Get one page of room history.

        Args:
            room_id: The room ID.
            page: 1-based page number; values below 1 are treated as 1.
            asc: Oldest first when True, newest first when False.

        Returns:
            Tuple of (messages, page_count). Pages past the end are empty.
        """
        self.get_room(room_id)
        page = max(page, 1)
        ordered = sorted(
            self.message_history.get(room_id, []),
            key=lambda m: (m.sentAt, m.id),
            reverse=not asc,
        )
        start = (page - 1) * self.page_size
        return ordered[start:start + self.page_size], self.count_pages(room_id)

    def clear(self) -> None:
        self.rooms.clear()
        self.message_history.clear()


# Global service instance shared by the rooms router
room_service = RoomService()
