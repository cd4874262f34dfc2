"""Room and chat message models.

Field names are camelCase because these models are the wire format shared
by the REST endpoints, the streaming envelopes and the client.
"""
from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field


class Message(BaseModel):
    """One chat message in a room.

    Attributes:
        id: Server-assigned identifier, unique per room.
        roomId: Room this message belongs to.
        senderId: User ID of the sender.
        senderName: Sender's username at the time of sending.
        content: Message text.
        sentAt: Server timestamp; the display ordering key.
        seq: Per-room sequence number (1, 2, 3, ...) used to detect gaps
            in the live stream. Optional so older payloads still parse.
    """
    id: int = Field(..., description="Message ID")
    roomId: str = Field(..., description="Room ID this message belongs to")
    senderId: str = Field(..., description="User ID of the sender")
    senderName: str = Field(default="", description="Username of the sender")
    content: str = Field(..., description="Message content")
    sentAt: datetime = Field(..., description="Time the server stored the message")
    seq: Optional[int] = Field(default=None, description="Per-room sequence number")


class MessagesPage(BaseModel):
    """One page of room history."""
    messages: List[Message] = Field(default_factory=list)
    page: int = 1
    pageCount: int = 0


class CreateMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Message content")


class CreateRoomRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Room (event) name")


class Room(BaseModel):
    """A room (event) and who is attending it."""
    id: str
    name: str
    hostId: str
    createdAt: datetime
    attendeeIds: Set[str] = Field(default_factory=set)
