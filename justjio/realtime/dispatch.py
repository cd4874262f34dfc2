"""Inbound frame demultiplexing.

Every frame on the streaming connection is a JSON envelope::

    {"type": "CREATE_MESSAGE", "data": {"roomId": "42", ...}}

The router looks for a room-scoped subscriber first
(``RoomChannel(type, data.roomId)``) and falls back to the type-only
subscriber (``GlobalChannel(type)``). Exactly one of them runs per frame:
an open chat view for a room suppresses the global handler for that
room's events. Frames nobody subscribed to are dropped silently.
"""
import logging
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .channels import ChannelCallback, ChannelRegistry, GlobalChannel, RoomChannel

logger = logging.getLogger(__name__)


class Envelope(BaseModel):
    """Tagged wire structure pushed by the server."""
    type: str = Field(..., description="Event type, e.g. CREATE_MESSAGE")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")


class MessageRouter:
    """Dispatches decoded envelopes to the callbacks in a ChannelRegistry."""

    def __init__(self, registry: ChannelRegistry) -> None:
        self.registry = registry

    def resolve(self, envelope: Envelope) -> Optional[ChannelCallback]:
        """Pick the callback that should receive ``envelope``, if any."""
        room_id = envelope.data.get("roomId")
        if room_id is not None:
            callback = self.registry.get(RoomChannel(envelope.type, str(room_id)))
            if callback is not None:
                return callback
        return self.registry.get(GlobalChannel(envelope.type))

    def decode(self, frame: Union[str, bytes]) -> Optional[Envelope]:
        """Parse one frame, or None if it is not a well-formed envelope."""
        try:
            return Envelope.model_validate_json(frame)
        except ValidationError as e:
            logger.debug(f"[Router] Dropping malformed frame: {e.error_count()} error(s)")
            return None

    def deliver(self, envelope: Envelope) -> bool:
        """Invoke the subscriber for an already decoded envelope."""
        callback = self.resolve(envelope)
        if callback is None:
            logger.debug(
                f"[Router] No subscriber for {envelope.type} "
                f"(roomId={envelope.data.get('roomId')}), dropping"
            )
            return False

        try:
            callback(envelope.data)
        except Exception:
            logger.exception(f"[Router] Subscriber for {envelope.type} raised")
        return True

    def dispatch(self, frame: Union[str, bytes]) -> bool:
        """Decode one frame and invoke its subscriber.

        Returns:
            True if a callback was invoked, False if the frame was dropped.
        """
        envelope = self.decode(frame)
        if envelope is None:
            return False
        return self.deliver(envelope)
