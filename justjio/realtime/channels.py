"""Channel registry for inbound realtime events.

A channel key names what a subscriber wants to hear about. There are two
forms:

    GlobalChannel("CREATE_MESSAGE")           -> wire key "CREATE_MESSAGE"
    RoomChannel("CREATE_MESSAGE", "42")       -> wire key "CREATE_MESSAGE_42"

At most one callback is registered per key. Subscribing again to the same
key replaces the earlier callback. ``subscribe`` returns a Subscription
handle; releasing the handle only removes the entry if it still belongs to
that handle, so a view that goes away cannot remove a newer subscriber's
callback.

Thread Safety:
    Mutations and lookups are plain dict operations on the event loop
    thread. Not safe for use from multiple threads.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CREATE_MESSAGE = "CREATE_MESSAGE"

ChannelCallback = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class GlobalChannel:
    """Every event of a type, whichever room it belongs to."""
    event_type: str

    def __str__(self) -> str:
        return self.event_type


@dataclass(frozen=True)
class RoomChannel:
    """Events of a type for a single room."""
    event_type: str
    room_id: str

    def __str__(self) -> str:
        return f"{self.event_type}_{self.room_id}"


ChannelKey = Union[GlobalChannel, RoomChannel]


def create_message_in_chat(room_id: str) -> RoomChannel:
    """Channel for new chat messages in one room (open chat view)."""
    return RoomChannel(CREATE_MESSAGE, str(room_id))


def create_message() -> GlobalChannel:
    """Channel for new chat messages in any room (unread badges)."""
    return GlobalChannel(CREATE_MESSAGE)


class Subscription:
    """Handle returned by ChannelRegistry.subscribe()."""

    def __init__(self, registry: "ChannelRegistry", key: ChannelKey, callback: ChannelCallback):
        self.registry = registry
        self.key = key
        self.callback = callback

    @property
    def active(self) -> bool:
        """True while this handle still owns its key."""
        return self.registry._channels.get(self.key) is self

    def release(self) -> bool:
        """Remove the callback if it has not been replaced.

        Returns:
            True if this handle owned the key and was removed.
        """
        return self.registry._release(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Subscription(key={str(self.key)!r}, active={self.active})"


class ChannelRegistry:
    """In-memory mapping of channel key to a single callback."""

    def __init__(self) -> None:
        self._channels: Dict[ChannelKey, Subscription] = {}

    def subscribe(self, key: ChannelKey, callback: ChannelCallback) -> Subscription:
        """Install or replace the callback for ``key``."""
        previous = self._channels.get(key)
        subscription = Subscription(self, key, callback)
        self._channels[key] = subscription
        if previous is not None:
            logger.debug(f"[Channels] Replaced subscriber on {key}")
        else:
            logger.debug(f"[Channels] Subscribed to {key}")
        return subscription

    def unsubscribe(self, key: ChannelKey) -> None:
        """Remove whatever callback is registered for ``key`` (no-op if absent)."""
        if self._channels.pop(key, None) is not None:
            logger.debug(f"[Channels] Unsubscribed from {key}")

    def get(self, key: ChannelKey) -> Optional[ChannelCallback]:
        subscription = self._channels.get(key)
        return subscription.callback if subscription is not None else None

    def keys(self) -> List[ChannelKey]:
        return list(self._channels)

    def _release(self, subscription: Subscription) -> bool:
        if self._channels.get(subscription.key) is not subscription:
            return False
        del self._channels[subscription.key]
        logger.debug(f"[Channels] Released subscription on {subscription.key}")
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._channels

    def __len__(self) -> int:
        return len(self._channels)
