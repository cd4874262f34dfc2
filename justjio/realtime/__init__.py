"""Realtime event delivery.

Client side:
    - ChannelRegistry / Subscription: who listens to which channel key.
    - MessageRouter: decodes inbound envelopes and picks the subscriber.
    - ConnectionManager: the single streaming connection and its reconnects.

Server side:
    - PushHub: live sockets per user.
    - router: the ``/ws`` streaming endpoint.
"""
from .channels import (
    CREATE_MESSAGE,
    ChannelKey,
    ChannelRegistry,
    GlobalChannel,
    RoomChannel,
    Subscription,
    create_message,
    create_message_in_chat,
)
from .connection import ConnectionManager, ConnectionState, build_stream_url
from .dispatch import Envelope, MessageRouter

__all__ = [
    "CREATE_MESSAGE",
    "ChannelKey",
    "ChannelRegistry",
    "GlobalChannel",
    "RoomChannel",
    "Subscription",
    "create_message",
    "create_message_in_chat",
    "ConnectionManager",
    "ConnectionState",
    "build_stream_url",
    "Envelope",
    "MessageRouter",
]
