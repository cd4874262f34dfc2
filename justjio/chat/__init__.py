"""Chat client module.

Provides:
    - JustJioApi: REST calls for room history and sending messages.
    - ChatHistory: Per-room message list merging history pages with live events.
"""
from .api import ApiError, JustJioApi
from .history import ChatHistory, merge_messages

__all__ = [
    "ApiError",
    "JustJioApi",
    "ChatHistory",
    "merge_messages",
]
