"""Chat history for one room: paginated fetches merged with live messages.

The list a chat view renders comes from two sources:

    - REST history, fetched newest-first one page at a time. Page 1 is loaded
      when the view opens; older pages are loaded when the user scrolls to
      the top of the list.
    - Live CREATE_MESSAGE events from the streaming connection, appended as
      they arrive.

Both sources can describe the same message (a message sent while a page
fetch is in flight shows up in both), so every page is merged by message id
and the result sorted by ``sentAt``. Live messages carry a per-room ``seq``;
a jump in ``seq`` means frames were missed (e.g. during a reconnect) and
triggers a background re-fetch of the newest page.

Failures never touch the list: a failed fetch or send only produces a user
notice through ``on_notice``.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from justjio.realtime.channels import Subscription, create_message_in_chat
from justjio.rooms.schemas import Message, MessagesPage

from .api import ApiError, JustJioApi

logger = logging.getLogger(__name__)

FETCH_FAILED_NOTICE = "Failed to fetch messages"
SEND_FAILED_NOTICE = "Failed to send message"
SEND_FAILURE_NOTICES = {
    400: "Invalid message",
    404: "Room / User not found",
}


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    """Union two message lists, dropping duplicate ids, oldest first.

    When an id appears in both, the incoming copy is kept.
    """
    by_id: Dict[int, Message] = {}
    for message in existing:
        by_id[message.id] = message
    for message in incoming:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: (m.sentAt, m.id))


class ChatHistory:
    """Authoritative message list for one open chat view."""

    def __init__(
        self,
        room_id: str,
        api: JustJioApi,
        *,
        on_notice: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.room_id = str(room_id)
        self.api = api
        self.on_notice = on_notice

        self.messages: List[Message] = []
        # pages loaded so far (0 = nothing yet) and the server's total
        self.page = 0
        self.page_count: Optional[int] = None
        # True when the view should scroll to the newest message
        self.is_new_message = False

        self._last_seq: Optional[int] = None
        self._at_top = False
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self._detached = False

    @property
    def loading(self) -> bool:
        return bool(self._tasks)

    # =========================================================================
    # View lifecycle
    # =========================================================================

    def attach(self, connection) -> Subscription:
        """Start receiving live messages for this room.

        Args:
            connection: A ConnectionManager (or ChannelRegistry).
        """
        self._detached = False
        channel = create_message_in_chat(self.room_id)
        self._subscription = connection.subscribe(channel, self.on_live_message)
        logger.info(f"[Chat] Subscribed to channel {channel}")
        return self._subscription

    def detach(self) -> None:
        """Stop live updates and abandon in-flight fetches."""
        self._detached = True
        if self._subscription is not None:
            logger.info(f"[Chat] Unsubscribing from channel {self._subscription.key}")
            self._subscription.release()
            self._subscription = None
        for task in list(self._tasks):
            task.cancel()

    # =========================================================================
    # History
    # =========================================================================

    async def load(self) -> bool:
        """Fetch the newest page of history."""
        return await self._fetch(1)

    async def fetch_more(self) -> bool:
        """Fetch the next older page, unless every page is already loaded.

        Returns:
            True if a page was fetched and merged.
        """
        if self.page_count is None or self.page >= self.page_count:
            logger.debug(
                f"[Chat] No more messages in room {self.room_id} "
                f"(page {self.page} of {self.page_count})"
            )
            return False
        logger.info(f"[Chat] Fetching more messages (page {self.page + 1})")
        return await self._fetch(self.page + 1)

    async def on_scroll(self, scroll_top: float) -> bool:
        """Feed the list's scroll offset; loads older messages on reaching the top.

        Only the transition onto the top edge triggers a fetch.
        """
        at_top = scroll_top <= 0
        reached_top = at_top and not self._at_top
        self._at_top = at_top
        if not reached_top:
            return False
        return await self.fetch_more()

    def merge_page(self, page_number: int, page: MessagesPage, *, advance: bool = True) -> None:
        """Merge a fetched page into the list.

        Args:
            page_number: The page that was requested.
            page: The server's response.
            advance: Record ``page_number`` as the current page. Backfills of
                the newest page pass False so scroll position is kept.
        """
        self.messages = merge_messages(self.messages, page.messages)
        self.page_count = page.pageCount
        if advance:
            self.page = page_number
            self.is_new_message = page_number == 1
        self._track_seq(page.messages)

    async def _fetch(self, page_number: int, *, advance: bool = True) -> bool:
        task = asyncio.create_task(self.api.fetch_room_messages(self.room_id, page_number))
        self._tasks.add(task)
        try:
            page = await task
        except asyncio.CancelledError:
            if self._detached:
                logger.debug(f"[Chat] Dropped page {page_number} fetch of detached room {self.room_id}")
                return False
            raise
        except ApiError as e:
            logger.warning(f"[Chat] Failed to fetch page {page_number} of room {self.room_id}: {e.message}")
            self._notify(FETCH_FAILED_NOTICE)
            return False
        finally:
            self._tasks.discard(task)

        if self._detached:
            return False
        logger.debug(f"[Chat] Fetched {len(page.messages)} message(s) on page {page_number}")
        self.merge_page(page_number, page, advance=advance)
        return True

    # =========================================================================
    # Live messages
    # =========================================================================

    def on_live_message(self, data: Dict[str, Any]) -> None:
        """Subscriber callback for CREATE_MESSAGE events of this room."""
        try:
            message = Message.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[Chat] Ignoring malformed live message: {e.error_count()} error(s)")
            return

        if any(existing.id == message.id for existing in self.messages):
            logger.debug(f"[Chat] Live message {message.id} already present")
            return

        has_gap = self._track_seq([message])
        self.messages.append(message)
        self.is_new_message = True

        if has_gap:
            logger.info(f"[Chat] Missed messages before seq {message.seq} in room {self.room_id}, backfilling")
            task = asyncio.create_task(self._fetch(1, advance=False))
            self._tasks.add(task)
            task.add_done_callback(self._backfill_done)

    def _backfill_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[Chat] Backfill of room {self.room_id} failed", exc_info=error)

    def _track_seq(self, messages: Iterable[Message]) -> bool:
        """Advance the highest seen seq; True if a live gap was skipped over."""
        gap = False
        for message in messages:
            if message.seq is None:
                continue
            if self._last_seq is not None and message.seq > self._last_seq + 1:
                gap = True
            if self._last_seq is None or message.seq > self._last_seq:
                self._last_seq = message.seq
        return gap

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, content: str) -> bool:
        """Post a message; it appears in the list when the server pushes it back."""
        try:
            await self.api.send_message(self.room_id, content)
        except ApiError as e:
            logger.error(f"[Chat] Failed to send message to room {self.room_id}: {e!r}")
            self._notify(SEND_FAILURE_NOTICES.get(e.status_code, SEND_FAILED_NOTICE))
            return False
        return True

    def _notify(self, text: str) -> None:
        if self.on_notice is not None:
            self.on_notice(text)
