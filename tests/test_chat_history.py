"""Tests for chat history pagination and live-message merging."""
import asyncio
import json
from typing import Dict, List, Optional

import pytest

from justjio.chat.api import ApiError
from justjio.chat.history import (
    FETCH_FAILED_NOTICE,
    ChatHistory,
    merge_messages,
)
from justjio.realtime.channels import ChannelRegistry, create_message_in_chat
from justjio.realtime.dispatch import MessageRouter
from justjio.rooms.schemas import Message, MessagesPage

from conftest import message_data, wait_for

ROOM_ID = "42"


def msg(message_id: int, minute: int = 0, seq: Optional[int] = None) -> Message:
    return Message.model_validate(message_data(message_id, minute, ROOM_ID, seq))


class FakeApi:
    """Serves canned pages and records every request."""

    def __init__(self, pages: Optional[Dict[int, MessagesPage]] = None):
        self.pages = pages or {}
        self.requests: List[int] = []
        self.sent: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def fetch_room_messages(self, room_id: str, page: int) -> MessagesPage:
        self.requests.append(page)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return self.pages[page]

    async def send_message(self, room_id: str, content: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(content)


def two_page_api() -> FakeApi:
    """Four messages, newest first, two per page."""
    return FakeApi({
        1: MessagesPage(messages=[msg(4, 4, seq=4), msg(3, 3, seq=3)], page=1, pageCount=2),
        2: MessagesPage(messages=[msg(2, 2, seq=2), msg(1, 1, seq=1)], page=2, pageCount=2),
    })


class TestMergeMessages:
    def test_dedupes_by_id_and_sorts_by_sent_at(self):
        merged = merge_messages([msg(2, 2)], [msg(2, 2), msg(1, 1)])
        assert [m.id for m in merged] == [1, 2]

    def test_incoming_copy_wins(self):
        edited = msg(1, 1).model_copy(update={"content": "edited"})
        merged = merge_messages([msg(1, 1)], [edited])
        assert merged[0].content == "edited"


class TestLoading:
    @pytest.mark.asyncio
    async def test_initial_load_orders_oldest_first(self):
        history = ChatHistory(ROOM_ID, two_page_api())
        assert await history.load() is True

        assert [m.id for m in history.messages] == [3, 4]
        assert history.page == 1
        assert history.page_count == 2
        assert history.is_new_message is True

    @pytest.mark.asyncio
    async def test_fetch_more_prepends_older_page(self):
        history = ChatHistory(ROOM_ID, two_page_api())
        await history.load()
        assert await history.fetch_more() is True

        assert [m.id for m in history.messages] == [1, 2, 3, 4]
        assert history.page == 2
        assert history.is_new_message is False

    @pytest.mark.asyncio
    async def test_fetch_more_noop_on_last_page(self):
        """No request is made once every page is loaded."""
        api = two_page_api()
        history = ChatHistory(ROOM_ID, api)
        await history.load()
        await history.fetch_more()

        assert await history.fetch_more() is False
        assert api.requests == [1, 2]

    @pytest.mark.asyncio
    async def test_fetch_more_before_load_is_noop(self):
        api = two_page_api()
        history = ChatHistory(ROOM_ID, api)
        assert await history.fetch_more() is False
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_empty_room(self):
        api = FakeApi({1: MessagesPage(messages=[], page=1, pageCount=0)})
        history = ChatHistory(ROOM_ID, api)
        assert await history.load() is True
        assert history.messages == []
        assert await history.fetch_more() is False


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_fetch_shows_notice_and_keeps_state(self):
        notices = []
        api = two_page_api()
        history = ChatHistory(ROOM_ID, api, on_notice=notices.append)
        await history.load()

        api.fail_with = ApiError("boom", status_code=500)
        assert await history.fetch_more() is False

        assert notices == [FETCH_FAILED_NOTICE]
        assert [m.id for m in history.messages] == [3, 4]
        assert history.page == 1
        assert api.requests == [1, 2]

    @pytest.mark.asyncio
    async def test_failed_page_can_be_retried_by_scrolling(self):
        api = two_page_api()
        history = ChatHistory(ROOM_ID, api, on_notice=lambda text: None)
        await history.load()

        api.fail_with = ApiError("offline")
        await history.fetch_more()
        api.fail_with = None
        assert await history.fetch_more() is True
        assert history.page == 2

    @pytest.mark.asyncio
    async def test_send_failure_notices(self):
        notices = []
        api = FakeApi()
        history = ChatHistory(ROOM_ID, api, on_notice=notices.append)

        for status in (400, 404, 500, None):
            api.fail_with = ApiError("nope", status_code=status)
            assert await history.send("hello") is False

        assert notices == [
            "Invalid message",
            "Room / User not found",
            "Failed to send message",
            "Failed to send message",
        ]

    @pytest.mark.asyncio
    async def test_send_success(self):
        api = FakeApi()
        history = ChatHistory(ROOM_ID, api)
        assert await history.send("hello") is True
        assert api.sent == ["hello"]


class TestLiveMessages:
    @pytest.mark.asyncio
    async def test_live_duplicate_merges_with_history(self):
        """A live message later returned by history appears once."""
        api = FakeApi({1: MessagesPage(messages=[msg(2, 2), msg(1, 1)], page=1, pageCount=1)})
        history = ChatHistory(ROOM_ID, api)

        history.on_live_message(message_data(2, 2, ROOM_ID))
        await history.load()

        assert [m.id for m in history.messages] == [1, 2]

    @pytest.mark.asyncio
    async def test_live_message_appended_and_flagged(self):
        api = two_page_api()
        history = ChatHistory(ROOM_ID, api)
        await history.fetch_more()  # noop, nothing loaded
        await history.load()
        await history.fetch_more()
        assert history.is_new_message is False

        history.on_live_message(message_data(5, 5, ROOM_ID, seq=5))

        assert history.messages[-1].id == 5
        assert history.is_new_message is True

    def test_live_duplicate_of_present_message_ignored(self):
        history = ChatHistory(ROOM_ID, FakeApi())
        history.on_live_message(message_data(1, 1, ROOM_ID))
        history.on_live_message(message_data(1, 1, ROOM_ID))
        assert len(history.messages) == 1

    def test_malformed_live_message_ignored(self):
        history = ChatHistory(ROOM_ID, FakeApi())
        history.on_live_message({"roomId": ROOM_ID, "content": "no id"})
        assert history.messages == []

    @pytest.mark.asyncio
    async def test_sequence_gap_triggers_backfill(self):
        api = FakeApi({1: MessagesPage(messages=[msg(2, 2, seq=2), msg(1, 1, seq=1)], page=1, pageCount=1)})
        history = ChatHistory(ROOM_ID, api)
        await history.load()

        # seq 3 was missed while reconnecting
        api.pages[1] = MessagesPage(
            messages=[msg(4, 4, seq=4), msg(3, 3, seq=3), msg(2, 2, seq=2)], page=1, pageCount=1
        )
        history.on_live_message(message_data(4, 4, ROOM_ID, seq=4))

        await wait_for(lambda: len(history.messages) == 4)
        assert [m.id for m in history.messages] == [1, 2, 3, 4]
        assert api.requests == [1, 1]
        assert history.page == 1

    @pytest.mark.asyncio
    async def test_failed_backfill_is_logged(self, caplog):
        api = FakeApi({1: MessagesPage(messages=[msg(1, 1, seq=1)], page=1, pageCount=1)})
        history = ChatHistory(ROOM_ID, api)
        await history.load()

        api.fail_with = RuntimeError("server exploded")
        history.on_live_message(message_data(3, 3, ROOM_ID, seq=3))
        await wait_for(lambda: not history.loading)

        assert "Backfill of room 42 failed" in caplog.text
        assert [m.id for m in history.messages] == [1, 3]

    @pytest.mark.asyncio
    async def test_consecutive_seq_does_not_backfill(self):
        api = FakeApi({1: MessagesPage(messages=[msg(1, 1, seq=1)], page=1, pageCount=1)})
        history = ChatHistory(ROOM_ID, api)
        await history.load()

        history.on_live_message(message_data(2, 2, ROOM_ID, seq=2))
        await asyncio.sleep(0.01)
        assert api.requests == [1]


class TestScroll:
    @pytest.mark.asyncio
    async def test_reaching_top_fetches_once(self):
        api = FakeApi({
            1: MessagesPage(messages=[msg(3, 3)], page=1, pageCount=3),
            2: MessagesPage(messages=[msg(2, 2)], page=2, pageCount=3),
            3: MessagesPage(messages=[msg(1, 1)], page=3, pageCount=3),
        })
        history = ChatHistory(ROOM_ID, api)
        await history.load()

        assert await history.on_scroll(120) is False
        assert await history.on_scroll(0) is True
        # still at the top: not a new edge
        assert await history.on_scroll(0) is False
        assert api.requests == [1, 2]

        await history.on_scroll(40)
        assert await history.on_scroll(0) is True
        assert api.requests == [1, 2, 3]


class TestAttachDetach:
    @pytest.mark.asyncio
    async def test_attach_routes_room_frames(self):
        registry = ChannelRegistry()
        router = MessageRouter(registry)
        history = ChatHistory(ROOM_ID, FakeApi())
        history.attach(registry)

        router.dispatch(json.dumps({"type": "CREATE_MESSAGE", "data": message_data(1, 1, ROOM_ID)}))

        assert [m.id for m in history.messages] == [1]

    def test_detach_releases_subscription(self):
        registry = ChannelRegistry()
        history = ChatHistory(ROOM_ID, FakeApi())
        history.attach(registry)
        history.detach()
        assert create_message_in_chat(ROOM_ID) not in registry

    def test_detach_keeps_newer_view_subscription(self):
        registry = ChannelRegistry()
        old_view = ChatHistory(ROOM_ID, FakeApi())
        new_view = ChatHistory(ROOM_ID, FakeApi())
        old_view.attach(registry)
        new_view.attach(registry)

        old_view.detach()

        assert registry.get(create_message_in_chat(ROOM_ID)) == new_view.on_live_message

    @pytest.mark.asyncio
    async def test_detach_cancels_in_flight_fetch(self):
        api = two_page_api()
        api.gate = asyncio.Event()
        history = ChatHistory(ROOM_ID, api)

        load = asyncio.create_task(history.load())
        await wait_for(lambda: api.requests == [1])
        assert history.loading

        history.detach()
        api.gate.set()

        assert await load is False
        assert history.messages == []
        assert not history.loading
