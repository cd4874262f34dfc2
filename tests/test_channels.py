"""Tests for the channel registry and subscription handles."""
from justjio.realtime.channels import (
    CREATE_MESSAGE,
    ChannelRegistry,
    GlobalChannel,
    RoomChannel,
    create_message,
    create_message_in_chat,
)


class TestChannelKeys:
    """Wire form and equality of channel keys."""

    def test_room_channel_wire_key(self):
        assert str(RoomChannel("CREATE_MESSAGE", "42")) == "CREATE_MESSAGE_42"

    def test_global_channel_wire_key(self):
        assert str(GlobalChannel("CREATE_MESSAGE")) == "CREATE_MESSAGE"

    def test_helpers_build_create_message_keys(self):
        assert create_message_in_chat("7") == RoomChannel(CREATE_MESSAGE, "7")
        assert create_message() == GlobalChannel(CREATE_MESSAGE)

    def test_room_id_is_normalised_to_string(self):
        assert create_message_in_chat(7) == RoomChannel(CREATE_MESSAGE, "7")

    def test_global_and_room_keys_never_collide(self):
        registry = ChannelRegistry()
        registry.subscribe(GlobalChannel("CREATE_MESSAGE_42"), lambda data: None)
        assert registry.get(RoomChannel("CREATE_MESSAGE", "42")) is None


class TestChannelRegistry:
    """subscribe / unsubscribe / get."""

    def test_subscribe_then_get(self):
        registry = ChannelRegistry()
        callback = lambda data: None
        registry.subscribe(create_message_in_chat("1"), callback)
        assert registry.get(create_message_in_chat("1")) is callback
        assert create_message_in_chat("1") in registry
        assert len(registry) == 1

    def test_later_subscribe_replaces_earlier(self):
        """Only the most recent callback stays registered for a key."""
        registry = ChannelRegistry()
        first = lambda data: "first"
        second = lambda data: "second"
        registry.subscribe(create_message(), first)
        registry.subscribe(create_message(), second)
        assert registry.get(create_message()) is second
        assert len(registry) == 1

    def test_unsubscribe_removes_callback(self):
        registry = ChannelRegistry()
        registry.subscribe(create_message(), lambda data: None)
        registry.unsubscribe(create_message())
        assert registry.get(create_message()) is None
        assert len(registry) == 0

    def test_unsubscribe_unknown_key_is_noop(self):
        registry = ChannelRegistry()
        registry.unsubscribe(create_message_in_chat("missing"))
        assert len(registry) == 0

    def test_keys_lists_registered_channels(self):
        registry = ChannelRegistry()
        registry.subscribe(create_message(), lambda data: None)
        registry.subscribe(create_message_in_chat("3"), lambda data: None)
        assert set(registry.keys()) == {create_message(), create_message_in_chat("3")}


class TestSubscriptionHandle:
    """Releasing a handle only removes its own callback."""

    def test_release_removes_own_callback(self):
        registry = ChannelRegistry()
        handle = registry.subscribe(create_message(), lambda data: None)
        assert handle.active
        assert handle.release() is True
        assert not handle.active
        assert registry.get(create_message()) is None

    def test_release_after_replacement_keeps_newer_subscriber(self):
        registry = ChannelRegistry()
        old = registry.subscribe(create_message_in_chat("9"), lambda data: "old")
        newer_callback = lambda data: "new"
        new = registry.subscribe(create_message_in_chat("9"), newer_callback)

        assert old.release() is False
        assert new.active
        assert registry.get(create_message_in_chat("9")) is newer_callback

    def test_release_twice_is_harmless(self):
        registry = ChannelRegistry()
        handle = registry.subscribe(create_message(), lambda data: None)
        handle.release()
        assert handle.release() is False

    def test_context_manager_releases_on_exit(self):
        registry = ChannelRegistry()
        with registry.subscribe(create_message(), lambda data: None) as handle:
            assert handle.active
        assert registry.get(create_message()) is None
