"""Tests for the synchronous event bus."""

import pytest

from mission_engine.state.event_bus import EventBus, EventType, GameEvent, event_key


class TestSubscription:
    """on / once / off / unsubscribe."""

    def test_handlers_run_in_subscription_order(self, bus):
        """Handlers are invoked in the order they subscribed."""
        calls = []
        bus.on(EventType.MESSAGE_READ, lambda e: calls.append("a"))
        bus.on(EventType.MESSAGE_READ, lambda e: calls.append("b"))
        bus.on(EventType.MESSAGE_READ, lambda e: calls.append("c"))

        bus.emit(EventType.MESSAGE_READ, message_id="m1")

        assert calls == ["a", "b", "c"]

    def test_enum_and_string_names_are_the_same_event(self, bus):
        """EventType members and raw names share subscriptions."""
        seen = []
        bus.on("message-read", seen.append)

        bus.emit(EventType.MESSAGE_READ, message_id="m1")

        assert len(seen) == 1
        assert seen[0].type == "message-read"

    def test_unsubscribe_removes_only_that_subscription(self, bus):
        """The returned callable removes exactly one subscription."""
        calls = []
        handler = lambda e: calls.append(1)
        first = bus.on("tick", handler)
        bus.on("tick", handler)

        first()
        bus.emit("tick")

        assert calls == [1]

    def test_unsubscribe_twice_is_harmless(self, bus):
        """Calling an unsubscribe twice does nothing the second time."""
        unsubscribe = bus.on("tick", lambda e: None)
        unsubscribe()
        unsubscribe()
        assert bus.listener_count("tick") == 0

    def test_once_fires_a_single_time(self, bus):
        """once() handlers are dropped after the first delivery."""
        calls = []
        bus.once("tick", lambda e: calls.append(e.get("n")))

        bus.emit("tick", n=1)
        bus.emit("tick", n=2)

        assert calls == [1]

    def test_off_removes_all_subscriptions_of_handler(self, bus):
        """off() removes every subscription of the handler."""
        calls = []
        handler = lambda e: calls.append(1)
        bus.on("tick", handler)
        bus.on("tick", handler)

        bus.off("tick", handler)
        bus.emit("tick")

        assert calls == []

    def test_unsubscribe_during_dispatch_does_not_skip_current_emit(self, bus):
        """A handler removed mid-dispatch by an earlier handler is not called."""
        calls = []
        unsub_b = None

        def a(event):
            calls.append("a")
            unsub_b()

        bus.on("tick", a)
        unsub_b = bus.on("tick", lambda e: calls.append("b"))

        bus.emit("tick")
        bus.emit("tick")

        assert calls == ["a", "a"]

    def test_subscribe_during_dispatch_waits_for_next_emit(self, bus):
        """Handlers added while dispatching see only later events."""
        calls = []

        def adder(event):
            bus.on("tick", lambda e: calls.append("late"))

        bus.once("tick", adder)
        bus.emit("tick")
        assert calls == []

        bus.emit("tick")
        assert calls == ["late"]


class TestEmit:
    """Payloads, errors and history."""

    def test_payload_and_keywords_merge(self, bus):
        """Dict payload and keyword data are merged, keywords winning."""
        seen = []
        bus.on("x", seen.append)

        event = bus.emit("x", {"a": 1, "b": 2}, b=3)

        assert event.data == {"a": 1, "b": 3}
        assert seen[0] is event

    def test_handler_errors_propagate(self, bus):
        """A raising handler surfaces from emit()."""
        def boom(event):
            raise RuntimeError("boom")

        bus.on("x", boom)
        with pytest.raises(RuntimeError):
            bus.emit("x")

    def test_history_is_bounded(self):
        """History keeps only the newest events."""
        bus = EventBus(history_limit=3)
        for i in range(5):
            bus.emit("x", n=i)

        history = bus.get_history()
        assert [e.get("n") for e in history] == [2, 3, 4]

    def test_history_filter_by_type(self, bus):
        """get_history can filter by event name."""
        bus.emit("a")
        bus.emit("b")
        bus.emit(EventType.MISSION_COMPLETE, mission_id="m")

        assert len(bus.get_history(EventType.MISSION_COMPLETE)) == 1

    def test_clear_drops_listeners_and_history(self, bus):
        """clear() removes everything."""
        bus.on("x", lambda e: None)
        bus.emit("x")

        bus.clear()

        assert bus.subscription_counts() == {}
        assert bus.get_history() == []


class TestGameEvent:
    def test_get_with_default(self):
        """GameEvent.get falls back to the default."""
        event = GameEvent(type="x", data={"a": 1})
        assert event.get("a") == 1
        assert event.get("missing", "d") == "d"

    def test_event_key_normalizes(self):
        """event_key turns members into their string value."""
        assert event_key(EventType.OBJECTIVE_COMPLETE) == "objective-complete"
        assert event_key("custom-event") == "custom-event"
