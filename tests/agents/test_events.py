"""Tests for the event bus"""

from unittest.mock import Mock

from riyaan.agents.events import AgentState, EventBus


class TestEventBus:
    """Test EventBus"""

    def test_emit_in_registration_order(self):
        bus = EventBus()
        seen = []
        bus.on("response", lambda delta: seen.append(("a", delta)))
        bus.on("response", lambda delta: seen.append(("b", delta)))

        bus.emit("response", "hi")

        assert seen == [("a", "hi"), ("b", "hi")]

    def test_off(self):
        bus = EventBus()
        handler = Mock()
        bus.on("close", handler)
        bus.off("close", handler)
        bus.off("never-registered", handler)

        bus.emit("close")

        handler.assert_not_called()
        assert bus.listener_count("close") == 0

    def test_same_handler_registered_once(self):
        bus = EventBus()
        handler = Mock()
        bus.on("state_change", handler)
        bus.on("state_change", handler)

        bus.emit("state_change", AgentState.IDLE)

        handler.assert_called_once_with(AgentState.IDLE)

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        after = Mock()
        bus.on("error", Mock(side_effect=RuntimeError("boom")))
        bus.on("error", after)

        bus.emit("error", "x")

        after.assert_called_once_with("x")

    def test_clear(self):
        bus = EventBus()
        bus.on("response", Mock())
        bus.clear()
        assert bus.listener_count("response") == 0

    def test_state_values(self):
        assert AgentState.PROCESSING == "processing"
        assert AgentState("closed") is AgentState.CLOSED
