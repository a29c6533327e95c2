"""Tests for the event emitter."""

from prdashboard.services.events import EventEmitter


def test_emit_delivers_in_subscription_order():
    emitter: EventEmitter[int] = EventEmitter()
    received: list[tuple[str, int]] = []
    emitter.subscribe(lambda value: received.append(("a", value)))
    emitter.subscribe(lambda value: received.append(("b", value)))

    emitter.emit(1)

    assert received == [("a", 1), ("b", 1)]
    assert len(emitter) == 2


def test_failing_listener_does_not_block_others(caplog):
    emitter: EventEmitter[str] = EventEmitter("test")
    received: list[str] = []

    def broken(value: str) -> None:
        raise RuntimeError("boom")

    emitter.subscribe(broken)
    emitter.subscribe(received.append)

    emitter.emit("hello")

    assert received == ["hello"]
    assert "Listener for test failed" in caplog.text


def test_unsubscribe_is_idempotent():
    emitter: EventEmitter[int] = EventEmitter()
    received: list[int] = []
    unsubscribe = emitter.subscribe(received.append)
    unsubscribe()
    unsubscribe()
    emitter.emit(1)
    assert received == []
