# backend/tests/unit/test_events.py
from chatflow.utils.events import EventEmitter
from chatflow.utils.metrics import flow_actions_counter


def test_listeners_receive_events_in_order():
    emitter = EventEmitter()
    received = []
    emitter.subscribe(lambda event, fields: received.append((event, fields)))

    emitter.emit("flow.initialized", identity="u1", flow_id="main")
    emitter.emit("flow.reset", identity="u1", flow_id="main", reason="completed")

    assert received == [
        ("flow.initialized", {"identity": "u1", "flow_id": "main"}),
        ("flow.reset", {"identity": "u1", "flow_id": "main", "reason": "completed"}),
    ]


def test_failing_listener_does_not_stop_others():
    emitter = EventEmitter()
    received = []

    def broken(event, fields):
        raise RuntimeError("sink down")

    emitter.subscribe(broken)
    emitter.subscribe(lambda event, fields: received.append(event))

    emitter.emit("match.cache_miss", key="oi")

    assert received == ["match.cache_miss"]


def test_unsubscribe():
    emitter = EventEmitter()
    received = []
    listener = lambda event, fields: received.append(event)  # noqa: E731
    emitter.subscribe(listener)
    emitter.unsubscribe(listener)
    emitter.unsubscribe(listener)

    emitter.emit("flow.step", step_type="menu")

    assert received == []


def test_action_events_update_metrics():
    counter = flow_actions_counter.labels(action="transfer_human")
    before = counter._value.get()

    EventEmitter().emit("flow.action", identity="u1", action="transfer_human", department_id=None)

    assert counter._value.get() == before + 1
