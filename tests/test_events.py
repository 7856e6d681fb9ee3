"""Tests for the event dispatcher."""

from sideorm import Dispatcher


def test_listeners_receive_payload():
    dispatcher = Dispatcher()
    seen = []
    dispatcher.listen("saved", lambda entity: seen.append(entity))

    dispatcher.dispatch("saved", "ada")

    assert seen == ["ada"]


def test_tuple_payload_is_spread():
    dispatcher = Dispatcher()
    dispatcher.listen("moved", lambda source, target: f"{source}->{target}")

    assert dispatcher.dispatch("moved", ("a", "b")) == ["a->b"]


def test_priority_then_registration_order():
    dispatcher = Dispatcher()
    order = []
    dispatcher.listen("e", lambda: order.append("low"), priority=-1)
    dispatcher.listen("e", lambda: order.append("first"))
    dispatcher.listen("e", lambda: order.append("high"), priority=10)
    dispatcher.listen("e", lambda: order.append("second"))

    dispatcher.dispatch("e")

    assert order == ["high", "first", "second", "low"]


def test_false_stops_propagation():
    dispatcher = Dispatcher()
    calls = []
    dispatcher.listen("e", lambda: calls.append(1))
    dispatcher.listen("e", lambda: False)
    dispatcher.listen("e", lambda: calls.append(3))

    assert dispatcher.dispatch("e") == [None]
    assert calls == [1]


def test_until_returns_first_response():
    dispatcher = Dispatcher()
    dispatcher.listen("e", lambda: None)
    dispatcher.listen("e", lambda: "answer")
    dispatcher.listen("e", lambda: "ignored")

    assert dispatcher.until("e") == "answer"
    assert dispatcher.until("nothing") is None


def test_listen_to_several_events():
    dispatcher = Dispatcher()
    dispatcher.listen(["a", "b"], lambda: "hit")

    assert dispatcher.has_listeners("a")
    assert dispatcher.has_listeners("b")
    assert not dispatcher.has_listeners("c")


def test_forget_and_flush():
    dispatcher = Dispatcher()
    dispatcher.listen("a", lambda: None)
    dispatcher.listen("b", lambda: None)

    dispatcher.forget("a")
    assert not dispatcher.has_listeners("a")
    assert dispatcher.has_listeners("b")

    dispatcher.flush()
    assert dispatcher.get_listeners("b") == []
