from axechart.deferred import DeferredAction


def test_fires_once_when_due() -> None:
    calls = []
    action = DeferredAction()
    action.schedule("restart-1", 100, lambda: calls.append("restart-1"))

    assert action.pending
    assert action.due_ms == 100
    assert not action.poll(99)
    assert action.poll(100)
    assert not action.poll(200)
    assert calls == ["restart-1"]
    assert not action.pending


def test_new_schedule_supersedes_old() -> None:
    calls = []
    action = DeferredAction()
    action.schedule("a", 100, lambda: calls.append("a"))
    action.schedule("b", 150, lambda: calls.append("b"))

    assert action.token == "b"
    assert not action.poll(120)
    assert action.poll(150)
    assert calls == ["b"]


def test_cancel() -> None:
    calls = []
    action = DeferredAction()
    action.schedule("a", 100, lambda: calls.append("a"))

    assert action.cancel() is True
    assert action.cancel() is False
    assert not action.poll(1_000)
    assert calls == []
    assert action.token is None
