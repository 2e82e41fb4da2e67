import queue
import threading

from narctrack.idle import Monitor
from narctrack.model import ChangeReason, IdleState


class Idle:
    def __init__(self, seconds=0.0):
        self.seconds = seconds
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.seconds


def test_no_change_while_active():
    monitor = Monitor(300, Idle(5))
    assert monitor.poll_once() is None
    assert monitor.states.empty()


def test_idle_then_active():
    idle = Idle(300)
    monitor = Monitor(300, idle)
    assert monitor.poll_once() == IdleState(False, ChangeReason.USER_IDLE)
    assert monitor.poll_once() is None
    idle.seconds = 1
    assert monitor.poll_once() == IdleState(True, ChangeReason.USER_ACTIVE)
    assert [monitor.states.get_nowait(), monitor.states.get_nowait()] == [
        IdleState(False, ChangeReason.USER_IDLE),
        IdleState(True, ChangeReason.USER_ACTIVE),
    ]


def test_default_source_never_idle():
    monitor = Monitor(1)
    assert monitor.poll_once() is None


def test_sleep_suspends_polling():
    idle = Idle(1000)
    monitor = Monitor(300, idle)
    monitor.sleep_state_changed(False)
    assert monitor.states.get_nowait() == IdleState(False, ChangeReason.SYSTEM_SLEEP)
    assert monitor.poll_once() is None
    assert idle.calls == 0
    monitor.sleep_state_changed(True)
    assert monitor.states.get_nowait() == IdleState(True, ChangeReason.SYSTEM_AWAKE)
    assert monitor.poll_once() == IdleState(False, ChangeReason.USER_IDLE)


def test_start_polls_in_background():
    monitor = Monitor(10, Idle(50), poll_interval=0.01)
    stop = threading.Event()
    states = monitor.start(stop)
    try:
        assert states.get(timeout=5) == IdleState(False, ChangeReason.USER_IDLE)
    finally:
        stop.set()


def test_sleep_watcher_started_once_and_dispatches_to_latest_monitor():
    calls = []
    ready = threading.Event()

    def watcher(callback):
        calls.append(callback)
        ready.set()

    stop = threading.Event()
    first = Monitor(10, Idle(), watcher, poll_interval=60)
    second = Monitor(10, Idle(), watcher, poll_interval=60)
    try:
        first.start(stop)
        assert ready.wait(5)
        second.start(stop)
        assert len(calls) == 1
        calls[0](False)
        assert second.states.get(timeout=1) == IdleState(False, ChangeReason.SYSTEM_SLEEP)
        try:
            first.states.get_nowait()
            delivered_to_first = True
        except queue.Empty:
            delivered_to_first = False
        assert delivered_to_first is False
    finally:
        stop.set()