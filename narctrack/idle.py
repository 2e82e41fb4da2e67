"""Watches user idleness and system sleep, reporting changes as idle states."""

from __future__ import annotations

import queue
import threading
from typing import Callable, Optional

from narctrack.model import ChangeReason, IdleState

IdleSource = Callable[[], float]
SleepWatcher = Callable[[Callable[[bool], None]], None]

_watcher_lock = threading.Lock()
_started_watchers: set = set()
_sleep_handler: Optional[Callable[[bool], None]] = None


def _dispatch_sleep_state(awake: bool) -> None:
    if _sleep_handler is not None:
        _sleep_handler(awake)


class Monitor:
    """Polls an idle-time source and turns changes into :class:`IdleState` events.

    Without an idle source the user is always active; without a sleep watcher
    the system is always awake.
    """

    def __init__(
        self,
        idle_timeout: float,
        idle_seconds: IdleSource | None = None,
        sleep_watcher: SleepWatcher | None = None,
        poll_interval: float = 10.0,
    ) -> None:
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.states: "queue.Queue[IdleState]" = queue.Queue()
        self._idle_seconds = idle_seconds or (lambda: 0.0)
        self._sleep_watcher = sleep_watcher
        self._lock = threading.Lock()
        self._system_awake = True
        self._user_active = True

    def sleep_state_changed(self, awake: bool) -> None:
        """Record a system sleep or wake and report it."""
        with self._lock:
            self._system_awake = awake
        reason = ChangeReason.SYSTEM_AWAKE if awake else ChangeReason.SYSTEM_SLEEP
        self.states.put(IdleState(awake, reason))

    def poll_once(self) -> IdleState | None:
        """Check the idle source once; report and return a change, if any."""
        with self._lock:
            if not self._system_awake:
                return None
        was_active = self._user_active
        self._user_active = self._idle_seconds() < self.idle_timeout
        if was_active == self._user_active:
            return None
        reason = ChangeReason.USER_ACTIVE if self._user_active else ChangeReason.USER_IDLE
        state = IdleState(self._user_active, reason)
        self.states.put(state)
        return state

    def start(self, stop_event: threading.Event) -> "queue.Queue[IdleState]":
        """Start watching in background threads and return the queue of states."""
        global _sleep_handler
        with _watcher_lock:
            _sleep_handler = self.sleep_state_changed
            watcher = self._sleep_watcher
            if watcher is not None and watcher not in _started_watchers:
                _started_watchers.add(watcher)
                threading.Thread(
                    target=watcher, args=(_dispatch_sleep_state,), daemon=True
                ).start()

        def poll_loop() -> None:
            while not stop_event.wait(self.poll_interval):
                self.poll_once()

        threading.Thread(target=poll_loop, daemon=True).start()
        return self.states