"""The tracking daemon: current activity state and reactions to idle changes."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import IntEnum
from typing import Protocol

from narctrack.model import Activity, ChangeReason, IdleState

log = logging.getLogger(__name__)

_POLL_TIMEOUT = 0.1


class Store(Protocol):
    """Persistence for activities and the periods spent on them."""

    def save_activity(self, name: str) -> int:
        """Register an activity and return its key."""
        ...

    def save_period(
        self,
        key: int,
        start: datetime,
        end: datetime,
        start_reason: ChangeReason,
        end_reason: ChangeReason,
    ) -> None:
        """Record a finished period of the activity with ``key``."""
        ...

    def get_activities(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[Activity]:
        """Return the recorded activities whose periods start within the range."""
        ...


class Signal(IntEnum):
    """Instructions sent from the server to the process running the daemon."""

    TERM = 0
    HUP = 1


@dataclass(frozen=True)
class SignalPacket:
    """A signal together with the activity to resume after a reload."""

    signal: Signal
    last_activity_name: str = ""
    last_activity_ignore_idle: bool = False


@dataclass(frozen=True)
class CurrentState:
    """What the daemon is tracking right now."""

    activity: str = ""
    activity_key: int = 0
    ignore_idle: bool = False
    period_start_reason: ChangeReason | None = None
    period_start: datetime | None = None

    def valid_activity(self) -> bool:
        """True when an activity is set."""
        return bool(self.activity) and self.activity_key != 0

    def valid_period(self) -> bool:
        """True when an activity is set and a period of it is running."""
        return (
            self.valid_activity()
            and self.period_start is not None
            and self.period_start_reason is not None
        )

    def should_change(self, reason: ChangeReason) -> bool:
        """Whether a state change for ``reason`` affects the running period."""
        if not self.ignore_idle:
            return True
        return reason not in (ChangeReason.USER_IDLE, ChangeReason.USER_ACTIVE)


def _now() -> datetime:
    return datetime.now().astimezone()


class Daemon:
    """Tracks the current activity and splits it into periods of activity."""

    def __init__(self, store: Store, states: "queue.Queue[IdleState]") -> None:
        self._store = store
        self._states = states
        self._current = CurrentState()
        self._lock = threading.Lock()

    def set_activity(self, name: str, ignore_idle: bool = False) -> None:
        """End any running period and start tracking ``name``."""
        with self._lock:
            if self._current.valid_period():
                self._end_period(ChangeReason.ACTIVITY_CHANGED)
            key = self._store.save_activity(name)
            self._current = CurrentState(
                activity=name,
                activity_key=key,
                ignore_idle=ignore_idle,
                period_start_reason=ChangeReason.ACTIVITY_CHANGED,
                period_start=_now(),
            )

    def stop_activity(self, reason: ChangeReason) -> None:
        """End any running period with ``reason`` and clear the activity."""
        with self._lock:
            if self._current.valid_period():
                self._end_period(reason)
            self._current = CurrentState()

    def handle_state(self, state: IdleState) -> None:
        """React to a change in user or system activity."""
        log.info("Received state change: %s", state)
        with self._lock:
            current = self._current
            if state.active:
                if current.valid_activity() and current.should_change(state.change_reason):
                    self._start_period(state.change_reason)
            elif current.valid_period() and current.should_change(state.change_reason):
                try:
                    self._end_period(state.change_reason)
                except Exception as exc:  # keep the loop alive on storage failures
                    log.error("Failed to end period: %s", exc)

    def run(self, stop_event: threading.Event) -> threading.Thread:
        """Process state changes in a background thread until ``stop_event`` is set."""

        def loop() -> None:
            while not stop_event.is_set():
                try:
                    state = self._states.get(timeout=_POLL_TIMEOUT)
                except queue.Empty:
                    continue
                self.handle_state(state)

        thread = threading.Thread(target=loop, name="narc-daemon", daemon=True)
        thread.start()
        return thread

    def status(self) -> CurrentState:
        """Return a snapshot of the current state."""
        with self._lock:
            return self._current

    def _start_period(self, reason: ChangeReason) -> None:
        self._current = replace(
            self._current, period_start=_now(), period_start_reason=reason
        )

    def _end_period(self, reason: ChangeReason) -> None:
        current = self._current
        self._store.save_period(
            current.activity_key,
            current.period_start,
            _now(),
            current.period_start_reason,
            reason,
        )
        self._current = replace(current, period_start=None, period_start_reason=None)