"""Core data types: activities, periods, duration rows and idle state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Iterable


class ChangeReason(IntEnum):
    """Why a tracked period started or ended."""

    SYSTEM_AWAKE = 1
    SYSTEM_SLEEP = 2
    USER_ACTIVE = 3
    USER_IDLE = 4
    ACTIVITY_CHANGED = 5
    EXPLICIT_STOP = 6
    DAEMON_EXIT = 7

    def __str__(self) -> str:
        return _REASON_TEXT[self]

    @classmethod
    def from_text(cls, text: str) -> "ChangeReason":
        """Parse the human-readable form produced by ``str()``."""
        try:
            return _TEXT_REASON[text]
        except KeyError:
            raise ValueError(f'unrecognized ChangeReason: "{text}"') from None


_REASON_TEXT = {
    ChangeReason.SYSTEM_AWAKE: "System Awake",
    ChangeReason.SYSTEM_SLEEP: "System Sleep",
    ChangeReason.USER_ACTIVE: "User Active",
    ChangeReason.USER_IDLE: "User Idle",
    ChangeReason.ACTIVITY_CHANGED: "Activity Changed",
    ChangeReason.EXPLICIT_STOP: "Explicit Stop",
    ChangeReason.DAEMON_EXIT: "Daemon Exit",
}
_TEXT_REASON = {text: reason for reason, text in _REASON_TEXT.items()}


@dataclass
class Period:
    """A continuous span of time spent on an activity."""

    start: datetime
    end: datetime
    end_reason: ChangeReason


@dataclass
class DurationRow:
    """Total time spent on one activity on one day."""

    date: datetime
    name: str
    duration: timedelta


@dataclass
class Activity:
    """A named activity and the periods recorded for it."""

    name: str
    periods: list[Period] = field(default_factory=list)

    def to_duration_rows(self) -> list[DurationRow]:
        """Sum period lengths per day, keyed by the day each period started."""
        totals: dict[datetime, timedelta] = {}
        for period in self.periods:
            start = period.start
            day = datetime(start.year, start.month, start.day, tzinfo=start.tzinfo)
            totals[day] = totals.get(day, timedelta()) + (period.end - period.start)
        return [
            DurationRow(date=day, name=self.name, duration=total)
            for day, total in totals.items()
        ]


@dataclass(frozen=True)
class IdleState:
    """A change in whether the user or system is active."""

    active: bool
    change_reason: ChangeReason

    def __str__(self) -> str:
        active = "true" if self.active else "false"
        return f"Active: {active}, ChangeReason: {self.change_reason}"


def activities_to_duration_rows(activities: Iterable[Activity]) -> list[DurationRow]:
    """Concatenate the per-day rows of every activity, in order."""
    return [row for activity in activities for row in activity.to_duration_rows()]