"""Activity storage in an append-only CSV file."""

from __future__ import annotations

import csv
import io
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence, TextIO

from narctrack.model import Activity, ChangeReason, Period

_RFC3339_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})")


def _format_rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_rfc3339(text: str) -> datetime:
    match = _RFC3339_RE.fullmatch(text)
    if match is None:
        raise ValueError(f'cannot parse "{text}" as an RFC 3339 time')
    fraction, zone = match.groups()
    base = text[:19]
    micro = int((fraction or ".0")[1:].ljust(6, "0")[:6])
    zone = "+00:00" if zone == "Z" else zone
    return datetime.fromisoformat(base + zone).replace(microsecond=micro)


def _aware(moment: datetime | None) -> datetime | None:
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass
class ActivityRow:
    """One line of the store: an activity name and one of its periods."""

    name: str
    period: Period


def parse_activity_row(record: Sequence[str]) -> ActivityRow:
    """Parse a CSV record of name, start, end and end reason."""
    if len(record) < 4:
        raise ValueError(f"activity row needs 4 fields, got {len(record)}")
    name, start, end, reason = record[:4]
    return ActivityRow(
        name, Period(_parse_rfc3339(start), _parse_rfc3339(end), ChangeReason.from_text(reason))
    )


class CsvStore:
    """Stores periods as CSV rows in a readable, writable, seekable text handle."""

    def __init__(self, handle: TextIO) -> None:
        self._handle = handle
        self._seq = 0
        self._activities: dict[int, str] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "CsvStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def save_activity(self, name: str) -> int:
        """Register ``name`` and return a new key for it."""
        with self._lock:
            self._seq += 1
            self._activities[self._seq] = name
            return self._seq

    def save_period(
        self,
        key: int,
        start: datetime,
        end: datetime,
        start_reason: ChangeReason,
        end_reason: ChangeReason,
    ) -> None:
        """Append a finished period of the activity with ``key``."""
        with self._lock:
            csv.writer(self._handle, lineterminator="\n").writerow(
                [self._activities.get(key, ""), _format_rfc3339(start),
                 _format_rfc3339(end), str(end_reason)]
            )
            self._handle.flush()

    def get_activities(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> list[Activity]:
        """Read back activities, grouping consecutive rows with the same name.

        Rows starting before ``start`` or after ``end`` are skipped; naive bounds are UTC.
        """
        start, end = _aware(start), _aware(end)
        with self._lock:
            self._handle.seek(0, io.SEEK_SET)
            try:
                records = list(csv.reader(self._handle))
            finally:
                self._handle.seek(0, io.SEEK_END)

        for number, record in enumerate(records, start=1):
            if len(record) != len(records[0]):
                raise ValueError(f"record on line {number}: wrong number of fields")

        result: list[Activity] = []
        last = Activity(name="")
        for row in map(parse_activity_row, records):
            row_start = row.period.start
            if (start is not None and row_start < start) or (end is not None and row_start > end):
                continue
            if row.name != last.name:
                if last.name:
                    result.append(last)
                last = Activity(name=row.name)
            last.periods.append(row.period)
        if last.name:
            result.append(last)
        return result

    def close(self) -> None:
        """Close the underlying handle."""
        with self._lock:
            self._handle.close()