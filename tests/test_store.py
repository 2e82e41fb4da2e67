import io
from datetime import datetime, timedelta, timezone

import pytest

from narctrack.model import ChangeReason
from narctrack.store import CsvStore, parse_activity_row

UTC = timezone.utc


def at(day, hour=10, minute=0):
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def handle():
    return io.StringIO()


@pytest.fixture
def store(handle):
    return CsvStore(handle)


def test_keys_increase(store):
    assert store.save_activity("a") == 1
    assert store.save_activity("b") == 2


def test_written_row_format(store, handle):
    key = store.save_activity("Coding")
    assert key == 1
    store.save_period(
        key, at(2, 3, 4), at(2, 4, 4), ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE
    )
    assert handle.getvalue() == "Coding,2024-01-02T03:04:00Z,2024-01-02T04:04:00Z,User Idle\n"
    activities = store.get_activities()
    assert [a.name for a in activities] == ["Coding"]
    assert activities[0].periods[0].end_reason is ChangeReason.USER_IDLE


def test_round_trip(store):
    key = store.save_activity("Coding")
    store.save_period(
        key, at(1), at(1, 11), ChangeReason.ACTIVITY_CHANGED, ChangeReason.EXPLICIT_STOP
    )
    activities = store.get_activities()
    assert len(activities) == 1
    assert activities[0].name == "Coding"
    period = activities[0].periods[0]
    assert period.start == at(1)
    assert period.end == at(1, 11)
    assert period.end_reason is ChangeReason.EXPLICIT_STOP


def test_offset_preserved():
    handle = io.StringIO()
    store = CsvStore(handle)
    zone = timezone(timedelta(hours=10))
    start = datetime(2024, 5, 6, 7, 8, 9, tzinfo=zone)
    key = store.save_activity("x")
    store.save_period(key, start, start + timedelta(minutes=5), ChangeReason.USER_ACTIVE, ChangeReason.USER_IDLE)
    assert "+10:00" in handle.getvalue()
    period = store.get_activities()[0].periods[0]
    assert period.start == start
    assert period.start.utcoffset() == timedelta(hours=10)


def test_consecutive_rows_grouped(store):
    a = store.save_activity("A")
    b = store.save_activity("B")
    reasons = (ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE)
    store.save_period(a, at(1, 9), at(1, 10), *reasons)
    store.save_period(a, at(1, 11), at(1, 12), *reasons)
    store.save_period(b, at(1, 13), at(1, 14), *reasons)
    store.save_period(a, at(1, 15), at(1, 16), *reasons)
    activities = store.get_activities()
    assert [x.name for x in activities] == ["A", "B", "A"]
    assert [len(x.periods) for x in activities] == [2, 1, 1]


def test_filter_by_range(store):
    key = store.save_activity("A")
    for day in (1, 2, 3):
        store.save_period(key, at(day), at(day, 11), ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE)
    activities = store.get_activities(
        datetime(2024, 1, 2, tzinfo=UTC), datetime(2024, 1, 3, tzinfo=UTC)
    )
    assert [p.start for p in activities[0].periods] == [at(2)]


def test_naive_bounds_are_utc(store):
    key = store.save_activity("A")
    store.save_period(key, at(2), at(2, 11), ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE)
    assert store.get_activities(datetime(2024, 1, 3)) == []
    assert len(store.get_activities(datetime(2024, 1, 2))) == 1


def test_writes_after_read_append(store, handle):
    key = store.save_activity("A")
    store.save_period(key, at(1), at(1, 11), ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE)
    store.get_activities()
    store.save_period(key, at(2), at(2, 11), ChangeReason.ACTIVITY_CHANGED, ChangeReason.USER_IDLE)
    assert len(store.get_activities()[0].periods) == 2
    assert handle.getvalue().count("\n") == 2


def test_empty_store(store):
    assert store.get_activities() == []


def test_parse_bad_reason():
    with pytest.raises(ValueError):
        parse_activity_row(["A", "2024-01-01T10:00:00Z", "2024-01-01T11:00:00Z", "Nope"])


def test_parse_bad_time():
    with pytest.raises(ValueError):
        parse_activity_row(["A", "2024-01-01 10:00", "2024-01-01T11:00:00Z", "User Idle"])


def test_parse_short_record():
    with pytest.raises(ValueError):
        parse_activity_row(["A", "2024-01-01T10:00:00Z"])


def test_parse_fractional_seconds():
    row = parse_activity_row(
        ["A", "2024-01-01T10:00:00.5Z", "2024-01-01T11:00:00Z", "Daemon Exit"]
    )
    assert row.name == "A"
    assert row.period.start.microsecond == 500000
    assert row.period.end_reason is ChangeReason.DAEMON_EXIT


def test_inconsistent_field_count():
    handle = io.StringIO(
        "A,2024-01-01T10:00:00Z,2024-01-01T11:00:00Z,User Idle\nB,2024-01-01T10:00:00Z\n"
    )
    with pytest.raises(ValueError):
        CsvStore(handle).get_activities()


def test_close_closes_handle(handle):
    with CsvStore(handle):
        pass
    assert handle.closed