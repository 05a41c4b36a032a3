from datetime import datetime, timezone

from engines.history import attempt_dates, locate_neighbors
from schemas import AttemptSummary


def _attempts():
    # most recent first
    return [
        AttemptSummary(id="c", started_at=datetime(2026, 3, 3, tzinfo=timezone.utc)),
        AttemptSummary(id="b", started_at=datetime(2026, 3, 2, tzinfo=timezone.utc)),
        AttemptSummary(id="a", started_at=datetime(2026, 3, 1, tzinfo=timezone.utc)),
    ]


def test_middle_attempt_has_both_neighbors():
    neighbors = locate_neighbors(_attempts(), "b")
    assert neighbors.previous.id == "a"
    assert neighbors.next.id == "c"


def test_newest_attempt_has_no_next():
    neighbors = locate_neighbors(_attempts(), "c")
    assert neighbors.previous.id == "b"
    assert neighbors.next is None


def test_oldest_attempt_has_no_previous():
    neighbors = locate_neighbors(_attempts(), "a")
    assert neighbors.previous is None
    assert neighbors.next.id == "b"


def test_unknown_attempt_has_no_neighbors():
    neighbors = locate_neighbors(_attempts(), "zzz")
    assert neighbors.previous is None
    assert neighbors.next is None


def test_single_attempt_has_no_neighbors():
    neighbors = locate_neighbors(_attempts()[:1], "c")
    assert (neighbors.previous, neighbors.next) == (None, None)


def test_attempt_dates_flags_selected_attempt():
    dates = attempt_dates(_attempts(), "b")
    assert [d["id"] for d in dates] == ["c", "b", "a"]
    assert [d["is_selected"] for d in dates] == [False, True, False]
    assert dates[1]["date"] == datetime(2026, 3, 2, tzinfo=timezone.utc)
