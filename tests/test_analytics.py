"""Tests for access log filtering, sorting, pagination and summaries."""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.festgate.analytics import LogFilter, date_cutoff, filter_logs, paginate, sort_logs, summarize

NOW = datetime(2026, 10, 18, 15, 30, 0)


def _log(i, name, *, at=None, method="password_modal", ip=None):
    return SimpleNamespace(
        id=i,
        visitor_name=name,
        access_method=method,
        password_used="x",
        accessed_at=at or NOW,
        user_agent=None,
        ip_address=ip,
        session_id=f"s{i}",
    )


@pytest.fixture()
def logs():
    return [
        _log(1, "alice-smith", at=NOW - timedelta(hours=1)),
        _log(2, "bob", at=NOW - timedelta(days=2), method="direct_link"),
        _log(3, "malice", at=NOW - timedelta(days=10)),
        _log(4, "carol", at=NOW - timedelta(days=40)),
        _log(5, "alice-smith", at=NOW.replace(hour=0, minute=0)),
    ]


def test_search_is_case_insensitive_substring(logs):
    out = filter_logs(logs, LogFilter(search_term="ALICE"), now=NOW)
    assert [l.id for l in out] == [1, 3, 5]


def test_date_ranges_are_relative_to_now(logs):
    ids = lambda r: [l.id for l in filter_logs(logs, LogFilter(date_range=r), now=NOW)]
    assert ids("today") == [1, 5]
    assert ids("week") == [1, 2, 5]
    assert ids("month") == [1, 2, 3, 5]
    assert ids("all") == [1, 2, 3, 4, 5]


def test_cutoff_is_inclusive():
    exactly_week = _log(9, "edge", at=NOW - timedelta(days=7))
    assert filter_logs([exactly_week], LogFilter(date_range="week"), now=NOW) == [exactly_week]
    assert date_cutoff("week", NOW) == NOW - timedelta(days=7)
    assert date_cutoff("all", NOW) is None


def test_method_filter(logs):
    out = filter_logs(logs, LogFilter(access_method="direct_link"), now=NOW)
    assert [l.id for l in out] == [2]
    assert len(filter_logs(logs, LogFilter(access_method="all"), now=NOW)) == 5


def test_filter_is_idempotent(logs):
    f = LogFilter(search_term="a", date_range="month", access_method="password_modal")
    once = filter_logs(logs, f, now=NOW)
    assert filter_logs(once, f, now=NOW) == once


def test_filter_from_query_args_ignores_unknown_values():
    f = LogFilter.from_args({"q": "  bob ", "range": "fortnight", "method": "telepathy"})
    assert f == LogFilter(search_term="bob", date_range="all", access_method=None)


def test_sort_directions(logs):
    asc = sort_logs(logs, "accessed_at", "asc")
    assert [l.id for l in asc] == [4, 3, 2, 5, 1]
    desc = sort_logs(logs, "visitor_name", "desc")
    assert [l.visitor_name for l in desc] == ["malice", "carol", "bob", "alice-smith", "alice-smith"]


def test_sort_is_stable_for_ties(logs):
    out = sort_logs(logs, "visitor_name", "asc")
    assert [l.id for l in out][:2] == [1, 5]
    out = sort_logs(logs, "visitor_name", "desc")
    assert [l.id for l in out][-2:] == [1, 5]


def test_nulls_sort_last_in_both_directions():
    rows = [_log(1, "a", ip=None), _log(2, "b", ip="10.0.0.2"), _log(3, "c", ip=None), _log(4, "d", ip="10.0.0.1")]
    assert [r.id for r in sort_logs(rows, "ip_address", "asc")] == [4, 2, 1, 3]
    assert [r.id for r in sort_logs(rows, "ip_address", "desc")] == [2, 4, 1, 3]


def test_sort_rejects_unknown_column(logs):
    with pytest.raises(ValueError):
        sort_logs(logs, "password_hash", "asc")


def test_pagination_thirty_entries():
    rows = [_log(i, f"v{i}") for i in range(30)]
    p1 = paginate(rows, 1, 25)
    p2 = paginate(rows, 2, 25)
    assert len(p1.items) == 25
    assert len(p2.items) == 5
    assert p1.total_pages == 2
    assert p1.has_next and not p1.has_prev
    assert p2.has_prev and not p2.has_next


def test_pagination_clamps_page():
    rows = [_log(i, f"v{i}") for i in range(30)]
    assert paginate(rows, 9, 25).page == 2
    assert paginate(rows, 0, 25).page == 1
    empty = paginate([], 3, 25)
    assert empty.page == 1
    assert empty.total_pages == 0
    assert empty.items == []


def test_pages_cover_list_exactly():
    rows = sort_logs([_log(i, f"v{i % 7}") for i in range(53)], "visitor_name", "asc")
    first = paginate(rows, 1, 10)
    collected = []
    for n in range(1, first.total_pages + 1):
        collected.extend(paginate(rows, n, 10).items)
    assert collected == rows


def test_summarize_breakdown_and_top_visitors(logs):
    summary = summarize(logs, top_n=2)
    assert summary.total == 5
    counts = {b["method"]: b["count"] for b in summary.method_breakdown}
    assert counts == {"password_modal": 4, "direct_link": 1}
    assert summary.method_breakdown[0]["percent"] == 80.0
    assert summary.top_visitors[0] == {"name": "alice-smith", "count": 2}
    # bob, malice and carol tie at one visit; bob was seen first
    assert summary.top_visitors[1] == {"name": "bob", "count": 1}


def test_summarize_empty():
    summary = summarize([])
    assert summary.total == 0
    assert all(b["count"] == 0 and b["percent"] == 0.0 for b in summary.method_breakdown)
    assert summary.top_visitors == []
