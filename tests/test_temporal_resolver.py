"""Tests for point-in-time filtering and look-ahead safety.

Verifies that:
- Only records dated on or before the cutoff are returned, ascending
- Sorting is stable and idempotent
- Appending future rows never changes the output for an earlier cutoff
- A TTM evaluation inside a fiscal year cannot see that year's FY row
"""

import sys
from datetime import date, datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from temporal_resolver import (latest_as_of, record_date, resolve_as_of,
                               sort_by_date, to_date)
from metric_deriver import compute_cagr, derive_growth
from conftest import make_fy


class TestToDate:
    def test_accepts_date_datetime_and_iso(self):
        assert to_date(date(2023, 9, 30)) == date(2023, 9, 30)
        assert to_date(datetime(2023, 9, 30, 15, 0)) == date(2023, 9, 30)
        assert to_date("2023-09-30") == date(2023, 9, 30)
        assert to_date("2023-09-30T12:00:00Z") == date(2023, 9, 30)

    def test_unparseable_is_none(self):
        assert to_date(None) is None
        assert to_date("") is None
        assert to_date("not a date") is None
        assert to_date(12345) is None


class TestResolveAsOf:
    def test_filters_and_sorts(self):
        rows = [{"date": "2022-12-31", "v": 3},
                {"date": "2020-12-31", "v": 1},
                {"date": "2024-12-31", "v": 5},
                {"date": "2021-12-31", "v": 2}]
        out = resolve_as_of(rows, "2022-12-31")
        assert [r["v"] for r in out] == [1, 2, 3]

    def test_cutoff_is_inclusive(self):
        rows = [{"date": "2023-06-30"}]
        assert len(resolve_as_of(rows, date(2023, 6, 30))) == 1
        assert resolve_as_of(rows, date(2023, 6, 29)) == []

    def test_empty_input(self):
        assert resolve_as_of([], "2024-01-01") == []
        assert resolve_as_of(None, "2024-01-01") == []

    def test_unparseable_cutoff_resolves_nothing(self):
        assert resolve_as_of([{"date": "2020-01-01"}], "garbage") == []

    def test_undated_records_dropped(self):
        rows = [{"date": "2020-01-01"}, {"date": None}, {"other": 1}]
        assert len(resolve_as_of(rows, "2030-01-01")) == 1

    def test_accepts_periods(self, sample_history):
        out = resolve_as_of(sample_history, "2021-12-31")
        assert [p.period_end_date.year for p in out] == [2019, 2020, 2021]

    def test_future_rows_do_not_change_output(self, sample_history):
        cutoff = "2022-06-30"
        before = resolve_as_of(sample_history[:3], cutoff)
        after = resolve_as_of(sample_history, cutoff)
        assert before == after

    def test_latest_as_of(self, sample_history):
        assert latest_as_of(sample_history, "2023-01-15").period_end_date == date(2022, 12, 31)
        assert latest_as_of(sample_history, "2000-01-01") is None


class TestSortByDate:
    def test_stable_for_equal_dates(self):
        rows = [{"date": "2021-01-01", "k": "a"},
                {"date": "2020-01-01", "k": "z"},
                {"date": "2021-01-01", "k": "b"}]
        assert [r["k"] for r in sort_by_date(rows)] == ["z", "a", "b"]

    def test_idempotent(self, sample_history):
        once = sort_by_date(list(reversed(sample_history)))
        twice = sort_by_date(once)
        assert once == twice
        assert [record_date(p) for p in once] == sorted(record_date(p) for p in once)


class TestTTMLookback:
    """FY rows dated after a TTM period end must not feed its growth metrics."""

    def test_ttm_sees_only_closed_fiscal_years(self):
        # FY 2020..2024 history, TTM evaluation ending 2023-09-30
        history = [make_fy(2020 + i, i) for i in range(5)]
        eligible = resolve_as_of(history, "2023-09-30")
        assert len(eligible) == 3
        assert [p.period_end_date.year for p in eligible] == [2020, 2021, 2022]

    def test_growth_matches_filtered_history(self):
        history = [make_fy(2020 + i, i) for i in range(5)]
        growth = derive_growth(history, "2023-09-30")
        expected = compute_cagr([(p.period_end_date, p.get("revenue"))
                                 for p in history[:3]])
        assert growth["revenue_cagr"] == expected
