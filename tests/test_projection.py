from datetime import date, timedelta

import pytest

from agentmeter.projection import (
    compute_projection,
    cost_history,
    days_remaining_in_month,
    merge_daily_costs,
    projected_monthly,
    trailing_average,
    week_over_week,
)


def _series(start: "date", costs: "list[float]") -> "dict[str, float]":
    return {
        (start + timedelta(days=offset)).isoformat(): value
        for offset, value in enumerate(costs)
    }


class TestHelpers:
    def test_trailing_average(self) -> "None":
        assert trailing_average([10.0] * 7) == 10.0
        assert trailing_average([]) == 0.0

    def test_projected_monthly(self) -> "None":
        assert projected_monthly(50.0, 10.0, 10) == 150.0

    def test_week_over_week(self) -> "None":
        assert week_over_week(15.0, 10.0) == pytest.approx(50.0)
        assert week_over_week(5.0, 10.0) == pytest.approx(-50.0)
        assert week_over_week(5.0, 0.0) == 0.0

    @pytest.mark.parametrize(
        ("today", "remaining"),
        [
            (date(2025, 1, 1), 30),
            (date(2025, 1, 31), 0),
            (date(2024, 2, 10), 19),
            (date(2025, 2, 10), 18),
        ],
    )
    def test_days_remaining_in_month(self, today: "date", remaining: "int") -> "None":
        assert days_remaining_in_month(today) == remaining


class TestCostHistory:
    def test_keeps_latest_thirty_ascending(self) -> "None":
        start = date(2025, 1, 1)
        series = _series(start, [float(i) for i in range(40)])
        # insert in reverse to prove ordering does not depend on input order
        shuffled = dict(reversed(list(series.items())))

        history = cost_history(shuffled)

        assert len(history) == 30
        dates = [day for day, _ in history]
        assert dates == sorted(dates)
        assert dates[0] == (start + timedelta(days=10)).isoformat()
        assert dates[-1] == (start + timedelta(days=39)).isoformat()

    def test_short_series_is_kept_whole(self) -> "None":
        assert cost_history({"2025-01-02": 2.0, "2025-01-01": 1.0}) == [
            ("2025-01-01", 1.0),
            ("2025-01-02", 2.0),
        ]


class TestMergeDailyCosts:
    def test_actual_wins_estimates_fill_and_today_added(self) -> "None":
        merged = merge_daily_costs(
            estimated={"2025-01-01": 1.0, "2025-01-02": 2.0},
            actual={"2025-01-01": 1.5},
            today="2025-01-03",
            today_cost=0.75,
        )
        assert merged == {"2025-01-01": 1.5, "2025-01-02": 2.0, "2025-01-03": 0.75}

    def test_without_actual(self) -> "None":
        merged = merge_daily_costs({"2025-01-01": 1.0}, None, "2025-01-02", 0.0)
        assert merged == {"2025-01-01": 1.0, "2025-01-02": 0.0}


class TestComputeProjection:
    def test_flat_week(self) -> "None":
        today = date(2025, 3, 21)
        costs = _series(date(2025, 3, 15), [10.0] * 7)

        projection = compute_projection(costs, today)

        assert projection.avg_daily7 == 10.0
        assert projection.avg_prior7 == 0.0
        assert projection.week_over_week == 0.0
        assert projection.mtd_cost == 70.0
        # 31 - 21 = 10 days left
        assert projection.projected_monthly == 70.0 + 10.0 * 10

    def test_week_over_week_trend(self) -> "None":
        today = date(2025, 3, 14)
        costs = _series(date(2025, 3, 1), [10.0] * 7 + [12.0] * 7)

        projection = compute_projection(costs, today)

        assert projection.avg_prior7 == 10.0
        assert projection.avg_daily7 == 12.0
        assert projection.week_over_week == 20.0

    def test_mtd_ignores_previous_month(self) -> "None":
        costs = {"2025-02-27": 100.0, "2025-02-28": 100.0, "2025-03-01": 5.0}
        projection = compute_projection(costs, date(2025, 3, 1))
        assert projection.mtd_cost == 5.0

    def test_threshold(self) -> "None":
        costs = _series(date(2025, 3, 15), [10.0] * 7)
        today = date(2025, 3, 21)
        assert compute_projection(costs, today, threshold=100.0).threshold_exceeded
        assert not compute_projection(costs, today, threshold=500.0).threshold_exceeded
        assert not compute_projection(costs, today, threshold=None).threshold_exceeded

    def test_empty_series(self) -> "None":
        projection = compute_projection({}, date(2025, 3, 21))
        assert projection.daily_cost_history == ()
        assert projection.projected_monthly == 0.0
