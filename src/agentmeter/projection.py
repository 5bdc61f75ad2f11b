import calendar
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Sequence

HISTORY_DAYS = 30
TRAILING_WINDOW = 7


@dataclass(frozen=True, slots=True)
class Projection:
    # (date, cost) pairs, ascending by date
    daily_cost_history: "tuple[tuple[str, float], ...]"
    avg_daily7: "float"
    avg_prior7: "float"
    week_over_week: "float"
    mtd_cost: "float"
    projected_monthly: "float"
    threshold_exceeded: "bool"


def merge_daily_costs(
    estimated: "Mapping[str, float]",
    actual: "Mapping[str, float] | None",
    today: "str",
    today_cost: "float",
) -> "dict[str, float]":
    """
    builds the authoritative date -> cost map: billed amounts win for
    any date they cover, token estimates fill the gaps and today's live
    estimate is added on top.
    """
    merged = dict(estimated)
    if actual:
        merged.update(actual)
    merged[today] = merged.get(today, 0.0) + today_cost
    return merged


def cost_history(
    daily_costs: "Mapping[str, float]",
    limit: "int" = HISTORY_DAYS,
) -> "list[tuple[str, float]]":
    ordered = sorted(daily_costs.items())
    return ordered[-limit:] if limit > 0 else []


def trailing_average(values: "Sequence[float]") -> "float":
    if not values:
        return 0.0
    return sum(values) / len(values)


def week_over_week(avg_recent: "float", avg_prior: "float") -> "float":
    """
    percentage change between two trailing averages, 0 when there is
    no prior week to compare against.
    """
    if avg_prior == 0:
        return 0.0
    return (avg_recent - avg_prior) / avg_prior * 100


def days_remaining_in_month(today: "date") -> "int":
    days_in_month = calendar.monthrange(today.year, today.month)[1]
    return days_in_month - today.day


def projected_monthly(
    mtd_cost: "float",
    avg_daily: "float",
    days_remaining: "int",
) -> "float":
    return mtd_cost + avg_daily * days_remaining


def compute_projection(
    daily_costs: "Mapping[str, float]",
    today: "date",
    threshold: "float | None" = None,
) -> "Projection":
    """
    derives trailing averages, week-over-week trend, month-to-date spend
    and the monthly forecast from a merged date -> cost map. Dates are
    UTC calendar days in YYYY-MM-DD form.
    """
    history = cost_history(daily_costs)
    costs = [day_cost for _, day_cost in history]

    recent = costs[-TRAILING_WINDOW:]
    prior = costs[-2 * TRAILING_WINDOW : -TRAILING_WINDOW]
    avg_daily7 = trailing_average(recent)
    avg_prior7 = trailing_average(prior)

    month_prefix = today.strftime("%Y-%m-")
    mtd_cost = sum(
        day_cost for day, day_cost in daily_costs.items() if day.startswith(month_prefix)
    )
    projected = projected_monthly(
        mtd_cost, avg_daily7, days_remaining_in_month(today)
    )

    return Projection(
        daily_cost_history=tuple(history),
        avg_daily7=avg_daily7,
        avg_prior7=avg_prior7,
        week_over_week=round(week_over_week(avg_daily7, avg_prior7), 1),
        mtd_cost=mtd_cost,
        projected_monthly=projected,
        threshold_exceeded=threshold is not None and projected > threshold,
    )
