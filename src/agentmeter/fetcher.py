from datetime import date, datetime, time, timedelta, timezone
from typing import Mapping

import structlog

from agentmeter.errors import OtherUpstreamError, ThrottlingError, UpstreamError
from agentmeter.extractor import extract
from agentmeter.models import ActualCostResult, ExtractionResult
from agentmeter.pricing import DEFAULT_PRICING, TierRates
from agentmeter.provider.base import UsageSource
from agentmeter.ratelimit import RateLimitController

logger = structlog.get_logger()

DEFAULT_ALL_TIME_START = date(2024, 1, 1)

# upstream page-size caps per bucket width
MINUTE_BUCKET_LIMIT = 1440
DAY_BUCKET_LIMIT = 31

MINOR_UNITS_PER_MAJOR = 100


def _iso(moment: "datetime") -> "str":
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def _start_of_day(now: "datetime") -> "datetime":
    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, timezone.utc)


def today_window(now: "datetime") -> "tuple[str, str]":
    """
    [00:00:00Z, 23:59:59Z] of the current UTC day.
    """
    start = _start_of_day(now)
    end = start + timedelta(days=1, seconds=-1)
    return _iso(start), _iso(end)


def history_window(now: "datetime", epoch: "date") -> "tuple[str, str] | None":
    """
    from the epoch through 23:59:59Z of yesterday. Today is never
    included so the live estimate cannot be counted twice. Returns None
    when there are no completed days since the epoch.
    """
    start = datetime.combine(epoch, time.min, timezone.utc)
    end = _start_of_day(now) - timedelta(seconds=1)
    if start > end:
        return None
    return _iso(start), _iso(end)


def _report_upstream_error(
    exc: "UpstreamError",
    rate_limiter: "RateLimitController",
    stage: "str",
    pages_done: "int",
) -> "None":
    fields = {
        "stage": stage,
        "pages_done": pages_done,
        "error_type": exc.error_type,
        "error": exc.message,
    }
    if isinstance(exc, ThrottlingError):
        logger.warning("upstream_throttled", **fields)
        rate_limiter.record_hit()
    elif isinstance(exc, OtherUpstreamError):
        logger.error("upstream_error", **fields)
    else:
        logger.warning("upstream_unavailable", **fields)


class UsageFetcher:
    """
    UsageFetcher drives the token-usage feed for the two time windows
    the engine needs, walking every page and merging the extracted
    results. Pages are requested one at a time since each cursor is only
    known once the previous page has arrived.
    """

    def __init__(
        self,
        source: "UsageSource",
        rate_limiter: "RateLimitController",
        all_time_start: "date" = DEFAULT_ALL_TIME_START,
        default_model: "str | None" = None,
        pricing: "Mapping[str, TierRates]" = DEFAULT_PRICING,
    ) -> "None":
        self._source = source
        self._rate_limiter = rate_limiter
        self._all_time_start = all_time_start
        self._default_model = default_model
        self._pricing = pricing

    async def fetch_today(
        self,
        now: "datetime",
        group_by_credential: "bool" = False,
    ) -> "ExtractionResult | None":
        starting_at, ending_at = today_window(now)
        return await self._fetch_window(
            "today",
            starting_at,
            ending_at,
            bucket_width="1m",
            limit=MINUTE_BUCKET_LIMIT,
            group_by_credential=group_by_credential,
        )

    async def fetch_all_time(
        self,
        now: "datetime",
        group_by_credential: "bool" = False,
    ) -> "ExtractionResult | None":
        window = history_window(now, self._all_time_start)
        if window is None:
            return ExtractionResult()

        starting_at, ending_at = window
        return await self._fetch_window(
            "all_time",
            starting_at,
            ending_at,
            bucket_width="1d",
            limit=DAY_BUCKET_LIMIT,
            group_by_credential=group_by_credential,
        )

    async def _fetch_window(
        self,
        stage: "str",
        starting_at: "str",
        ending_at: "str",
        bucket_width: "str",
        limit: "int",
        group_by_credential: "bool",
    ) -> "ExtractionResult | None":
        """
        fetches all pages of one window. An error on the first page
        yields None; a later error keeps what already arrived and marks
        the result incomplete.
        """
        group_by = ["model", "api_key_id"] if group_by_credential else ["model"]
        merged = ExtractionResult()
        cursor: "str | None" = None
        pages_done = 0

        while True:
            try:
                page = await self._source.get_usage_page(
                    starting_at,
                    ending_at,
                    bucket_width,
                    group_by,
                    page=cursor,
                    limit=limit,
                )
            except UpstreamError as exc:
                _report_upstream_error(exc, self._rate_limiter, stage, pages_done)
                if pages_done == 0:
                    return None
                merged.complete = False
                return merged

            merged.merge(
                extract(page, group_by_credential, self._default_model, self._pricing)
            )
            pages_done += 1

            if not page.has_more:
                break
            cursor = page.next_page

        logger.debug(
            "usage_window_done",
            stage=stage,
            pages=pages_done,
            tokens=merged.total_tokens,
            cost=round(merged.total_cost, 6),
        )
        return merged


class CostFetcher:
    """
    CostFetcher reads billed amounts from the cost report. Billing lags
    by about a day, so it only covers completed days and never today.
    """

    def __init__(
        self,
        source: "UsageSource",
        rate_limiter: "RateLimitController",
        all_time_start: "date" = DEFAULT_ALL_TIME_START,
    ) -> "None":
        self._source = source
        self._rate_limiter = rate_limiter
        self._all_time_start = all_time_start

    async def fetch_actual(self, now: "datetime") -> "ActualCostResult | None":
        window = history_window(now, self._all_time_start)
        if window is None:
            return ActualCostResult()

        starting_at, ending_at = window
        merged = ActualCostResult()
        cursor: "str | None" = None
        pages_done = 0

        # same sequential loop as the usage windows
        while True:
            try:
                page = await self._source.get_cost_page(
                    starting_at, ending_at, page=cursor
                )
            except UpstreamError as exc:
                _report_upstream_error(exc, self._rate_limiter, "actual", pages_done)
                if pages_done == 0:
                    return None
                merged.complete = False
                return merged

            for bucket in page.data:
                day_total = (
                    sum(result.amount for result in bucket.results)
                    / MINOR_UNITS_PER_MAJOR
                )
                merged.merge(
                    ActualCostResult(
                        total_cost=day_total,
                        daily_costs={bucket.date: day_total},
                    )
                )
            pages_done += 1

            if not page.has_more:
                break
            cursor = page.next_page

        logger.debug(
            "actual_cost_done",
            pages=pages_done,
            cost=round(merged.total_cost, 6),
        )
        return merged
