import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import structlog

from agentmeter.extractor import merge_results, tier_percentages
from agentmeter.fetcher import CostFetcher, UsageFetcher
from agentmeter.metrics import MetricsUpdater
from agentmeter.models import (
    SOURCE_ACTUAL,
    SOURCE_ESTIMATED,
    ActualCostResult,
    AgentRecord,
    AgentSummary,
    AllTimeTotals,
    CredentialCostRecord,
    ExtractionResult,
    TodayTotals,
    TokenMetricsSnapshot,
    cache_hit_rate,
)
from agentmeter.projection import (
    TRAILING_WINDOW,
    compute_projection,
    merge_daily_costs,
    trailing_average,
)
from agentmeter.ratelimit import RateLimitController

logger = structlog.get_logger()

DEFAULT_REFRESH_INTERVAL_SECONDS = 300

_STAGES = ("today", "all_time", "actual")


def _utcnow() -> "datetime":
    return datetime.now(timezone.utc)


def summarize_agent(
    agent: "AgentRecord",
    today: "CredentialCostRecord | None",
    all_time: "CredentialCostRecord | None",
) -> "AgentSummary":
    """
    combines one credential's today and all-time accumulators into its
    published summary. estimated_daily is the mean of up to the last
    seven days that recorded any cost.
    """
    today = today or CredentialCostRecord()
    all_time = all_time or CredentialCostRecord()

    combined = CredentialCostRecord()
    combined.merge(all_time)
    combined.merge(today)

    recent = [day_cost for _, day_cost in sorted(combined.daily_costs.items())]
    return AgentSummary(
        name=agent.name,
        color=agent.color,
        credential_id=agent.credential_id,
        today=today.cost,
        all_time=all_time.cost,
        tokens=combined.tokens,
        estimated_daily=trailing_average(recent[-TRAILING_WINDOW:]),
        cache_hit_rate=cache_hit_rate(combined.cache_read, combined.uncached_input),
        models=tier_percentages(combined.model_tokens),
    )


def build_snapshot(
    today: "ExtractionResult",
    all_time: "ExtractionResult",
    actual: "ActualCostResult | None",
    agents: "Sequence[AgentRecord]",
    threshold: "float | None",
    now: "datetime",
) -> "TokenMetricsSnapshot":
    """
    assembles a snapshot from one cycle's fetch results. The all-time
    window never contains today, so today's estimate is added on top
    of the daily series here and nowhere else.
    """
    today_date = now.astimezone(timezone.utc).date()
    combined = merge_results([today, all_time])

    # a partial billing result cannot stand in for the whole total, but
    # the days it did return are still authoritative
    if actual is not None and actual.complete:
        all_time_totals = AllTimeTotals(cost=actual.total_cost, source=SOURCE_ACTUAL)
    else:
        all_time_totals = AllTimeTotals(
            cost=all_time.total_cost, source=SOURCE_ESTIMATED
        )

    daily_costs = merge_daily_costs(
        all_time.daily_costs(),
        actual.daily_costs if actual is not None else None,
        today_date.isoformat(),
        today.total_cost,
    )
    projection = compute_projection(daily_costs, today_date, threshold)

    per_agent = {
        agent.slug: summarize_agent(
            agent,
            today.per_agent.get(agent.credential_id),
            all_time.per_agent.get(agent.credential_id),
        )
        for agent in agents
    }

    return TokenMetricsSnapshot(
        today=TodayTotals(tokens=today.total_tokens, cost=today.total_cost),
        all_time=all_time_totals,
        per_agent=per_agent,
        model_breakdown=tier_percentages(combined.per_model),
        cache_hit_rate=cache_hit_rate(
            combined.global_cache_read, combined.global_uncached_input
        ),
        daily_cost_history=projection.daily_cost_history,
        projected_monthly=projection.projected_monthly,
        week_over_week=projection.week_over_week,
        mtd_cost=projection.mtd_cost,
        avg_daily7=projection.avg_daily7,
        cost_alert_threshold=threshold,
        threshold_exceeded=projection.threshold_exceeded,
        last_updated=now,
    )


class AggregationEngine:
    """
    AggregationEngine owns the published TokenMetricsSnapshot and the
    rate-limit state. Once per interval it runs the today, all-time and
    billed-cost fetches concurrently and, when the token estimates came
    back, replaces the snapshot in a single assignment.

    refresh() never raises: callers only observe the snapshot being
    updated or left as it was.
    """

    def __init__(
        self,
        usage_fetcher: "UsageFetcher",
        cost_fetcher: "CostFetcher",
        rate_limiter: "RateLimitController",
        metrics_updater: "MetricsUpdater | None" = None,
        refresh_interval_seconds: "int" = DEFAULT_REFRESH_INTERVAL_SECONDS,
        agents: "Sequence[AgentRecord]" = (),
        cost_alert_threshold: "float | None" = None,
        clock: "Callable[[], datetime]" = _utcnow,
    ) -> "None":
        self._usage = usage_fetcher
        self._costs = cost_fetcher
        self._rate_limiter = rate_limiter
        self._metrics = metrics_updater
        self._interval = refresh_interval_seconds
        self._agents: "tuple[AgentRecord, ...]" = tuple(agents)
        self._threshold = cost_alert_threshold
        self._clock = clock
        self._snapshot: "TokenMetricsSnapshot" = TokenMetricsSnapshot.empty()
        self._cycle = 0
        self._stopping = False
        self._refresh_requested = False
        self._wake: "asyncio.Event" = asyncio.Event()

    @property
    def agents(self) -> "tuple[AgentRecord, ...]":
        return self._agents

    def current_snapshot(self) -> "TokenMetricsSnapshot":
        return self._snapshot

    def configure(
        self,
        agents: "Sequence[AgentRecord]",
        cost_alert_threshold: "float | None" = None,
    ) -> "None":
        """
        replaces the agent list and alert threshold. A new threshold is
        applied to the published snapshot at once; a change in the set of
        credentials wakes the run loop for an out-of-band refresh.
        """
        previous = {agent.credential_id for agent in self._agents}
        self._agents = tuple(agents)
        current = {agent.credential_id for agent in self._agents}

        if cost_alert_threshold != self._threshold:
            self._threshold = cost_alert_threshold
            self._apply_threshold()

        if current != previous:
            logger.info(
                "agents_reconfigured",
                added=sorted(current - previous),
                removed=sorted(previous - current),
            )
            self._refresh_requested = True
            self._wake.set()

    def _apply_threshold(self) -> "None":
        published = self._snapshot
        if published.last_updated is None:
            return

        snapshot = replace(
            published,
            cost_alert_threshold=self._threshold,
            threshold_exceeded=(
                self._threshold is not None
                and published.projected_monthly > self._threshold
            ),
        )
        self._snapshot = snapshot
        if self._metrics is not None:
            self._metrics.apply_snapshot(snapshot)
        logger.info(
            "threshold_reconfigured",
            threshold=snapshot.cost_alert_threshold,
            threshold_exceeded=snapshot.threshold_exceeded,
        )

    def stop(self) -> "None":
        """
        signals the refresh loop to stop after the current cycle.
        """
        self._stopping = True
        self._wake.set()

    async def run(self) -> "None":
        """
        runs refresh cycles every interval until stop() is called. Each
        cycle is awaited before the next wait starts, so loop-driven
        cycles never overlap. An out-of-band cycle does not move the
        next scheduled one.
        """
        scheduled = True
        deadline = 0.0
        self._refresh_requested = False
        self._wake.clear()
        while not self._stopping:
            await self.refresh(scheduled=scheduled)
            if scheduled:
                deadline = time.monotonic() + self._interval

            if self._stopping:
                break

            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=max(deadline - time.monotonic(), 0)
                )
            except TimeoutError:
                pass
            self._wake.clear()
            scheduled = not self._refresh_requested
            self._refresh_requested = False

    async def refresh(self, scheduled: "bool" = True) -> "bool":
        """
        runs one cycle and returns whether a new snapshot was published.

        A scheduled cycle consumes one interval of any pending backoff;
        an out-of-band cycle only honours it.
        """
        self._cycle += 1
        with structlog.contextvars.bound_contextvars(cycle=self._cycle):
            return await self._refresh(scheduled)

    async def _refresh(self, scheduled: "bool") -> "bool":
        if scheduled:
            skip = self._rate_limiter.should_skip(self._interval * 1000)
        else:
            skip = self._rate_limiter.is_backing_off

        if skip:
            if self._metrics is not None:
                self._metrics.inc_cycle_skipped()
                self._metrics.set_rate_limit_state(self._rate_limiter.state)
            return False

        now = self._clock()
        group_by_credential = bool(self._agents)
        cycle_start = time.monotonic()
        logger.info("refresh_cycle_start", scheduled=scheduled, agents=len(self._agents))

        outcomes = await asyncio.gather(
            self._usage.fetch_today(now, group_by_credential),
            self._usage.fetch_all_time(now, group_by_credential),
            self._costs.fetch_actual(now),
            return_exceptions=True,
        )
        today, all_time, actual = (
            self._unwrap(stage, outcome) for stage, outcome in zip(_STAGES, outcomes)
        )

        # a partially successful cycle leaves the throttle counter alone
        if all(r is not None and r.complete for r in (today, all_time, actual)):
            self._rate_limiter.reset()

        if self._metrics is not None:
            self._metrics.set_rate_limit_state(self._rate_limiter.state)

        if today is None or all_time is None:
            logger.warning(
                "snapshot_retained",
                today_ok=today is not None,
                all_time_ok=all_time is not None,
            )
            return False

        snapshot = build_snapshot(
            today, all_time, actual, self._agents, self._threshold, now
        )
        self._snapshot = snapshot

        duration = time.monotonic() - cycle_start
        if self._metrics is not None:
            self._metrics.apply_snapshot(snapshot)
            self._metrics.observe_refresh_duration(duration)

        logger.info(
            "snapshot_published",
            today_cost=round(snapshot.today.cost, 4),
            all_time_cost=round(snapshot.all_time.cost, 2),
            all_time_source=snapshot.all_time.source,
            projected_monthly=round(snapshot.projected_monthly, 2),
            threshold_exceeded=snapshot.threshold_exceeded,
            duration_seconds=round(duration, 3),
        )
        if snapshot.threshold_exceeded:
            logger.warning(
                "cost_threshold_exceeded",
                projected_monthly=round(snapshot.projected_monthly, 2),
                threshold=snapshot.cost_alert_threshold,
            )
        return True

    def _unwrap(self, stage: "str", outcome: "Any") -> "Any":
        if isinstance(outcome, Exception):
            logger.error("fetch_crashed", stage=stage, error=repr(outcome))
            outcome = None
        elif isinstance(outcome, BaseException):
            raise outcome

        if outcome is None and self._metrics is not None:
            self._metrics.inc_fetch_error(stage)
        return outcome
