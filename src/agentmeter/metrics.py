from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from agentmeter.models import TokenMetricsSnapshot
from agentmeter.ratelimit import RateLimitState


class MetricsUpdater:
    """
    exposes the published snapshot and the engine's own health as
    Prometheus metrics.

    Snapshot gauges are rewritten as a whole on every publish so that
    agents removed from the configuration stop being reported.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._today_cost: "Gauge" = Gauge(
            "agentmeter_today_cost_usd",
            "Estimated cost of the current UTC day",
            registry=registry,
        )
        self._today_tokens: "Gauge" = Gauge(
            "agentmeter_today_tokens",
            "Tokens used during the current UTC day",
            registry=registry,
        )
        self._all_time_cost: "Gauge" = Gauge(
            "agentmeter_all_time_cost_usd",
            "Cost of all completed days, by provenance",
            ["source"],
            registry=registry,
        )
        self._agent_cost: "Gauge" = Gauge(
            "agentmeter_agent_cost_usd",
            "Per-agent estimated cost",
            ["agent", "window"],
            registry=registry,
        )
        self._projected_monthly: "Gauge" = Gauge(
            "agentmeter_projected_monthly_cost_usd",
            "Forecast spend for the current month",
            registry=registry,
        )
        self._mtd_cost: "Gauge" = Gauge(
            "agentmeter_mtd_cost_usd",
            "Month-to-date spend",
            registry=registry,
        )
        self._avg_daily: "Gauge" = Gauge(
            "agentmeter_avg_daily_cost_usd",
            "Trailing 7-day average daily cost",
            registry=registry,
        )
        self._cache_hit_rate: "Gauge" = Gauge(
            "agentmeter_cache_hit_rate_percent",
            "Share of input tokens served from cache",
            registry=registry,
        )
        self._threshold_exceeded: "Gauge" = Gauge(
            "agentmeter_cost_threshold_exceeded",
            "1 when the monthly forecast exceeds the alert threshold",
            registry=registry,
        )
        self._rate_limit_hits: "Gauge" = Gauge(
            "agentmeter_rate_limit_hits",
            "Consecutive throttling responses since the last clean cycle",
            registry=registry,
        )
        self._rate_limit_backoff: "Gauge" = Gauge(
            "agentmeter_rate_limit_backoff_seconds",
            "Remaining cooldown before upstream calls resume",
            registry=registry,
        )
        self._fetch_errors: "Counter" = Counter(
            "agentmeter_fetch_errors_total",
            "Fetches that produced no data, by stage",
            ["stage"],
            registry=registry,
        )
        self._cycles_skipped: "Counter" = Counter(
            "agentmeter_cycles_skipped_total",
            "Refresh cycles skipped while backing off",
            registry=registry,
        )
        self._refresh_duration: "Histogram" = Histogram(
            "agentmeter_refresh_duration_seconds",
            "Duration of refresh cycles that reached the upstream",
            registry=registry,
        )
        self._last_refresh_success: "Gauge" = Gauge(
            "agentmeter_last_refresh_success_timestamp_seconds",
            "Unix timestamp of the last published snapshot",
            registry=registry,
        )

    def apply_snapshot(self, snapshot: "TokenMetricsSnapshot") -> "None":
        self._today_cost.set(snapshot.today.cost)
        self._today_tokens.set(snapshot.today.tokens)

        self._all_time_cost.clear()
        self._all_time_cost.labels(source=snapshot.all_time.source).set(
            snapshot.all_time.cost
        )

        self._agent_cost.clear()
        for slug, summary in snapshot.per_agent.items():
            self._agent_cost.labels(agent=slug, window="today").set(summary.today)
            self._agent_cost.labels(agent=slug, window="all_time").set(
                summary.all_time
            )

        self._projected_monthly.set(snapshot.projected_monthly)
        self._mtd_cost.set(snapshot.mtd_cost)
        self._avg_daily.set(snapshot.avg_daily7)
        self._cache_hit_rate.set(snapshot.cache_hit_rate)
        self._threshold_exceeded.set(1 if snapshot.threshold_exceeded else 0)

        if snapshot.last_updated is not None:
            self._last_refresh_success.set(snapshot.last_updated.timestamp())

    def set_rate_limit_state(self, state: "RateLimitState") -> "None":
        self._rate_limit_hits.set(state.hit_count)
        self._rate_limit_backoff.set(state.backoff_remaining_ms / 1000)

    def inc_fetch_error(self, stage: "str") -> "None":
        self._fetch_errors.labels(stage=stage).inc()

    def inc_cycle_skipped(self) -> "None":
        self._cycles_skipped.inc()

    def observe_refresh_duration(self, duration_seconds: "float") -> "None":
        self._refresh_duration.observe(duration_seconds)
