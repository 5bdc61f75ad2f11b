from datetime import datetime, timezone

from prometheus_client import CollectorRegistry

from agentmeter.metrics import MetricsUpdater
from agentmeter.models import (
    AgentSummary,
    AllTimeTotals,
    TodayTotals,
    TokenMetricsSnapshot,
)
from agentmeter.ratelimit import RateLimitState


def _snapshot(agents: "dict[str, AgentSummary]", source: "str") -> "TokenMetricsSnapshot":
    return TokenMetricsSnapshot(
        today=TodayTotals(tokens=1_500, cost=0.25),
        all_time=AllTimeTotals(cost=12.5, source=source),
        per_agent=agents,
        cache_hit_rate=40.0,
        projected_monthly=90.0,
        mtd_cost=30.0,
        avg_daily7=3.0,
        threshold_exceeded=True,
        last_updated=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class TestMetricsUpdater:
    def test_metric_families_are_registered(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "agentmeter_today_cost_usd" in metric_names
        assert "agentmeter_all_time_cost_usd" in metric_names
        assert "agentmeter_fetch_errors" in metric_names
        assert "agentmeter_cycles_skipped" in metric_names
        assert "agentmeter_refresh_duration_seconds" in metric_names

    def test_apply_snapshot(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        atlas = AgentSummary(
            name="Atlas", color="#fff", credential_id="k", today=0.2, all_time=7.0
        )
        updater.apply_snapshot(_snapshot({"atlas": atlas}, "actual"))

        assert registry.get_sample_value("agentmeter_today_cost_usd") == 0.25
        assert registry.get_sample_value("agentmeter_today_tokens") == 1500.0
        assert (
            registry.get_sample_value(
                "agentmeter_all_time_cost_usd", {"source": "actual"}
            )
            == 12.5
        )
        assert (
            registry.get_sample_value(
                "agentmeter_agent_cost_usd", {"agent": "atlas", "window": "all_time"}
            )
            == 7.0
        )
        assert registry.get_sample_value("agentmeter_cost_threshold_exceeded") == 1.0
        assert registry.get_sample_value("agentmeter_cache_hit_rate_percent") == 40.0
        assert (
            registry.get_sample_value(
                "agentmeter_last_refresh_success_timestamp_seconds"
            )
            == datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp()
        )

    def test_apply_snapshot_replaces_labelled_series(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        atlas = AgentSummary(name="Atlas", color="#fff", credential_id="k", today=1.0)
        updater.apply_snapshot(_snapshot({"atlas": atlas}, "actual"))
        updater.apply_snapshot(_snapshot({}, "estimated"))

        assert (
            registry.get_sample_value(
                "agentmeter_agent_cost_usd", {"agent": "atlas", "window": "today"}
            )
            is None
        )
        assert (
            registry.get_sample_value(
                "agentmeter_all_time_cost_usd", {"source": "actual"}
            )
            is None
        )
        assert (
            registry.get_sample_value(
                "agentmeter_all_time_cost_usd", {"source": "estimated"}
            )
            == 12.5
        )

    def test_self_metrics_update(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.inc_fetch_error("today")
        updater.inc_cycle_skipped()
        updater.observe_refresh_duration(0.5)
        updater.set_rate_limit_state(
            RateLimitState(hit_count=2, backoff_remaining_ms=120_000)
        )

        assert (
            registry.get_sample_value(
                "agentmeter_fetch_errors_total", {"stage": "today"}
            )
            == 1.0
        )
        assert registry.get_sample_value("agentmeter_cycles_skipped_total") == 1.0
        assert registry.get_sample_value("agentmeter_rate_limit_hits") == 2.0
        assert registry.get_sample_value("agentmeter_rate_limit_backoff_seconds") == 120.0
        assert (
            registry.get_sample_value("agentmeter_refresh_duration_seconds_count")
            == 1.0
        )
