import asyncio
import signal

import structlog
from prometheus_client import start_http_server

from agentmeter.cli import parse_args
from agentmeter.config import Config, load_agents
from agentmeter.engine import AggregationEngine
from agentmeter.errors import ConfigError
from agentmeter.fetcher import CostFetcher, UsageFetcher
from agentmeter.logging import setup_logging
from agentmeter.metrics import MetricsUpdater
from agentmeter.provider.anthropic import AnthropicAdminClient
from agentmeter.ratelimit import RateLimitController

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _reload_agents(engine: "AggregationEngine", config: "Config") -> "None":
    try:
        agents = load_agents(config.agents_file)
    except ConfigError as exc:
        logger.error("agents_reload_failed", error=str(exc))
        return

    logger.info("agents_reloaded", count=len(agents))
    engine.configure(agents, config.cost_alert_threshold)


def main() -> "None":
    try:
        config = parse_args()
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc
    setup_logging(config.log_level)

    if not config.usage_enabled:
        raise SystemExit(
            "No admin key configured. Set ANTHROPIC_ADMIN_KEY environment variable."
        )

    try:
        agents = load_agents(config.agents_file)
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    client = AnthropicAdminClient(api_key=config.admin_api_key, base_url=config.base_url)
    rate_limiter = RateLimitController()
    engine = AggregationEngine(
        usage_fetcher=UsageFetcher(
            client,
            rate_limiter,
            all_time_start=config.all_time_start,
            default_model=config.default_model or None,
        ),
        cost_fetcher=CostFetcher(
            client, rate_limiter, all_time_start=config.all_time_start
        ),
        rate_limiter=rate_limiter,
        metrics_updater=MetricsUpdater(),
        refresh_interval_seconds=config.refresh_interval,
        agents=agents,
        cost_alert_threshold=config.cost_alert_threshold,
    )
    logger.info("engine_configured", agents=len(agents))

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the engine
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, engine.stop)
        # SIGHUP re-reads the agents file and refreshes out of band
        loop.add_signal_handler(signal.SIGHUP, _reload_agents, engine, config)

        try:
            await engine.run()
        finally:
            logger.info("shutting_down")
            await client.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
