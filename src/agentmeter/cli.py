import argparse

from agentmeter.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="agentmeter",
        description="Agent usage and cost aggregation exporter",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address to listen on (default: :9186)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=300,
        help="Refresh interval in seconds (default: 300)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--agents.file",
        dest="agents_file",
        default=None,
        help="JSON file listing tracked agents (default: $AGENTMETER_AGENTS_FILE)",
    )
    parser.add_argument(
        "--cost.alert-threshold",
        dest="cost_alert_threshold",
        type=float,
        default=None,
        help="Monthly cost alert threshold in USD",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.log_level = args.log_level
    # flags only override the environment when given
    if args.agents_file is not None:
        config.agents_file = args.agents_file
    if args.cost_alert_threshold is not None:
        # zero or negative disables the alert, same as the environment
        config.cost_alert_threshold = (
            args.cost_alert_threshold if args.cost_alert_threshold > 0 else None
        )
    return config
