import json
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from agentmeter.errors import ConfigError
from agentmeter.fetcher import DEFAULT_ALL_TIME_START
from agentmeter.models import AgentRecord
from agentmeter.provider.anthropic import ANTHROPIC_BASE_URL


def _parse_threshold(raw: "str") -> "float | None":
    if not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"cost alert threshold is not a number: {raw!r}") from exc
    if value <= 0:
        return None
    return value


def _parse_date(raw: "str") -> "date":
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ConfigError(f"all-time start is not a YYYY-MM-DD date: {raw!r}") from exc


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # refresh interval in seconds
    refresh_interval: "int" = 300
    log_level: "str" = "info"

    admin_api_key: "str" = ""
    base_url: "str" = ANTHROPIC_BASE_URL
    agents_file: "str" = ""
    cost_alert_threshold: "float | None" = None
    # model whose tier prices usage rows that carry no recognisable model
    default_model: "str" = ""
    all_time_start: "date" = DEFAULT_ALL_TIME_START

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            admin_api_key=os.environ.get("ANTHROPIC_ADMIN_KEY", ""),
            base_url=os.environ.get("ANTHROPIC_BASE_URL", ANTHROPIC_BASE_URL),
            agents_file=os.environ.get("AGENTMETER_AGENTS_FILE", ""),
            cost_alert_threshold=_parse_threshold(
                os.environ.get("AGENTMETER_COST_ALERT_THRESHOLD", "")
            ),
            default_model=os.environ.get("AGENTMETER_DEFAULT_MODEL", ""),
            all_time_start=_parse_date(
                os.environ.get(
                    "AGENTMETER_ALL_TIME_START", DEFAULT_ALL_TIME_START.isoformat()
                )
            ),
        )

    @property
    def usage_enabled(self) -> "bool":
        return bool(self.admin_api_key)


def load_agents(path: "str") -> "list[AgentRecord]":
    """
    reads the agent list from a JSON file holding an array of
    {name, slug, credentialId, color} objects. No path, or a path that
    does not exist, means no agents are tracked.
    """
    if not path:
        return []

    agents_path = Path(path)
    if not agents_path.exists():
        return []

    try:
        raw = json.loads(agents_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"cannot read agents file {path}: {exc}") from exc

    if not isinstance(raw, list):
        raise ConfigError(f"agents file {path} must hold a JSON array")

    agents: "list[AgentRecord]" = []
    seen: "set[str]" = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ConfigError(f"agent entry is not an object: {entry!r}")

        credential_id = entry.get("credentialId") or entry.get("credential_id")
        name = entry.get("name")
        if not credential_id or not name:
            raise ConfigError(f"agent entry needs name and credentialId: {entry!r}")

        slug = str(entry.get("slug") or name).lower()
        if slug in seen:
            raise ConfigError(f"duplicate agent slug: {slug}")
        seen.add(slug)

        agents.append(
            AgentRecord(
                name=str(name),
                slug=slug,
                credential_id=str(credential_id),
                color=str(entry.get("color") or "#007acc"),
            )
        )

    return agents
