import json
from datetime import date
from pathlib import Path

import pytest

from agentmeter.__main__ import main
from agentmeter.cli import parse_args
from agentmeter.config import Config, load_agents
from agentmeter.errors import ConfigError
from agentmeter.models import AgentRecord

_ENV_VARS = (
    "ANTHROPIC_ADMIN_KEY",
    "ANTHROPIC_BASE_URL",
    "AGENTMETER_AGENTS_FILE",
    "AGENTMETER_COST_ALERT_THRESHOLD",
    "AGENTMETER_DEFAULT_MODEL",
    "AGENTMETER_ALL_TIME_START",
)


@pytest.fixture()
def clean_env(monkeypatch: "pytest.MonkeyPatch") -> "pytest.MonkeyPatch":
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestConfigFromEnv:
    def test_defaults(self, clean_env: "pytest.MonkeyPatch") -> "None":
        config = Config.from_env()
        assert config.admin_api_key == ""
        assert config.base_url == "https://api.anthropic.com"
        assert config.agents_file == ""
        assert config.cost_alert_threshold is None
        assert config.all_time_start == date(2024, 1, 1)

    def test_reads_env_vars(self, clean_env: "pytest.MonkeyPatch") -> "None":
        clean_env.setenv("ANTHROPIC_ADMIN_KEY", "sk-ant-admin-123")
        clean_env.setenv("AGENTMETER_AGENTS_FILE", "/etc/agentmeter/agents.json")
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "250.5")
        clean_env.setenv("AGENTMETER_DEFAULT_MODEL", "claude-sonnet-4")
        clean_env.setenv("AGENTMETER_ALL_TIME_START", "2025-03-01")
        config = Config.from_env()
        assert config.admin_api_key == "sk-ant-admin-123"
        assert config.agents_file == "/etc/agentmeter/agents.json"
        assert config.cost_alert_threshold == 250.5
        assert config.default_model == "claude-sonnet-4"
        assert config.all_time_start == date(2025, 3, 1)

    def test_non_positive_threshold_is_unset(
        self, clean_env: "pytest.MonkeyPatch"
    ) -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "0")
        assert Config.from_env().cost_alert_threshold is None

    def test_invalid_values_raise(self, clean_env: "pytest.MonkeyPatch") -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "lots")
        with pytest.raises(ConfigError):
            Config.from_env()

        clean_env.delenv("AGENTMETER_COST_ALERT_THRESHOLD")
        clean_env.setenv("AGENTMETER_ALL_TIME_START", "last year")
        with pytest.raises(ConfigError):
            Config.from_env()


class TestUsageEnabled:
    def test_enabled_when_key_set(self) -> "None":
        assert Config(admin_api_key="sk-ant-admin").usage_enabled is True

    def test_disabled_when_key_empty(self) -> "None":
        assert Config(admin_api_key="").usage_enabled is False


class TestParseArgs:
    def test_flags_override_env(self, clean_env: "pytest.MonkeyPatch") -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "10")
        config = parse_args(
            [
                "--refresh.interval",
                "60",
                "--agents.file",
                "agents.json",
                "--cost.alert-threshold",
                "99.5",
            ]
        )
        assert config.refresh_interval == 60
        assert config.agents_file == "agents.json"
        assert config.cost_alert_threshold == 99.5

    def test_env_kept_without_flags(self, clean_env: "pytest.MonkeyPatch") -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "10")
        config = parse_args([])
        assert config.cost_alert_threshold == 10.0
        assert config.refresh_interval == 300
        assert config.listen_address == ":9186"

    @pytest.mark.parametrize("value", ["0", "-5"])
    def test_non_positive_threshold_flag_disables_alert(
        self, clean_env: "pytest.MonkeyPatch", value: "str"
    ) -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "10")
        config = parse_args([f"--cost.alert-threshold={value}"])
        assert config.cost_alert_threshold is None


class TestMainStartup:
    def test_bad_environment_exits_cleanly(
        self, clean_env: "pytest.MonkeyPatch"
    ) -> "None":
        clean_env.setenv("AGENTMETER_COST_ALERT_THRESHOLD", "lots")
        clean_env.setattr("sys.argv", ["agentmeter"])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert "not a number" in str(exc_info.value.code)


class TestLoadAgents:
    def test_reads_agent_records(self, tmp_path: "Path") -> "None":
        path = tmp_path / "agents.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "name": "Atlas",
                        "slug": "atlas",
                        "credentialId": "apikey_01",
                        "color": "#ff8800",
                    },
                    {"name": "Nova", "credentialId": "apikey_02"},
                ]
            )
        )
        assert load_agents(str(path)) == [
            AgentRecord(
                name="Atlas", slug="atlas", credential_id="apikey_01", color="#ff8800"
            ),
            AgentRecord(name="Nova", slug="nova", credential_id="apikey_02"),
        ]

    def test_missing_file_means_no_agents(self, tmp_path: "Path") -> "None":
        assert load_agents("") == []
        assert load_agents(str(tmp_path / "absent.json")) == []

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            json.dumps({"name": "Atlas"}),
            json.dumps([{"name": "Atlas"}]),
            json.dumps(
                [
                    {"name": "A", "slug": "x", "credentialId": "1"},
                    {"name": "B", "slug": "x", "credentialId": "2"},
                ]
            ),
        ],
    )
    def test_rejects_malformed_files(self, tmp_path: "Path", content: "str") -> "None":
        path = tmp_path / "agents.json"
        path.write_text(content)
        with pytest.raises(ConfigError):
            load_agents(str(path))
