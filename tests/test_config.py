"""Tests for DeploymentConfig loading and SettingsManager layering."""

from __future__ import annotations

import json

import pytest

from deploykit.config import DeploymentConfig, DeployWindow, EnvironmentPolicy, TargetSpec
from deploykit.errors import ConfigError, UnknownEnvironmentError
from deploykit.settings import SettingsManager

CONFIG_YAML = """\
project: billing
environments:
  - name: dev
    target: {type: local, path: envs/dev}
  - name: staging
    requires_approval: true
    approvers: [bob]
    health_checks:
      - {type: http, url: "http://staging.internal/health"}
  - name: production
    requires_approval: true
    required_approvals: 2
    deploy_windows:
      - {days: [0, 1, 2, 3], start: "9:00", end: "16:30"}
"""


class TestDeploymentConfig:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text(CONFIG_YAML)
        config = DeploymentConfig.load(path)
        assert config.project == "billing"
        assert config.environment_names == ["dev", "staging", "production"]
        assert config.environment("dev").target.path == "envs/dev"
        assert config.environment("production").required_approvals == 2

    def test_defaults(self):
        policy = EnvironmentPolicy(name="dev")
        assert policy.requires_approval is False
        assert policy.auto_rollback is True
        assert policy.health_retries == 3

    def test_health_check_name_defaults_to_url(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text(CONFIG_YAML)
        check = DeploymentConfig.load(path).environment("staging").health_checks[0]
        assert check.name == "http://staging.internal/health"

    def test_window_times_normalised(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text(CONFIG_YAML)
        window = DeploymentConfig.load(path).environment("production").deploy_windows[0]
        assert window.start == "09:00"
        assert window.end == "16:30"

    def test_load_json(self, tmp_path):
        path = tmp_path / "deploykit.json"
        path.write_text(json.dumps({"environments": [{"name": "dev"}]}))
        assert DeploymentConfig.load(path).environment_names == ["dev"]

    def test_discover(self, tmp_path):
        (tmp_path / "deploykit.yml").write_text("environments: [{name: qa}]\n")
        assert DeploymentConfig.discover(tmp_path).environment_names == ["qa"]

    def test_discover_missing(self, tmp_path):
        with pytest.raises(ConfigError):
            DeploymentConfig.discover(tmp_path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            DeploymentConfig.load(tmp_path / "nope.yaml")

    def test_load_invalid_yaml(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text("environments: [unclosed\n")
        with pytest.raises(ConfigError, match="Could not parse"):
            DeploymentConfig.load(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text("- dev\n- prod\n")
        with pytest.raises(ConfigError, match="mapping"):
            DeploymentConfig.load(path)

    def test_duplicate_environments_rejected(self):
        with pytest.raises(ConfigError, match="duplicate"):
            DeploymentConfig.from_dict({"environments": [{"name": "dev"}, {"name": "dev"}]})

    def test_invalid_version_pattern_rejected(self, tmp_path):
        path = tmp_path / "deploykit.yaml"
        path.write_text("environments:\n  - name: dev\n    version_pattern: '^(1\\.'\n")
        with pytest.raises(ConfigError, match="version_pattern"):
            DeploymentConfig.load(path)

    def test_empty_chain_rejected(self):
        with pytest.raises(ConfigError):
            DeploymentConfig.from_dict({"environments": []})

    def test_blank_environment_name_rejected(self):
        with pytest.raises(ConfigError):
            DeploymentConfig.from_dict({"environments": [{"name": "  "}]})

    def test_local_target_requires_path(self):
        with pytest.raises(ValueError):
            TargetSpec(type="local")

    def test_command_target_requires_apply(self):
        with pytest.raises(ValueError):
            TargetSpec(type="command")

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            DeployWindow(start="25:00")
        with pytest.raises(ValueError):
            DeployWindow(days=[7])


class TestEnvironmentChain:
    def test_neighbours(self, config):
        assert config.previous_environment("dev") is None
        assert config.previous_environment("staging").name == "dev"
        assert config.next_environment("staging").name == "production"
        assert config.next_environment("production") is None

    def test_index_of(self, config):
        assert config.index_of("production") == 2

    def test_unknown_environment(self, config):
        with pytest.raises(UnknownEnvironmentError) as exc_info:
            config.environment("qa")
        assert exc_info.value.name == "qa"
        assert "qa" in str(exc_info.value)
        assert not config.has_environment("qa")

    def test_unknown_environment_is_key_error(self, config):
        with pytest.raises(KeyError):
            config.index_of("qa")


_KEYS = (
    "DEPLOYKIT_ENV", "DEPLOYKIT_CONFIG", "DEPLOYKIT_STATE_DIR", "DEPLOYKIT_LOG_LEVEL",
    "DEPLOYKIT_LOCK_TIMEOUT", "DEPLOYKIT_AUDIT_DB", "SLACK_WEBHOOK", "TEAMS_WEBHOOK",
    "DISCORD_WEBHOOK",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettingsManager:
    def test_defaults_use_development_profile(self, tmp_path, clean_env):
        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_ENV"] == "development"
        assert settings["DEPLOYKIT_LOG_LEVEL"] == "DEBUG"
        assert settings["DEPLOYKIT_AUDIT_DB"] == "audit.db"

    def test_testing_profile_uses_memory_audit(self, tmp_path, clean_env):
        clean_env.setenv("DEPLOYKIT_ENV", "testing")
        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_AUDIT_DB"] == ":memory:"

    def test_profile_selected_from_dotenv(self, tmp_path, clean_env):
        (tmp_path / ".env").write_text("DEPLOYKIT_ENV=production\n")
        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_LOG_LEVEL"] == "WARNING"

    def test_layering_order(self, tmp_path, clean_env):
        state = tmp_path / ".deploykit"
        state.mkdir()
        (state / "settings.json").write_text(json.dumps({
            "DEPLOYKIT_LOG_LEVEL": "ERROR",
            "DEPLOYKIT_LOCK_TIMEOUT": 60,
        }))
        (tmp_path / ".env").write_text(
            "# secrets\nSLACK_WEBHOOK='https://hooks.example/abc'\nDEPLOYKIT_LOCK_TIMEOUT=90\n"
        )
        clean_env.setenv("DEPLOYKIT_LOCK_TIMEOUT", "120")

        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_LOG_LEVEL"] == "ERROR"
        assert settings["SLACK_WEBHOOK"] == "https://hooks.example/abc"
        assert settings["DEPLOYKIT_LOCK_TIMEOUT"] == "120"

    def test_corrupt_settings_json_ignored(self, tmp_path, clean_env):
        state = tmp_path / ".deploykit"
        state.mkdir()
        (state / "settings.json").write_text("{not json")
        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_ENV"] == "development"

    def test_generate_env_template(self, tmp_path):
        path = SettingsManager().generate_env_template(tmp_path)
        text = path.read_text()
        assert path.name == ".env.example"
        assert "SLACK_WEBHOOK=" in text
        assert "DEPLOYKIT_ENV=development" in text
        assert text.index("DEPLOYKIT_AUDIT_DB=") < text.index("## Secrets") < text.index("SLACK_WEBHOOK=")

    def test_env_template_is_loadable(self, tmp_path, clean_env):
        path = SettingsManager().generate_env_template(tmp_path)
        path.rename(tmp_path / ".env")
        settings = SettingsManager().load_settings(tmp_path)
        assert settings["DEPLOYKIT_ENV"] == "development"
        assert settings["DEPLOYKIT_AUDIT_DB"] == "audit.db"

    def test_export_prefix_in_dotenv(self, tmp_path, clean_env):
        (tmp_path / ".env").write_text("export TEAMS_WEBHOOK=\"https://teams.example/x\"\n")
        assert SettingsManager().load_settings(tmp_path)["TEAMS_WEBHOOK"] == "https://teams.example/x"
