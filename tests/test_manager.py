"""End-to-end tests through the DeploymentManager facade."""

from __future__ import annotations

import sys

import pytest

from deploykit import DeploymentManager
from deploykit.errors import ApprovalError, ArtifactError, PromotionError, UnknownEnvironmentError
from deploykit.models import DeploymentStatus, StageStatus
from deploykit.notifications import SlackNotifier
from deploykit.pipeline import PipelineDefinition

PY = f'"{sys.executable}"'

PROJECT_YAML = """\
project: billing
environments:
  - name: dev
    target: {type: local, path: envs/dev}
    health_retries: 1
  - name: production
    requires_approval: true
    approvers: [bob]
    target: {type: local, path: envs/production}
    health_retries: 1
"""

_SETTINGS_KEYS = (
    "DEPLOYKIT_ENV", "DEPLOYKIT_CONFIG", "DEPLOYKIT_STATE_DIR", "DEPLOYKIT_LOG_LEVEL",
    "DEPLOYKIT_LOCK_TIMEOUT", "DEPLOYKIT_AUDIT_DB", "SLACK_WEBHOOK", "TEAMS_WEBHOOK",
    "DISCORD_WEBHOOK",
)


class TestArtifacts:
    def test_publish_tracks_and_audits(self, manager, source):
        ref = manager.publish_artifact(source, "1.0.0", published_by="ci", metadata={"commit": "abc"})
        assert ref.name == "shop"
        assert manager.artifact("1.0.0") == ref
        assert manager.promotion("1.0.0").artifact == ref
        entry = manager.audit_trail(action="artifact_published")[0]
        assert entry.actor == "ci"
        assert entry.details["checksum"] == ref.checksum

    def test_unknown_artifact(self, manager):
        with pytest.raises(ArtifactError):
            manager.artifact("9.9.9")

    def test_named_artifact(self, manager, source):
        manager.publish_artifact(source, "1.0.0", name="worker")
        assert manager.artifact("1.0.0").name == "worker"
        assert manager.deploy("dev", "1.0.0", name="worker").status == DeploymentStatus.SUCCEEDED


class TestPromotion:
    def test_promote_through_chain(self, manager, source, targets):
        manager.publish_artifact(source, "1.0.0")

        stage = manager.promote("1.0.0", requested_by="alice")
        assert stage.environment == "dev"
        assert stage.status == StageStatus.DEPLOYED

        stage = manager.promote("1.0.0", requested_by="alice")
        assert stage.environment == "staging"
        assert stage.status == StageStatus.AWAITING_APPROVAL
        assert targets["staging"].applied == []

        manager.approve("1.0.0", "staging", "bob", comment="lgtm")
        assert manager.promote("1.0.0", "staging", requested_by="alice").status == StageStatus.DEPLOYED

        manager.request_promotion("1.0.0", "production", requested_by="alice")
        manager.approve("1.0.0", "production", "bob")
        manager.approve("1.0.0", "production", "dave")
        assert manager.promote("1.0.0", requested_by="alice").status == StageStatus.DEPLOYED

        assert targets["production"].applied == ["1.0.0"]
        assert manager.promotion("1.0.0").current_environment == "production"
        with pytest.raises(PromotionError, match="every environment"):
            manager.promote("1.0.0")

    def test_promote_awaiting_is_noop(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        manager.promote("1.0.0")
        manager.promote("1.0.0", "staging", requested_by="alice")
        stage = manager.promote("1.0.0", "staging", requested_by="alice")
        assert stage.status == StageStatus.AWAITING_APPROVAL

    def test_promote_already_deployed(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        manager.promote("1.0.0")
        with pytest.raises(PromotionError, match="already deployed"):
            manager.promote("1.0.0", "dev")

    def test_promote_out_of_order(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        with pytest.raises(PromotionError):
            manager.promote("1.0.0", "production")

    def test_rejection(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        manager.promote("1.0.0")
        manager.request_promotion("1.0.0", "staging", requested_by="alice")

        stage = manager.reject("1.0.0", "staging", "carol", reason="missing changelog")
        assert stage.status == StageStatus.REJECTED
        with pytest.raises(ApprovalError):
            manager.approve("1.0.0", "staging", "bob")

        events = [e["type"] for e in manager.dispatcher.console.log]
        assert "promotion_rejected" in events
        assert manager.audit_trail(action="promotion_rejected")[0].details["reason"] == "missing changelog"

    def test_approval_events(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        manager.promote("1.0.0")
        manager.request_promotion("1.0.0", "staging", requested_by="alice")
        manager.approve("1.0.0", "staging", "bob")

        actions = [e.action for e in manager.audit_trail(environment="staging")]
        assert actions == ["promotion_requested", "promotion_approved"]
        types = [e["type"] for e in manager.dispatcher.console.log]
        assert types[-2:] == ["promotion_requested", "promotion_approved"]


class TestQueries:
    def test_deployments_and_current(self, manager, source):
        manager.publish_artifact(source, "1.0.0")
        manager.publish_artifact(source, "1.1.0")
        manager.deploy("dev", "1.0.0")
        manager.deploy("dev", "1.1.0")

        assert [r.version for r in manager.deployments("dev")] == ["1.0.0", "1.1.0"]
        assert len(manager.deployments(version="1.1.0")) == 1
        assert manager.current_version("dev") == "1.1.0"
        assert manager.current_version("staging") is None

    def test_unknown_environment(self, manager):
        with pytest.raises(UnknownEnvironmentError):
            manager.current_version("qa")
        with pytest.raises(UnknownEnvironmentError):
            manager.check_health("qa")

    def test_check_health(self, manager, source, bad_versions):
        manager.publish_artifact(source, "1.0.0")
        manager.deploy("dev", "1.0.0")
        assert manager.check_health("dev").healthy
        bad_versions.add("1.0.0")
        report = manager.check_health("dev")
        assert not report.healthy
        assert report.failures[0].name == "app"

    def test_health_checks_for_unknown_environment_rejected(self, manager_factory, config):
        with pytest.raises(UnknownEnvironmentError):
            manager_factory(config, health_checks={"qa": []})

    def test_extra_notifier(self, manager_factory, config, source, monkeypatch):
        sent = []
        slack = SlackNotifier("https://hooks.slack.test/x")
        monkeypatch.setattr(slack, "notify", lambda event: sent.append(event) or True)

        manager = manager_factory(config, notifiers=[slack])
        manager.publish_artifact(source, "1.0.0")
        manager.deploy("dev", "1.0.0")
        assert [e["type"] for e in sent] == ["deploy_started", "deploy_succeeded"]


class TestPipelines:
    def test_run_pipeline_is_audited(self, manager):
        definition = PipelineDefinition.model_validate({
            "name": "billing",
            "stages": [{"name": "Build", "steps": [f"{PY} -c \"pass\""]}],
        })
        result = manager.run_pipeline(definition, requested_by="ci")
        assert result.success
        entry = manager.audit_trail(action="pipeline_succeeded")[0]
        assert entry.details["pipeline"] == "billing"
        assert entry.details["run_id"] == result.run_id

    def test_run_pipeline_from_file(self, manager):
        manager.root.mkdir(parents=True, exist_ok=True)
        (manager.root / "pipeline.yaml").write_text(
            "name: smoke\n"
            "stages:\n"
            f"  - name: Fail\n    steps: ['{PY} -c \"import sys; sys.exit(1)\"']\n"
        )
        result = manager.run_pipeline("pipeline.yaml")
        assert not result.success
        assert manager.audit_trail(action="pipeline_failed")[0].details["failed_stage"] == "Fail"


@pytest.fixture
def project(tmp_path, monkeypatch):
    for key in _SETTINGS_KEYS:
        monkeypatch.delenv(key, raising=False)
    root = tmp_path / "billing"
    root.mkdir()
    (root / "deploykit.yaml").write_text(PROJECT_YAML)
    return root


class TestFromProject:
    def test_deploys_to_local_directories(self, project, source, monkeypatch):
        monkeypatch.setenv("DEPLOYKIT_ENV", "testing")
        with DeploymentManager.from_project(project) as manager:
            manager.publish_artifact(source, "1.0.0")
            record = manager.deploy("dev", "1.0.0", requested_by="ci")

            assert record.status == DeploymentStatus.SUCCEEDED
            assert (project / "envs" / "dev" / "CURRENT").read_text().strip() == "1.0.0"
            assert (project / "envs" / "dev" / "releases" / "1.0.0" / "app.py").is_file()
            assert (project / ".deploykit" / "artifacts" / "billing" / "1.0.0").is_dir()
            assert not (project / ".deploykit" / "audit.db").exists()

    def test_audit_db_defaults_to_state_dir(self, project, source):
        with DeploymentManager.from_project(project) as manager:
            manager.publish_artifact(source, "1.0.0")
        assert (project / ".deploykit" / "audit.db").is_file()

    def test_settings_override_state_dir(self, project, monkeypatch):
        monkeypatch.setenv("DEPLOYKIT_STATE_DIR", "var/state")
        monkeypatch.setenv("DEPLOYKIT_LOCK_TIMEOUT", "45")
        with DeploymentManager.from_project(project) as manager:
            assert manager.state_dir == project / "var" / "state"
            assert manager.lock.timeout == 45.0
        assert (project / "var" / "state" / "audit.db").is_file()

    def test_webhooks_from_dotenv(self, project):
        (project / ".env").write_text("DEPLOYKIT_ENV=testing\nSLACK_WEBHOOK=https://hooks.slack.test/x\n")
        with DeploymentManager.from_project(project) as manager:
            assert any(isinstance(p, SlackNotifier) for p in manager.dispatcher.providers)
            assert manager.config.notifications.slack_webhook == "https://hooks.slack.test/x"

    def test_explicit_config_path(self, tmp_path, project, monkeypatch):
        other = tmp_path / "other.yaml"
        other.write_text("project: other\nenvironments: [{name: qa}]\n")
        monkeypatch.setenv("DEPLOYKIT_CONFIG", str(other))
        monkeypatch.setenv("DEPLOYKIT_ENV", "testing")
        with DeploymentManager.from_project(project) as manager:
            assert manager.config.project == "other"
            assert manager.config.environment_names == ["qa"]
