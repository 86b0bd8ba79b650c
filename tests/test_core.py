import json
import subprocess
from datetime import datetime, timezone

import pytest

from fleetship.constants import LABEL_APP, LABEL_PROJECT
from fleetship.core import Deployer, select_targets
from fleetship.models import AppEntry, DeploymentState, PhaseStatus
from fleetship.services.release import ReleaseIdGenerator

RELEASE = "20261018120000000001"

CONFIG = """
name: shop
apps:
  web:
    image: shop/web
    servers: [s1, s2]
    proxy:
      hosts: [shop.example.com]
      app_port: 3000
    health_check:
      attempts: 2
      success_threshold: 1
      interval_seconds: 0
  worker:
    image: shop/worker
    servers: [s1]
    build:
      context: .
services:
  db:
    image: postgres:17
    servers: [s1]
    environment:
      secret: [POSTGRES_PASSWORD]
"""


@pytest.fixture
def project(tmp_path):
    config_file = tmp_path / "fleetship.yml"
    config_file.write_text(CONFIG, encoding="utf-8")
    secrets_file = tmp_path / "secrets"
    secrets_file.write_text("POSTGRES_PASSWORD=pw\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def engines(fake_engine_cls):
    return {
        "local": fake_engine_cls(host="local"),
        "s1": fake_engine_cls(host="s1"),
        "s2": fake_engine_cls(host="s2"),
    }


def build_deployer(project, connector, logger, console, **kwargs):
    kwargs.setdefault("force", True)
    return Deployer(
        config_file=str(project / "fleetship.yml"),
        secrets_file=str(project / "secrets"),
        log=logger,
        out=console,
        connector_factory=connector,
        engine_factory=connector.engine_factory,
        release_ids=ReleaseIdGenerator(clock=lambda: datetime(2026, 10, 18, 12, 0, 0, 1, tzinfo=timezone.utc)),
        sleep=lambda _seconds: None,
        **kwargs,
    )


def test_select_targets_warns_about_unknown_names(logger):
    web = AppEntry(name="web", image="shop/web", servers=("s1",))

    targets = select_targets(["web", "ghost", "web"], [web], "app", logger)

    assert targets == [web]
    assert logger.messages("warning") == ['App "ghost" not found in configuration']


def test_unknown_target_names_only_abort_before_any_connection(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["ghost"])

    assert deployer.run() == 1

    assert deployer.phases[-1].name == "resolve_targets"
    assert deployer.phases[-1].status == PhaseStatus.FATAL
    assert "No apps selected for deployment." in deployer.phases[-1].error
    assert connector.opened == []


def test_blue_green_across_servers_with_one_health_failure(project, engines, fake_connector_cls, logger, console):
    old = "web-20261017120000000001"
    engines["s2"].add_container(old, {LABEL_PROJECT: "shop", LABEL_APP: "web"})
    engines["s2"].http_statuses = ["503", "503"]
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["web"])

    exit_code = deployer.run()

    assert exit_code == 1
    states = {outcome.server: outcome.state for outcome in deployer.outcomes}
    assert states == {"s1": DeploymentState.DONE, "s2": DeploymentState.FAILED}
    assert deployer.live_urls() == ["https://shop.example.com"]
    assert "  https://shop.example.com" in console.lines
    assert engines["s1"].live_containers() == [f"web-{RELEASE}"]
    assert engines["s2"].live_containers() == sorted([old, f"web-{RELEASE}-failed"])
    assert connector.opened == connector.closed
    assert engines["local"].calls == [
        ("tag", "shop/web", f"shop/web:{RELEASE}"),
        ("push", f"shop/web:{RELEASE}"),
    ]
    assert engines["local"].push_options == {"retry_count": 2, "retry_backoff_seconds": 5.0}


def test_every_server_reaches_done(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["web"])

    assert deployer.run() == 0

    assert [outcome.server for outcome in deployer.outcomes] == ["s1", "s2"]
    assert all(outcome.state == DeploymentState.DONE for outcome in deployer.outcomes)
    assert "[bold green]Deployment completed successfully.[/bold green]" in console.lines


def test_missing_infrastructure_stops_before_build_and_pull(project, engines, fake_connector_cls, logger, console):
    engines["s2"].network = False
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console)

    assert deployer.run() == 1

    error = deployer.phases[-1].error
    assert deployer.phases[-1].name == "verify_infrastructure"
    assert "docker network create shop-network" in error
    assert "s2" in error
    assert engines["local"].calls == []
    for host in ("s1", "s2"):
        assert "pull" not in engines[host].call_names()
        assert "run" not in engines[host].call_names()


def test_unreachable_server_is_reported_as_missing_infrastructure(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines, unreachable={"s2"})
    deployer = build_deployer(project, connector, logger, console)

    assert deployer.run() == 1

    error = deployer.phases[-1].error
    assert "missing on servers: s2" in error
    assert "not running on servers: s2" in error


def test_build_failure_happens_before_any_server_mutation(project, engines, fake_connector_cls, logger, console):
    engines["local"].build_error = "Dockerfile not found"
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console)

    assert deployer.run() == 1

    assert deployer.phases[-1].name == "build_and_push"
    assert "Image build for app `web` failed." in deployer.phases[-1].error
    assert deployer.outcomes == []
    for host in ("s1", "s2"):
        assert engines[host].call_names() == ["network_exists", "ps"]


def test_push_failure_is_fatal(project, engines, fake_connector_cls, logger, console):
    engines["local"].push_error = "denied"
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["worker"])

    assert deployer.run() == 1

    assert "Pushing image `shop/worker:" in deployer.phases[-1].error
    assert engines["local"].call_names() == ["build", "push"]


def test_service_first_deploy_without_previous_container(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["db"], deploy_services=True)

    assert deployer.run() == 0

    assert [phase.name for phase in deployer.phases] == [
        "verify_clean_workspace",
        "load_config_and_secrets",
        "resolve_targets",
        "verify_infrastructure",
        "deploy",
    ]
    assert engines["s1"].live_containers() == ["db"]
    assert engines["s1"].containers["db"]["spec"].env == (("POSTGRES_PASSWORD", "pw"),)
    assert engines["local"].calls == []
    assert connector.opened == ["s1", "s1"]
    assert connector.closed == ["s1", "s1"]


def test_dirty_workspace_aborts_without_force(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, force=False)
    deployer.command_runner.run = lambda cmd, **_kwargs: subprocess.CompletedProcess(cmd, 0, stdout=" M app.py\n")

    assert deployer.run() == 1

    assert deployer.phases[0].status == PhaseStatus.FATAL
    assert "Uncommitted changes detected" in deployer.phases[0].error
    assert "--force" in deployer.phases[0].error
    assert connector.opened == []


def test_failing_git_is_treated_as_clean(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, force=False, dry_run=True)
    deployer.command_runner.run = lambda cmd, **_kwargs: subprocess.CompletedProcess(cmd, 128, stdout="")

    assert deployer.run() == 0


def test_dry_run_prints_plan_without_touching_servers(project, engines, fake_connector_cls, logger, console):
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, dry_run=True)

    assert deployer.run() == 0

    assert connector.opened == []
    assert engines["local"].calls == []
    assert f"  web: web-{RELEASE} (shop/web:{RELEASE}) → s1, s2" in console.lines
    assert "  network: shop-network" in console.lines


def test_report_file_records_outcomes(project, engines, fake_connector_cls, logger, console):
    report_file = project / "report.json"
    connector = fake_connector_cls(engines)
    deployer = build_deployer(project, connector, logger, console, entry_names=["web"], report_file=str(report_file))

    deployer.run()

    data = json.loads(report_file.read_text(encoding="utf-8"))
    assert data["release_id"] == RELEASE
    assert data["status"] == "success"
    assert data["targets"] == ["web"]
    assert [outcome["server"] for outcome in data["outcomes"]] == ["s1", "s2"]
    assert data["urls"] == ["https://shop.example.com"]


def test_dispatch_rejects_unknown_entry_types(project, engines, fake_connector_cls, logger, console):
    deployer = build_deployer(project, fake_connector_cls(engines), logger, console)

    with pytest.raises(TypeError, match="Unsupported entry type"):
        deployer._dispatch(object(), "s1", engines["s1"])
