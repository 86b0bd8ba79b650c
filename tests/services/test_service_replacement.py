from fleetship.constants import LABEL_PROJECT, LABEL_SERVICE
from fleetship.models import (
    DeploymentContext,
    DeploymentState,
    EnvironmentSpec,
    ProjectConfig,
    ServiceEntry,
)
from fleetship.services.registry import RegistryAuthenticator
from fleetship.services.service_replacement import ServiceReplacer


def _service(**overrides):
    values = {
        "name": "db",
        "image": "postgres:17",
        "servers": ("s1",),
        "ports": ("5432:5432",),
        "environment": EnvironmentSpec(secret=("POSTGRES_PASSWORD",)),
    }
    values.update(overrides)
    return ServiceEntry(**values)


def _context(service, secrets=None, docker_username=None):
    return DeploymentContext(
        config=ProjectConfig(name="shop", services=(service,), docker_username=docker_username),
        secrets=secrets if secrets is not None else {"POSTGRES_PASSWORD": "pw"},
        release_id="20261018120000000001",
        project_name="shop",
        network_name="shop-network",
        target_entries=(service,),
        deploy_services=True,
    )


def test_first_deploy_without_prior_container_is_a_logged_noop(logger, fake_engine_cls):
    engine = fake_engine_cls()
    service = _service()

    outcome = ServiceReplacer(logger, RegistryAuthenticator(logger)).deploy(
        service, "s1", engine, _context(service)
    )

    assert outcome.state == DeploymentState.DONE
    assert "stop" not in engine.call_names()
    assert "rm" not in engine.call_names()
    assert engine.live_containers() == ["db"]
    assert any("nothing to stop" in message for message in logger.messages("info"))


def test_existing_container_is_replaced_under_the_same_name(logger, fake_engine_cls):
    engine = fake_engine_cls()
    engine.add_container("db", {LABEL_PROJECT: "shop", LABEL_SERVICE: "db"})
    service = _service()

    outcome = ServiceReplacer(logger, RegistryAuthenticator(logger)).deploy(
        service, "s1", engine, _context(service)
    )

    assert outcome.state == DeploymentState.DONE
    assert engine.call_names() == [
        "pull",
        "container_exists",
        "stop",
        "rm",
        "run",
        "prune",
    ]
    spec = engine.containers["db"]["spec"]
    assert spec.name == "db"
    assert spec.image == "postgres:17"
    assert spec.alias is None
    assert spec.env == (("POSTGRES_PASSWORD", "pw"),)


def test_pull_failure_keeps_existing_container(logger, fake_engine_cls):
    engine = fake_engine_cls(pull_ok=False)
    engine.add_container("db", {LABEL_PROJECT: "shop", LABEL_SERVICE: "db"})
    service = _service()

    outcome = ServiceReplacer(logger, RegistryAuthenticator(logger)).deploy(
        service, "s1", engine, _context(service)
    )

    assert outcome.state == DeploymentState.FAILED
    assert engine.live_containers() == ["db"]


def test_prune_failure_is_a_warning(logger, fake_engine_cls):
    engine = fake_engine_cls(prune_error="prune exploded")
    service = _service()

    outcome = ServiceReplacer(logger, RegistryAuthenticator(logger)).deploy(
        service, "s1", engine, _context(service)
    )

    assert outcome.state == DeploymentState.DONE
    assert outcome.warnings == ["Prune failed: prune exploded"]


def test_project_registry_login_wraps_pull(logger, fake_engine_cls):
    engine = fake_engine_cls()
    service = _service()
    context = _context(
        service,
        secrets={"POSTGRES_PASSWORD": "pw", "DOCKER_REGISTRY_PASSWORD": "regpw"},
        docker_username="shop-bot",
    )

    ServiceReplacer(logger, RegistryAuthenticator(logger)).deploy(service, "s1", engine, context)

    assert engine.call_names()[:3] == ["login", "pull", "logout"]
    assert engine.calls[0] == ("login", "docker.io", "shop-bot")
