import subprocess
from contextlib import contextmanager

import pytest

from fleetship.constants import PROXY_BINARY, PROXY_CONTAINER_NAME
from fleetship.errors import DeployError


class RecordingLogger:
    def __init__(self):
        self.records = []

    def _record(self, level, message, *args):
        self.records.append((level, message % args if args else message))

    def debug(self, message, *args, **_kwargs):
        self._record("debug", message, *args)

    def info(self, message, *args, **_kwargs):
        self._record("info", message, *args)

    def warning(self, message, *args, **_kwargs):
        self._record("warning", message, *args)

    def error(self, message, *args, **_kwargs):
        self._record("error", message, *args)

    def exception(self, message, *args, **_kwargs):
        self._record("error", message, *args)

    def messages(self, level):
        return [message for record_level, message in self.records if record_level == level]


class DummyConsole:
    def __init__(self):
        self.lines = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))


class FakeEngine:
    """In-memory stand-in for DockerEngine on one host."""

    def __init__(
        self,
        host="s1",
        network=True,
        proxy_running=True,
        pull_ok=True,
        run_ok=True,
        http_statuses=None,
        proxy_config_ok=True,
        login_error=None,
        stop_errors=(),
        rename_error=None,
        prune_error=None,
        build_error=None,
        push_error=None,
        health="healthy",
    ):
        self.host = host
        self.network = network
        self.proxy_running = proxy_running
        self.pull_ok = pull_ok
        self.run_ok = run_ok
        self.http_statuses = list(http_statuses) if http_statuses is not None else None
        self.proxy_config_ok = proxy_config_ok
        self.login_error = login_error
        self.stop_errors = set(stop_errors)
        self.rename_error = rename_error
        self.prune_error = prune_error
        self.build_error = build_error
        self.push_error = push_error
        self.health = health
        self.containers = {}
        self.calls = []
        self.push_options = None

    def add_container(self, name, labels, running=True):
        self.containers[name] = {"labels": dict(labels), "running": running, "spec": None}

    def live_containers(self):
        return sorted(name for name, data in self.containers.items() if data["running"])

    def call_names(self):
        return [call[0] for call in self.calls]

    def network_exists(self, name):
        self.calls.append(("network_exists", name))
        return self.network

    def running_container_names(self, name):
        self.calls.append(("ps", name))
        return [PROXY_CONTAINER_NAME] if self.proxy_running else []

    def container_exists(self, name):
        self.calls.append(("container_exists", name))
        return name in self.containers

    def list_containers(self, labels):
        self.calls.append(("list", tuple(labels)))
        wanted = dict(labels)
        return [
            name
            for name, data in self.containers.items()
            if all(data["labels"].get(key) == value for key, value in wanted.items())
        ]

    def is_running(self, name, timeout=None):
        self.calls.append(("inspect", name, timeout))
        return self.containers.get(name, {}).get("running", False)

    def health_status(self, name, timeout=None):
        self.calls.append(("inspect", name, timeout))
        return self.health

    def pull_image(self, image):
        self.calls.append(("pull", image))
        return self.pull_ok

    def login(self, registry, username, password):
        self.calls.append(("login", registry, username))
        if self.login_error:
            raise DeployError(self.login_error)

    def logout(self, registry):
        self.calls.append(("logout", registry))

    def build(self, spec, tag):
        self.calls.append(("build", tag))
        if self.build_error:
            raise DeployError(self.build_error)

    def tag(self, source, target):
        self.calls.append(("tag", source, target))
        if self.build_error:
            raise DeployError(self.build_error)

    def push(self, image, **run_options):
        self.calls.append(("push", image))
        self.push_options = run_options
        if self.push_error:
            raise DeployError(self.push_error)

    def run_container(self, spec, secrets=()):
        self.calls.append(("run", spec.name))
        if not self.run_ok:
            return False
        self.containers[spec.name] = {"labels": dict(spec.labels), "running": True, "spec": spec}
        return True

    def stop_container(self, name):
        self.calls.append(("stop", name))
        if name in self.stop_errors:
            raise DeployError(f"cannot stop {name}")
        self.containers[name]["running"] = False

    def remove_container(self, name):
        self.calls.append(("rm", name))
        del self.containers[name]

    def rename_container(self, name, new_name):
        self.calls.append(("rename", name, new_name))
        if self.rename_error:
            raise DeployError(self.rename_error)
        self.containers[new_name] = self.containers.pop(name)

    def prune(self):
        self.calls.append(("prune",))
        if self.prune_error:
            raise DeployError(self.prune_error)

    def exec(self, container, args, timeout=None):
        self.calls.append(("exec", container, tuple(args)))
        if args[0] == "curl":
            status = self.http_statuses.pop(0) if self.http_statuses else "200"
            return subprocess.CompletedProcess(args, 0, stdout=status, stderr="")
        if args[0] == PROXY_BINARY:
            return subprocess.CompletedProcess(args, 0 if self.proxy_config_ok else 1, stdout="", stderr="")
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


class FakeSession:
    def __init__(self, host):
        self.host = host

    def run(self, *_args, **_kwargs):
        raise AssertionError("FakeEngine should be used instead of raw commands")


class FakeConnector:
    """Replaces SSHConnector; tracks opened/closed sessions per host."""

    def __init__(self, engines, unreachable=()):
        self.engines = engines
        self.unreachable = set(unreachable)
        self.opened = []
        self.closed = []

    def __call__(self, settings, secrets, logger):
        return self

    @contextmanager
    def open(self, host):
        if host in self.unreachable:
            raise DeployError(f"Failed to connect to {host}")
        self.opened.append(host)
        try:
            yield FakeSession(host)
        finally:
            self.closed.append(host)

    def engine_factory(self, run_cmd, host, logger):
        return self.engines[host]


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture
def console():
    return DummyConsole()


@pytest.fixture
def fake_engine_cls():
    return FakeEngine


@pytest.fixture
def fake_connector_cls():
    return FakeConnector
