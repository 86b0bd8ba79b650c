"""Docker CLI wrapper used both locally and over SSH."""

import subprocess
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from fleetship.constants import DEFAULT_BUILD_PLATFORM
from fleetship.models import BuildSpec, ContainerSpec


class DockerEngine:
    """Host-scoped docker command surface.

    ``run_cmd`` is either ``CommandRunner.run`` (local builds and pushes) or
    ``RemoteSession.run`` (everything that touches a server).
    """

    def __init__(self, run_cmd: Callable[..., subprocess.CompletedProcess], host: str, logger):
        self.run_cmd = run_cmd
        self.host = host
        self.logger = logger

    def _run(self, cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        return self.run_cmd(cmd, check=check, capture_output=True, **kwargs)

    def network_exists(self, name: str) -> bool:
        return self._run(["docker", "network", "inspect", name], check=False).returncode == 0

    def container_exists(self, name: str) -> bool:
        return self._run(["docker", "container", "inspect", name], check=False).returncode == 0

    def inspect(self, name: str, template: str, timeout: Optional[float] = None) -> Optional[str]:
        result = self._run(
            ["docker", "inspect", "--format", template, name], check=False, timeout=timeout
        )
        if result.returncode != 0:
            return None
        return (result.stdout or "").strip()

    def is_running(self, name: str, timeout: Optional[float] = None) -> bool:
        return self.inspect(name, "{{.State.Running}}", timeout=timeout) == "true"

    def health_status(self, name: str, timeout: Optional[float] = None) -> Optional[str]:
        return self.inspect(
            name,
            "{{if .State.Health}}{{.State.Health.Status}}{{else}}none{{end}}",
            timeout=timeout,
        )

    def running_container_names(self, name: str) -> List[str]:
        result = self._run(
            [
                "docker",
                "ps",
                "--filter",
                f"name=^{name}$",
                "--filter",
                "status=running",
                "--format",
                "{{.Names}}",
            ]
        )
        return _lines(result.stdout)

    def list_containers(self, labels: Sequence[Tuple[str, str]]) -> List[str]:
        cmd = ["docker", "ps", "-a"]
        for key, value in labels:
            cmd += ["--filter", f"label={key}={value}"]
        cmd += ["--format", "{{.Names}}"]
        return _lines(self._run(cmd).stdout)

    def pull_image(self, image: str) -> bool:
        result = self._run(["docker", "pull", image], check=False)
        if result.returncode != 0:
            self.logger.error(
                "Failed to pull %s on %s: %s", image, self.host, (result.stderr or "").strip()
            )
            return False
        return True

    def login(self, registry: str, username: str, password: str):
        self._run(
            ["docker", "login", registry, "-u", username, "--password-stdin"],
            input_text=password,
            secrets=(password,),
        )

    def logout(self, registry: str):
        self._run(["docker", "logout", registry], check=False)

    def build(self, spec: BuildSpec, tag: str):
        cmd = [
            "docker",
            "build",
            "--platform",
            spec.platform or DEFAULT_BUILD_PLATFORM,
            "-f",
            spec.dockerfile,
            "-t",
            tag,
        ]
        if spec.target:
            cmd += ["--target", spec.target]
        for key, value in spec.args:
            cmd += ["--build-arg", f"{key}={value}"]
        cmd.append(spec.context)
        self._run(cmd)

    def tag(self, source: str, target: str):
        self._run(["docker", "tag", source, target])

    def push(self, image: str, **run_options):
        """Pushes ``image``; ``run_options`` (retries, timeout) go to the local runner."""
        self._run(["docker", "push", image], **run_options)

    def run_container(self, spec: ContainerSpec, secrets: Iterable[str] = ()) -> bool:
        cmd = ["docker", "run", "-d", "--name", spec.name, "--network", spec.network]
        if spec.alias:
            cmd += ["--network-alias", spec.alias]
        cmd += ["--restart", spec.restart]
        for key, value in spec.labels:
            cmd += ["--label", f"{key}={value}"]
        for port in spec.ports:
            cmd += ["-p", port]
        for volume in spec.volumes:
            cmd += ["-v", volume]
        for key, value in spec.env:
            cmd += ["-e", f"{key}={value}"]
        cmd.append(spec.image)

        result = self._run(cmd, check=False, secrets=tuple(secrets))
        if result.returncode != 0:
            self.logger.error(
                "Failed to create container %s on %s: %s",
                spec.name,
                self.host,
                (result.stderr or "").strip(),
            )
            return False
        return True

    def stop_container(self, name: str):
        self._run(["docker", "stop", name])

    def remove_container(self, name: str):
        self._run(["docker", "rm", name])

    def rename_container(self, name: str, new_name: str):
        self._run(["docker", "rename", name, new_name])

    def prune(self):
        self._run(["docker", "container", "prune", "-f"])
        self._run(["docker", "image", "prune", "-f"])

    def exec(self, container: str, args: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        return self._run(["docker", "exec", container] + list(args), check=False, timeout=timeout)


def _lines(output: Optional[str]) -> List[str]:
    return [line.strip() for line in (output or "").splitlines() if line.strip()]
