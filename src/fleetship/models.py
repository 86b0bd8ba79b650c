"""Shared domain models for fleetship."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class BuildSpec:
    context: str = "."
    dockerfile: str = "Dockerfile"
    args: Tuple[Tuple[str, str], ...] = ()
    platform: Optional[str] = None
    target: Optional[str] = None


@dataclass(frozen=True)
class ProxySpec:
    hosts: Tuple[str, ...]
    app_port: int = 80


@dataclass(frozen=True)
class HealthCheckSpec:
    """How a freshly started app container is gated before cutover."""

    path: Optional[str] = "/up"
    port: Optional[int] = None
    native: bool = False
    attempts: int = 30
    interval_seconds: float = 2.0
    success_threshold: int = 2
    timeout_seconds: int = 5


@dataclass(frozen=True)
class RegistrySpec:
    url: str
    username: Optional[str] = None
    password_secret: Optional[str] = None


@dataclass(frozen=True)
class RegistryCredentials:
    registry: str
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def requires_login(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class EnvironmentSpec:
    plain: Tuple[Tuple[str, str], ...] = ()
    secret: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AppEntry:
    """Blue-green deployed entry, rebuilt and re-identified on every release."""

    name: str
    image: str
    servers: Tuple[str, ...]
    ports: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    environment: EnvironmentSpec = field(default_factory=EnvironmentSpec)
    build: Optional[BuildSpec] = None
    proxy: Optional[ProxySpec] = None
    health_check: Optional[HealthCheckSpec] = None
    registry: Optional[RegistrySpec] = None

    def container_name(self, release_id: str) -> str:
        return f"{self.name}-{release_id}"

    def release_image(self, release_id: str) -> str:
        return f"{self.image}:{release_id}"

    @property
    def proxy_hosts(self) -> Tuple[str, ...]:
        return self.proxy.hosts if self.proxy else ()


@dataclass(frozen=True)
class ServiceEntry:
    """Entry replaced in place under a single stable container name."""

    name: str
    image: str
    servers: Tuple[str, ...]
    ports: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    environment: EnvironmentSpec = field(default_factory=EnvironmentSpec)
    registry: Optional[RegistrySpec] = None

    @property
    def container_name(self) -> str:
        return self.name


Entry = Union[AppEntry, ServiceEntry]


@dataclass(frozen=True)
class SSHSettings:
    username: Optional[str] = None
    port: Optional[int] = None
    key_file: Optional[str] = None
    hosts: Tuple[Tuple[str, "SSHSettings"], ...] = ()

    def for_host(self, host: str) -> Optional["SSHSettings"]:
        for name, settings in self.hosts:
            if name == host:
                return settings
        return None


@dataclass(frozen=True)
class SSHCredentials:
    host: str
    port: int
    username: str
    key_file: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class ProjectConfig:
    name: str
    apps: Tuple[AppEntry, ...] = ()
    services: Tuple[ServiceEntry, ...] = ()
    ssh: SSHSettings = field(default_factory=SSHSettings)
    docker_registry: Optional[str] = None
    docker_username: Optional[str] = None


@dataclass(frozen=True)
class DeploymentContext:
    """Run-scoped, read-only aggregate built once before any mutation."""

    config: ProjectConfig
    secrets: Mapping[str, str]
    release_id: str
    project_name: str
    network_name: str
    target_entries: Tuple[Entry, ...]
    force: bool = False
    deploy_services: bool = False
    verbose: bool = False


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    image: str
    network: str
    alias: Optional[str] = None
    ports: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    labels: Tuple[Tuple[str, str], ...] = ()
    restart: str = "unless-stopped"


class DeploymentState(str, Enum):
    PULLING = "pulling"
    STARTING_CANDIDATE = "starting_candidate"
    HEALTH_CHECKING = "health_checking"
    CUTTING_OVER = "cutting_over"
    DECOMMISSIONING = "decommissioning"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentState.DONE, DeploymentState.FAILED)


@dataclass
class ServerOutcome:
    """Result record of one (entry, server) deployment."""

    entry_name: str
    server: str
    state: Optional[DeploymentState] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0
    history: List[DeploymentState] = field(default_factory=list)
    proxied_hosts: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def transition(self, state: DeploymentState):
        if self.state is not None and self.state.is_terminal:
            raise ValueError(f"Cannot leave terminal state {self.state.value} for {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: str):
        self.error = error
        self.transition(DeploymentState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.DONE

    def to_dict(self) -> Dict[str, object]:
        return {
            "entry": self.entry_name,
            "server": self.server,
            "state": self.state.value if self.state else None,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
            "history": [state.value for state in self.history],
            "proxied_hosts": list(self.proxied_hosts),
            "warnings": list(self.warnings),
        }


class PhaseStatus(str, Enum):
    OK = "ok"
    FATAL = "fatal"
    SCOPED_FAILURE = "scoped_failure"


@dataclass
class PhaseResult:
    name: str
    status: PhaseStatus = PhaseStatus.OK
    error: Optional[str] = None
    outcomes: List[ServerOutcome] = field(default_factory=list)

    @property
    def is_fatal(self) -> bool:
        return self.status == PhaseStatus.FATAL
