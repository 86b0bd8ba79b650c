import logging
import time
from types import MappingProxyType
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from rich.console import Console

from .constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_SECRETS_FILE,
    LOCAL_COMMAND_TIMEOUT,
    PROXY_CONTAINER_NAME,
    PUSH_RETRY_BACKOFF_SECONDS,
    PUSH_RETRY_COUNT,
)
from .errors import DeployError
from .errors_catalog import actionable_error
from .models import (
    AppEntry,
    DeploymentContext,
    Entry,
    PhaseResult,
    PhaseStatus,
    ProjectConfig,
    ServerOutcome,
    ServiceEntry,
)
from .services.blue_green import BlueGreenDeployer
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLoader
from .services.docker_engine import DockerEngine
from .services.infrastructure import InfrastructureVerifier, target_servers
from .services.manifest import RunReportService
from .services.registry import RegistryAuthenticator
from .services.release import ReleaseIdGenerator
from .services.remote import SSHConnector
from .services.reporter import ConsoleReporter
from .services.service_replacement import ServiceReplacer

console = Console()
logger = logging.getLogger("fleetship")

EntryT = TypeVar("EntryT", AppEntry, ServiceEntry)


def project_network_name(project_name: str) -> str:
    return f"{project_name}-network"


def select_targets(
    names: Sequence[str],
    configured: Sequence[EntryT],
    kind: str,
    log: logging.Logger,
) -> List[EntryT]:
    """Looks up ``names`` in caller order; unknown names are warned about and skipped."""
    if not names:
        return list(configured)

    by_name = {entry.name: entry for entry in configured}
    targets: List[EntryT] = []
    for name in names:
        entry = by_name.get(name)
        if entry is None:
            log.warning('%s "%s" not found in configuration', kind.capitalize(), name)
            continue
        if entry not in targets:
            targets.append(entry)
    return targets


class Deployer:
    """Release coordinator: runs the fixed deployment phases for one invocation."""

    def __init__(
        self,
        entry_names: Sequence[str] = (),
        force: bool = False,
        deploy_services: bool = False,
        verbose: bool = False,
        dry_run: bool = False,
        config_file: str = DEFAULT_CONFIG_FILE,
        secrets_file: Optional[str] = DEFAULT_SECRETS_FILE,
        report_file: Optional[str] = None,
        log: logging.Logger = logger,
        out: Console = console,
        connector_factory=SSHConnector,
        engine_factory=DockerEngine,
        release_ids: Optional[ReleaseIdGenerator] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.entry_names = list(entry_names)
        self.force = force
        self.deploy_services = deploy_services
        self.verbose = verbose
        self.dry_run = dry_run
        self.config_file = config_file
        self.secrets_file = secrets_file
        self.logger = log
        self.console = out
        self.connector_factory = connector_factory
        self.engine_factory = engine_factory
        self.kind = "services" if deploy_services else "apps"

        self.release_id = (release_ids or ReleaseIdGenerator()).generate()
        self.report_file = report_file

        self.command_runner = CommandRunner(logger=self.logger, default_timeout=LOCAL_COMMAND_TIMEOUT)
        self.local_engine = self.engine_factory(self.command_runner.run, "local", self.logger)
        self.config_loader = ConfigLoader()
        self.registry = RegistryAuthenticator(self.logger)
        self.blue_green = BlueGreenDeployer(self.logger, self.registry, sleep=sleep)
        self.service_replacer = ServiceReplacer(self.logger, self.registry)
        self.reporter = ConsoleReporter(self.console)
        self.report_service = RunReportService(report_file=self.report_file, logger=self.logger)

        self.config: Optional[ProjectConfig] = None
        self.secrets: Dict[str, str] = {}
        self.context: Optional[DeploymentContext] = None
        self.connector = None
        self.phases: List[PhaseResult] = []
        self.outcomes: List[ServerOutcome] = []

    def _pipeline(self) -> List[Tuple[str, str, Callable[[], object]]]:
        phases = [
            ("verify_clean_workspace", "Verifying workspace", self.verify_clean_workspace),
            ("load_config_and_secrets", "Loading configuration", self.load_config_and_secrets),
            ("resolve_targets", "Resolving targets", self.resolve_targets),
        ]
        if self.dry_run:
            phases.append(("plan", "Deployment plan (dry run)", self.print_plan))
            return phases

        phases.append(("verify_infrastructure", "Verifying infrastructure", self.verify_infrastructure))
        if self.deploy_services:
            phases.append(("deploy", "Deploying services", self.deploy_entries))
        else:
            phases.append(("build_and_push", "Building & pushing images", self.build_and_push))
            phases.append(("deploy", "Deploying to servers", self.deploy_entries))
        return phases

    def _run_phase(self, name: str, callback: Callable[[], object]) -> PhaseResult:
        self.report_service.phase_started(name)
        try:
            value = callback()
        except DeployError as exc:
            phase = PhaseResult(name=name, status=PhaseStatus.FATAL, error=str(exc))
        else:
            phase = value if isinstance(value, PhaseResult) else PhaseResult(name=name)

        self.report_service.phase_finished(name, phase.status.value, error=phase.error)
        self.phases.append(phase)
        return phase

    def verify_clean_workspace(self):
        if self.force:
            self.logger.debug("Skipping clean workspace check (--force).")
            return

        try:
            result = self.command_runner.run(
                ["git", "status", "--porcelain"], check=False, capture_output=True
            )
        except DeployError as exc:
            self.logger.debug("Failed to check git status. Assuming no uncommitted changes. %s", exc)
            return

        if result.returncode != 0:
            self.logger.debug("Failed to check git status. Assuming no uncommitted changes.")
            return

        if (result.stdout or "").strip():
            raise DeployError(actionable_error("dirty_workspace"))
        self.reporter.step_complete("Git status verified", 0.0)

    def load_config_and_secrets(self):
        started = time.monotonic()
        self.config = self.config_loader.load(self.config_file)
        self.secrets = self.config_loader.load_secrets(self.secrets_file)
        self.reporter.step_complete(
            f"Configuration loaded for project {self.config.name}", time.monotonic() - started
        )

    def resolve_targets(self):
        configured = self.config.services if self.deploy_services else self.config.apps
        targets = select_targets(self.entry_names, configured, self.kind[:-1], self.logger)
        if not targets:
            raise DeployError(actionable_error("no_targets", kind=self.kind))

        self.context = DeploymentContext(
            config=self.config,
            secrets=MappingProxyType(dict(self.secrets)),
            release_id=self.release_id,
            project_name=self.config.name,
            network_name=project_network_name(self.config.name),
            target_entries=tuple(targets),
            force=self.force,
            deploy_services=self.deploy_services,
            verbose=self.verbose,
        )
        self.connector = self.connector_factory(self.config.ssh, self.context.secrets, self.logger)
        self.report_service.set_targets(self.config.name, [entry.name for entry in targets])
        self.reporter.step_complete(
            f"{self.kind.capitalize()}: {', '.join(entry.name for entry in targets)}", 0.0
        )

    def print_plan(self):
        for entry in self.context.target_entries:
            if isinstance(entry, AppEntry):
                identity = f"{entry.container_name(self.release_id)} ({entry.release_image(self.release_id)})"
            else:
                identity = f"{entry.container_name} ({entry.image})"
            self.console.print(f"  {entry.name}: {identity} → {', '.join(entry.servers)}")
        self.console.print(f"  network: {self.context.network_name}")

    def verify_infrastructure(self):
        started = time.monotonic()
        servers = target_servers(self.context.target_entries)
        verifier = InfrastructureVerifier(self.connector, self.logger, engine_factory=self.engine_factory)
        report = verifier.verify(servers, self.context.network_name)

        messages = []
        if report.missing_network:
            messages.append(
                actionable_error(
                    "missing_network",
                    network=self.context.network_name,
                    servers=", ".join(report.missing_network),
                )
            )
        if report.missing_proxy:
            messages.append(
                actionable_error(
                    "missing_proxy",
                    proxy=PROXY_CONTAINER_NAME,
                    servers=", ".join(report.missing_proxy),
                )
            )
        if messages:
            raise DeployError("\n".join(messages))

        self.reporter.step_complete(
            f"Infrastructure ready on {', '.join(servers)}", time.monotonic() - started
        )

    def build_and_push(self):
        for entry in self.context.target_entries:
            self.build_and_push_app(entry)

    def build_and_push_app(self, app: AppEntry):
        started = time.monotonic()
        image = app.release_image(self.release_id)
        label = f"{app.name} → {image}"

        try:
            if app.build:
                self.logger.debug("Building app %s...", app.name)
                self.local_engine.build(app.build, image)
            else:
                self.logger.debug("Tagging %s as %s...", app.image, image)
                self.local_engine.tag(app.image, image)
        except DeployError as exc:
            self.reporter.step_failed(label, str(exc))
            raise DeployError(f"{actionable_error('build_failed', name=app.name)}\n{exc}") from exc

        credentials = self.registry.resolve(app, self.config, self.context.secrets)
        try:
            with self.registry.session(self.local_engine, credentials):
                self.local_engine.push(
                    image,
                    retry_count=PUSH_RETRY_COUNT,
                    retry_backoff_seconds=PUSH_RETRY_BACKOFF_SECONDS,
                )
        except DeployError as exc:
            self.reporter.step_failed(label, str(exc))
            raise DeployError(f"{actionable_error('push_failed', image=image)}\n{exc}") from exc

        self.reporter.step_complete(label, time.monotonic() - started)

    def deploy_entries(self) -> PhaseResult:
        outcomes: List[ServerOutcome] = []
        for entry in self.context.target_entries:
            self.console.print(f"  [bold]{entry.name}[/bold] → {', '.join(entry.servers)}")
            for server in entry.servers:
                outcome = self.deploy_to_server(entry, server)
                outcomes.append(outcome)
                self.outcomes.append(outcome)
                self.report_service.add_outcome(outcome)
                self.reporter.server_outcome(outcome)

        failed = [outcome for outcome in outcomes if not outcome.succeeded]
        if failed:
            return PhaseResult(
                name="deploy",
                status=PhaseStatus.SCOPED_FAILURE,
                error=f"{len(failed)} of {len(outcomes)} server deployments failed",
                outcomes=outcomes,
            )
        return PhaseResult(name="deploy", outcomes=outcomes)

    def deploy_to_server(self, entry: Entry, server: str) -> ServerOutcome:
        self.logger.debug("Deploying %s to %s", entry.name, server)
        try:
            with self.connector.open(server) as session:
                engine = self.engine_factory(session.run, server, self.logger)
                return self._dispatch(entry, server, engine)
        except DeployError as exc:
            self.logger.error("Deploying %s to %s failed: %s", entry.name, server, exc)
            outcome = ServerOutcome(entry_name=entry.name, server=server)
            outcome.fail(str(exc))
            return outcome

    def _dispatch(self, entry: Entry, server: str, engine: DockerEngine) -> ServerOutcome:
        if isinstance(entry, AppEntry):
            return self.blue_green.deploy(entry, server, engine, self.context)
        if isinstance(entry, ServiceEntry):
            return self.service_replacer.deploy(entry, server, engine, self.context)
        raise TypeError(f"Unsupported entry type: {type(entry).__name__}")

    def live_urls(self) -> List[str]:
        urls: List[str] = []
        for outcome in self.outcomes:
            if not outcome.succeeded:
                continue
            for host in outcome.proxied_hosts:
                url = f"https://{host}"
                if url not in urls:
                    urls.append(url)
        return urls

    def run(self) -> int:
        exit_code = 1
        report_status = "failed"
        report_error: Optional[str] = None

        self.report_service.start_run(self.release_id, self.kind)
        self.reporter.deployment_start(self.release_id, self.kind)

        try:
            for name, title, callback in self._pipeline():
                self.reporter.phase(title)
                phase = self._run_phase(name, callback)
                if phase.is_fatal:
                    self.console.print(f"[bold red]Error:[/bold red] {phase.error}")
                    self.logger.error(phase.error)
                    report_error = phase.error
                    return exit_code

            scoped = [phase for phase in self.phases if phase.status == PhaseStatus.SCOPED_FAILURE]
            if scoped:
                report_error = "; ".join(phase.error or phase.name for phase in scoped)
                return exit_code

            report_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            self.console.print("[bold red]Deployment cancelled by user.[/bold red]")
            self.logger.info("Deployment cancelled by user")
            report_status = "aborted"
            report_error = "Deployment cancelled by user."
            return exit_code
        except Exception as exc:
            self.console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            self.logger.exception("Unexpected error")
            report_error = str(exc)
            return exit_code
        finally:
            if not self.dry_run:
                urls = self.live_urls()
                self.reporter.summary(self.outcomes, urls, success=report_status == "success")
                self.report_service.finalize(report_status, urls, error=report_error)
