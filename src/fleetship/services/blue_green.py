"""Blue-green deployment of one app onto one server."""

import time
from typing import Callable, List

from fleetship.constants import FAILED_CANDIDATE_SUFFIX
from fleetship.errors import DeployError
from fleetship.models import AppEntry, DeploymentContext, DeploymentState, ServerOutcome
from fleetship.services.containers import app_container_spec, app_labels, resolve_environment
from fleetship.services.health import HealthChecker, effective_health_check
from fleetship.services.proxy import ProxyClient
from fleetship.services.registry import RegistryAuthenticator


class BlueGreenDeployer:
    """Runs the per-(app, server) state machine.

    PULLING -> STARTING_CANDIDATE -> HEALTH_CHECKING -> CUTTING_OVER ->
    DECOMMISSIONING -> DONE, with FAILED reachable from any non-terminal
    state. A failed candidate keeps running under a `-failed` name for
    diagnosis and the previous release is not touched; the next run removes
    it before starting its own candidate, so at most two containers of an app
    exist on a server.
    """

    def __init__(
        self,
        logger,
        registry: RegistryAuthenticator,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger
        self.registry = registry
        self.sleep = sleep

    def deploy(self, app: AppEntry, server: str, engine, context: DeploymentContext) -> ServerOutcome:
        outcome = ServerOutcome(entry_name=app.name, server=server)
        started = time.monotonic()
        try:
            self._pull(app, engine, context, outcome)
            previous = self._start_candidate(app, engine, context, outcome)
            self._health_check(app, engine, context, outcome)
            self._cut_over(app, engine, context, outcome)
            self._decommission(engine, previous, outcome)
            outcome.transition(DeploymentState.DONE)
        except DeployError as exc:
            failed_in = outcome.state.value if outcome.state else "start"
            self.logger.error("Deploying %s to %s failed while %s: %s", app.name, server, failed_in, exc)
            outcome.fail(str(exc))
        finally:
            outcome.duration_seconds = time.monotonic() - started
        return outcome

    def _pull(self, app: AppEntry, engine, context: DeploymentContext, outcome: ServerOutcome):
        outcome.transition(DeploymentState.PULLING)
        image = app.release_image(context.release_id)
        credentials = self.registry.resolve(app, context.config, context.secrets)

        self.logger.debug("Pulling image %s on %s", image, outcome.server)
        with self.registry.session(engine, credentials):
            pulled = engine.pull_image(image)
        if not pulled:
            raise DeployError(f"Failed to pull image {image}")

    def _start_candidate(
        self, app: AppEntry, engine, context: DeploymentContext, outcome: ServerOutcome
    ) -> List[str]:
        outcome.transition(DeploymentState.STARTING_CANDIDATE)
        candidate = app.container_name(context.release_id)
        previous = []
        for name in engine.list_containers(app_labels(app, context.project_name)):
            if name == candidate:
                continue
            if name.endswith(FAILED_CANDIDATE_SUFFIX) or not engine.is_running(name):
                self._remove_stale(engine, name, outcome)
            else:
                previous.append(name)
        if previous:
            self.logger.debug("Previous containers for %s on %s: %s", app.name, outcome.server, ", ".join(previous))

        env, secret_values = resolve_environment(app, context.secrets, self.logger)
        spec = app_container_spec(app, context.release_id, context.project_name, context.network_name, env)
        self.logger.debug("Starting candidate %s on %s", candidate, outcome.server)
        if not engine.run_container(spec, secrets=secret_values):
            raise DeployError(f"Failed to create container {candidate}")
        return previous

    def _health_check(self, app: AppEntry, engine, context: DeploymentContext, outcome: ServerOutcome):
        outcome.transition(DeploymentState.HEALTH_CHECKING)
        candidate = app.container_name(context.release_id)
        check = effective_health_check(app)
        port = check.port or (app.proxy.app_port if app.proxy else None)

        checker = HealthChecker(engine, self.logger, sleep=self.sleep)
        if not checker.wait_healthy(candidate, port, check):
            kept_as = self._mark_failed(engine, candidate, outcome)
            raise DeployError(
                f"Candidate {candidate} failed health checks after {check.attempts} attempts; "
                f"it was kept as {kept_as} for diagnosis and the previous release still serves traffic"
            )

    def _mark_failed(self, engine, candidate: str, outcome: ServerOutcome) -> str:
        """Renames a failed candidate so the next run removes it before starting its own.

        If the rename fails the candidate is stopped instead; stopped containers
        are treated as stale as well.
        """
        marked = f"{candidate}{FAILED_CANDIDATE_SUFFIX}"
        try:
            engine.rename_container(candidate, marked)
            return marked
        except DeployError as exc:
            message = f"Could not rename failed candidate {candidate}: {exc}"
            self.logger.warning(message)
            outcome.warnings.append(message)

        try:
            engine.stop_container(candidate)
        except DeployError as exc:
            message = f"Could not stop failed candidate {candidate}: {exc}"
            self.logger.warning(message)
            outcome.warnings.append(message)
        return candidate

    def _remove_stale(self, engine, name: str, outcome: ServerOutcome):
        self.logger.debug("Removing stale container %s on %s", name, outcome.server)
        try:
            engine.stop_container(name)
            engine.remove_container(name)
        except DeployError as exc:
            raise DeployError(
                f"Could not remove stale container {name} before starting the candidate: {exc}"
            ) from exc

    def _cut_over(self, app: AppEntry, engine, context: DeploymentContext, outcome: ServerOutcome):
        outcome.transition(DeploymentState.CUTTING_OVER)
        ProxyClient(engine, self.logger).configure_app(app, context.project_name, outcome)

    def _decommission(self, engine, previous: List[str], outcome: ServerOutcome):
        outcome.transition(DeploymentState.DECOMMISSIONING)
        for name in previous:
            try:
                engine.stop_container(name)
                engine.remove_container(name)
                self.logger.debug("Removed previous container %s on %s", name, outcome.server)
            except DeployError as exc:
                message = f"Could not remove previous container {name}: {exc}"
                self.logger.warning(message)
                outcome.warnings.append(message)
