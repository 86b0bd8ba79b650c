"""In-place replacement of service containers."""

import time

from fleetship.errors import DeployError
from fleetship.models import DeploymentContext, DeploymentState, ServerOutcome, ServiceEntry
from fleetship.services.containers import resolve_environment, service_container_spec
from fleetship.services.registry import RegistryAuthenticator


class ServiceReplacer:
    """Pull, stop/remove, create, prune. No health gating and a single stable name.

    The service is unavailable between removal of the old container and
    creation of the new one.
    """

    def __init__(self, logger, registry: RegistryAuthenticator):
        self.logger = logger
        self.registry = registry

    def deploy(self, service: ServiceEntry, server: str, engine, context: DeploymentContext) -> ServerOutcome:
        outcome = ServerOutcome(entry_name=service.name, server=server)
        started = time.monotonic()
        try:
            outcome.transition(DeploymentState.PULLING)
            credentials = self.registry.resolve(service, context.config, context.secrets)
            with self.registry.session(engine, credentials):
                pulled = engine.pull_image(service.image)
            if not pulled:
                raise DeployError(f"Failed to pull image {service.image}")

            outcome.transition(DeploymentState.STARTING_CANDIDATE)
            self._remove_existing(service, engine, outcome)

            env, secret_values = resolve_environment(service, context.secrets, self.logger)
            spec = service_container_spec(service, context.project_name, context.network_name, env)
            self.logger.debug("Starting new service container %s on %s", spec.name, server)
            if not engine.run_container(spec, secrets=secret_values):
                raise DeployError(f"Failed to create container {spec.name}")

            self._prune(engine, outcome)
            outcome.transition(DeploymentState.DONE)
        except DeployError as exc:
            self.logger.error("Failed to deploy service %s to %s: %s", service.name, server, exc)
            outcome.fail(str(exc))
        finally:
            outcome.duration_seconds = time.monotonic() - started
        return outcome

    def _remove_existing(self, service: ServiceEntry, engine, outcome: ServerOutcome):
        name = service.container_name
        if not engine.container_exists(name):
            self.logger.info("No existing container %s on %s; nothing to stop.", name, outcome.server)
            return

        try:
            engine.stop_container(name)
            engine.remove_container(name)
        except DeployError as exc:
            message = f"Error stopping/removing old service container {name}: {exc}"
            self.logger.warning(message)
            outcome.warnings.append(message)

    def _prune(self, engine, outcome: ServerOutcome):
        self.logger.debug("Pruning Docker resources on %s", outcome.server)
        try:
            engine.prune()
        except DeployError as exc:
            message = f"Prune failed: {exc}"
            self.logger.warning(message)
            outcome.warnings.append(message)
