"""Client for the per-host reverse-proxy sidecar."""

from typing import List

from fleetship.constants import PROXY_BINARY, PROXY_CONTAINER_NAME
from fleetship.errors import DeployError
from fleetship.models import AppEntry, ServerOutcome


class ProxyClient:
    """Issues routing commands to the proxy sidecar through ``docker exec``."""

    def __init__(self, engine, logger, container_name: str = PROXY_CONTAINER_NAME):
        self.engine = engine
        self.logger = logger
        self.container_name = container_name

    def is_running(self) -> bool:
        return self.container_name in self.engine.running_container_names(self.container_name)

    def configure(self, host: str, alias: str, port: int, project: str) -> bool:
        result = self.engine.exec(
            self.container_name,
            [
                PROXY_BINARY,
                "deploy",
                "--host",
                host,
                "--target",
                f"{alias}:{port}",
                "--project",
                project,
            ],
        )
        return result.returncode == 0

    def configure_app(self, app: AppEntry, project: str, outcome: ServerOutcome) -> List[str]:
        """Routes every proxy hostname of ``app`` to its alias.

        Each hostname is configured independently; failures are recorded as
        warnings on ``outcome`` and never fail the deployment.
        """
        if not app.proxy_hosts:
            return []

        self.logger.debug("Configuring proxy for %s on %s", app.name, self.engine.host)
        configured = []
        for host in app.proxy_hosts:
            try:
                success = self.configure(host, app.name, app.proxy.app_port, project)
            except DeployError as exc:
                message = f"Error configuring proxy for host {host}: {exc}"
                self.logger.error(message)
                outcome.warnings.append(message)
                continue

            if not success:
                message = f"Failed to configure proxy for host {host}"
                self.logger.error(message)
                outcome.warnings.append(message)
                continue

            self.logger.debug("Configured proxy for %s -> %s:%s", host, app.name, app.proxy.app_port)
            configured.append(host)

        outcome.proxied_hosts.extend(configured)
        return configured
