"""Preflight verification of per-host infrastructure."""

from dataclasses import dataclass, field
from typing import Iterable, List

from fleetship.errors import DeployError
from fleetship.models import Entry
from fleetship.services.docker_engine import DockerEngine
from fleetship.services.proxy import ProxyClient


@dataclass
class InfrastructureReport:
    missing_network: List[str] = field(default_factory=list)
    missing_proxy: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_network and not self.missing_proxy


def target_servers(entries: Iterable[Entry]) -> List[str]:
    servers: List[str] = []
    for entry in entries:
        for server in entry.servers:
            if server not in servers:
                servers.append(server)
    return servers


class InfrastructureVerifier:
    """Checks that every target host has the project network and a running proxy.

    This never creates missing infrastructure.
    """

    def __init__(self, connector, logger, engine_factory=DockerEngine):
        self.connector = connector
        self.logger = logger
        self.engine_factory = engine_factory

    def verify(self, servers: Iterable[str], network_name: str) -> InfrastructureReport:
        report = InfrastructureReport()
        servers = list(servers)
        self.logger.debug("Checking infrastructure on servers: %s", ", ".join(servers))

        for server in servers:
            try:
                with self.connector.open(server) as session:
                    engine = self.engine_factory(session.run, server, self.logger)
                    if not engine.network_exists(network_name):
                        report.missing_network.append(server)
                    if not ProxyClient(engine, self.logger).is_running():
                        report.missing_proxy.append(server)
            except DeployError as exc:
                self.logger.debug("Error verifying %s: %s", server, exc)
                if server not in report.missing_network:
                    report.missing_network.append(server)
                if server not in report.missing_proxy:
                    report.missing_proxy.append(server)

        return report
