"""Health gating of candidate containers."""

import time
from typing import Callable, Optional

from fleetship.constants import PROXY_CONTAINER_NAME
from fleetship.errors import DeployError
from fleetship.models import AppEntry, HealthCheckSpec


def effective_health_check(app: AppEntry) -> HealthCheckSpec:
    """Proxy-fronted apps are probed over HTTP by default; others only need to be running."""
    if app.health_check is not None:
        return app.health_check
    if app.proxy is not None:
        return HealthCheckSpec()
    return HealthCheckSpec(path=None)


class HealthChecker:
    """Polls a candidate until it passes ``success_threshold`` probes in a row.

    The HTTP probe runs curl inside the proxy sidecar, which shares the
    project network with the candidate, and targets the candidate's container
    name so the previous release answering on the shared alias cannot pass
    the check on its behalf.
    """

    def __init__(self, engine, logger, sleep: Callable[[float], None] = time.sleep):
        self.engine = engine
        self.logger = logger
        self.sleep = sleep

    def probe_http(self, container: str, port: int, spec: HealthCheckSpec) -> bool:
        path = spec.path if spec.path.startswith("/") else f"/{spec.path}"
        url = f"http://{container}:{port}{path}"
        result = self.engine.exec(
            PROXY_CONTAINER_NAME,
            [
                "curl",
                "-s",
                "-o",
                "/dev/null",
                "-w",
                "%{http_code}",
                "--max-time",
                str(spec.timeout_seconds),
                url,
            ],
            timeout=spec.timeout_seconds + 5,
        )
        status = (result.stdout or "").strip()
        self.logger.debug("Health probe %s -> %s", url, status or result.returncode)
        return status.isdigit() and 200 <= int(status) < 400

    def probe_once(self, container: str, port: int, spec: HealthCheckSpec) -> bool:
        try:
            if spec.path and not self.probe_http(container, port, spec):
                return False
            if spec.native:
                return self.engine.health_status(container, timeout=spec.timeout_seconds) == "healthy"
            if not spec.path:
                return self.engine.is_running(container, timeout=spec.timeout_seconds)
        except DeployError as exc:
            self.logger.debug("Health probe for %s errored: %s", container, exc)
            return False
        return True

    def wait_healthy(self, container: str, port: Optional[int], spec: HealthCheckSpec) -> bool:
        attempts = max(1, spec.attempts)
        threshold = max(1, spec.success_threshold)
        port = port or 80
        streak = 0

        for attempt in range(1, attempts + 1):
            if self.probe_once(container, port, spec):
                streak += 1
                self.logger.debug(
                    "Health check %s/%s passed for %s (%s/%s consecutive)",
                    attempt,
                    attempts,
                    container,
                    streak,
                    threshold,
                )
                if streak >= threshold:
                    return True
            else:
                streak = 0
                self.logger.debug("Health check %s/%s failed for %s", attempt, attempts, container)

            if attempt < attempts:
                self.sleep(spec.interval_seconds)

        return False
