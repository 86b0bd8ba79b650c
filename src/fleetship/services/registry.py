"""Registry credential resolution and scoped login/logout."""

from contextlib import contextmanager
from typing import Iterator, Mapping, Optional

from fleetship.constants import (
    DEFAULT_REGISTRY,
    REGISTRY_PASSWORD_SECRET,
    UNENCRYPTED_CREDENTIALS_WARNING,
)
from fleetship.errors import DeployError
from fleetship.models import Entry, ProjectConfig, RegistryCredentials


class RegistryAuthenticator:
    """Resolves which registry to log into and brackets pulls/pushes with login/logout.

    Precedence is strict and first match wins: the entry's own registry and
    secret, then the project registry with ``DOCKER_REGISTRY_PASSWORD``, then
    the public default registry without credentials.
    """

    def __init__(self, logger):
        self.logger = logger

    def resolve(
        self,
        entry: Entry,
        config: ProjectConfig,
        secrets: Mapping[str, str],
    ) -> RegistryCredentials:
        entry_registry = entry.registry
        if entry_registry and entry_registry.username and entry_registry.password_secret:
            password = secrets.get(entry_registry.password_secret)
            if password:
                return RegistryCredentials(
                    registry=entry_registry.url,
                    username=entry_registry.username,
                    password=password,
                )
            self.logger.warning(
                'Registry secret "%s" for entry "%s" not found in loaded secrets',
                entry_registry.password_secret,
                entry.name,
            )
            return RegistryCredentials(registry=entry_registry.url)

        project_password = secrets.get(REGISTRY_PASSWORD_SECRET)
        if config.docker_username and project_password:
            return RegistryCredentials(
                registry=config.docker_registry or DEFAULT_REGISTRY,
                username=config.docker_username,
                password=project_password,
            )

        return RegistryCredentials(registry=DEFAULT_REGISTRY)

    def login(self, engine, credentials: RegistryCredentials) -> bool:
        try:
            engine.login(credentials.registry, credentials.username, credentials.password)
        except DeployError as exc:
            if UNENCRYPTED_CREDENTIALS_WARNING in str(exc):
                self.logger.debug("Logged into %s on %s", credentials.registry, engine.host)
                return True
            self.logger.error(
                "Failed to login to registry %s on %s: %s", credentials.registry, engine.host, exc
            )
            return False

        self.logger.debug("Logged into %s on %s", credentials.registry, engine.host)
        return True

    @contextmanager
    def session(self, engine, credentials: Optional[RegistryCredentials]) -> Iterator[bool]:
        """Logs in for the duration of the block and always logs out afterwards.

        Yields whether the login succeeded. Without credentials nothing is sent
        to the registry and ``False`` is yielded.
        """
        if credentials is None or not credentials.requires_login:
            yield False
            return

        logged_in = self.login(engine, credentials)
        try:
            yield logged_in
        finally:
            engine.logout(credentials.registry)
            self.logger.debug("Logged out of %s on %s", credentials.registry, engine.host)
