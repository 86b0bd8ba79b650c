"""SSH remote channel for fleetship."""

import os
import shlex
import subprocess
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Mapping, Optional

import paramiko

from fleetship.constants import (
    DEFAULT_SSH_COMMAND_TIMEOUT,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USERNAME,
    SSH_PASSWORD_SECRET,
)
from fleetship.errors import DeployError
from fleetship.models import SSHCredentials, SSHSettings
from fleetship.services.command_runner import mask_secrets


class RemoteSession:
    """A connected SSH session that runs commands on one host.

    ``run`` mirrors ``CommandRunner.run`` so the docker engine wrapper can sit
    on top of either. Output is always captured on remote sessions.
    """

    def __init__(
        self,
        credentials: SSHCredentials,
        logger,
        client_factory=paramiko.SSHClient,
        connect_timeout: float = 15.0,
        command_timeout: Optional[float] = None,
    ):
        self.credentials = credentials
        self.host = credentials.host
        self.logger = logger
        self.client_factory = client_factory
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.client = None

    def connect(self):
        client = self.client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kwargs = {
            "hostname": self.credentials.host,
            "port": self.credentials.port,
            "username": self.credentials.username,
            "timeout": self.connect_timeout,
        }
        if self.credentials.key_file:
            kwargs["key_filename"] = os.path.expanduser(self.credentials.key_file)
        if self.credentials.password:
            kwargs["password"] = self.credentials.password

        try:
            client.connect(**kwargs)
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise DeployError(
                f"Failed to connect to {self.host} as {self.credentials.username}: {exc}"
            ) from exc

        self.client = client
        self.logger.debug("SSH connection established to %s", self.host)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        secrets: Iterable[str] = (),
    ) -> subprocess.CompletedProcess:
        if self.client is None:
            raise DeployError(f"SSH session to {self.host} is not connected.")

        secrets = tuple(secrets)
        command = shlex.join(cmd)
        cmd_str = mask_secrets(command, secrets)
        self.logger.debug("[%s] Executing: %s", self.host, cmd_str)

        try:
            stdin, stdout, stderr = self.client.exec_command(
                command,
                timeout=timeout if timeout is not None else self.command_timeout,
            )
            if input_text is not None:
                stdin.write(input_text)
                stdin.flush()
            stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            returncode = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise DeployError(f"[{self.host}] Failed to execute command: {cmd_str}. {exc}") from exc

        if out.strip():
            self.logger.debug("[%s] Command output: %s", self.host, mask_secrets(out.strip(), secrets))

        result = subprocess.CompletedProcess(cmd, returncode, stdout=out, stderr=err)
        if returncode == 0:
            return result

        message = f"[{self.host}] Command failed ({returncode}): {cmd_str}"
        if err.strip():
            message = f"{message}\n{mask_secrets(err.strip(), secrets)}"
        if check:
            raise DeployError(message)

        self.logger.debug(message)
        return result

    def close(self):
        if self.client is not None:
            self.client.close()
            self.client = None
            self.logger.debug("SSH connection to %s closed", self.host)


class SSHConnector:
    """Resolves per-host credentials and opens scoped SSH sessions."""

    def __init__(
        self,
        settings: SSHSettings,
        secrets: Mapping[str, str],
        logger,
        client_factory=paramiko.SSHClient,
        command_timeout: Optional[float] = DEFAULT_SSH_COMMAND_TIMEOUT,
    ):
        self.settings = settings
        self.secrets = secrets
        self.logger = logger
        self.client_factory = client_factory
        self.command_timeout = command_timeout

    def credentials_for(self, host: str) -> SSHCredentials:
        override = self.settings.for_host(host) or SSHSettings()
        return SSHCredentials(
            host=host,
            port=int(override.port or self.settings.port or DEFAULT_SSH_PORT),
            username=override.username or self.settings.username or DEFAULT_SSH_USERNAME,
            key_file=override.key_file or self.settings.key_file,
            password=self.secrets.get(SSH_PASSWORD_SECRET) or None,
        )

    @contextmanager
    def open(self, host: str) -> Iterator[RemoteSession]:
        session = RemoteSession(
            self.credentials_for(host),
            logger=self.logger,
            client_factory=self.client_factory,
            command_timeout=self.command_timeout,
        )
        session.connect()
        try:
            yield session
        finally:
            session.close()
