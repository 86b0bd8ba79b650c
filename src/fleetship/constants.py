"""Shared constants for fleetship."""

DEFAULT_CONFIG_FILE = "fleetship.yml"
DEFAULT_SECRETS_FILE = ".fleetship/secrets"

DEFAULT_REGISTRY = "docker.io"
DEFAULT_BUILD_PLATFORM = "linux/amd64"
DEFAULT_SSH_USERNAME = "root"
DEFAULT_SSH_PORT = 22
DEFAULT_SSH_COMMAND_TIMEOUT = 900.0

LOCAL_COMMAND_TIMEOUT = 3600.0
PUSH_RETRY_COUNT = 2
PUSH_RETRY_BACKOFF_SECONDS = 5.0

REGISTRY_PASSWORD_SECRET = "DOCKER_REGISTRY_PASSWORD"
SSH_PASSWORD_SECRET = "SSH_PASSWORD"

PROXY_CONTAINER_NAME = "fleetship-proxy"
PROXY_BINARY = "/app/fleetship-proxy"

LABEL_PROJECT = "fleetship.project"
LABEL_APP = "fleetship.app"
LABEL_SERVICE = "fleetship.service"
LABEL_RELEASE = "fleetship.release"

RESTART_POLICY = "unless-stopped"

UNENCRYPTED_CREDENTIALS_WARNING = "WARNING! Your password will be stored unencrypted"
FAILED_CANDIDATE_SUFFIX = "-failed"
