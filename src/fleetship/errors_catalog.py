"""Actionable error catalog for fleetship."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "dirty_workspace": {
        "what": "Uncommitted changes detected in the working directory. Deployment aborted.",
        "next": "Commit your changes before deploying, or use `--force` to deploy anyway.",
    },
    "config_not_found": {
        "what": "Config file not found: {path}",
        "next": "Create `fleetship.yml` in the project root or pass `--config`.",
    },
    "no_targets": {
        "what": "No {kind} selected for deployment.",
        "next": "Check the names passed on the command line against the `{kind}` section of the config.",
    },
    "missing_network": {
        "what": "Required network `{network}` is missing on servers: {servers}",
        "next": "Create it on each server with `docker network create {network}`.",
    },
    "missing_proxy": {
        "what": "Required proxy container `{proxy}` is not running on servers: {servers}",
        "next": "Start the proxy sidecar on each server and attach it to the project network.",
    },
    "build_failed": {
        "what": "Image build for app `{name}` failed.",
        "next": "Run the build locally with `--verbose` and fix the Dockerfile or build context.",
    },
    "push_failed": {
        "what": "Pushing image `{image}` failed.",
        "next": "Check registry credentials (`DOCKER_REGISTRY_PASSWORD` or the app's `password_secret`).",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
