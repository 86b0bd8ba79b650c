"""Translation of configured entries into container specs."""

from typing import List, Mapping, Tuple

from fleetship.constants import LABEL_APP, LABEL_PROJECT, LABEL_RELEASE, LABEL_SERVICE, RESTART_POLICY
from fleetship.models import AppEntry, ContainerSpec, Entry, ServiceEntry


def resolve_environment(
    entry: Entry,
    secrets: Mapping[str, str],
    logger,
) -> Tuple[Tuple[Tuple[str, str], ...], Tuple[str, ...]]:
    """Merges plain and secret variables; returns the env pairs and the secret values to mask.

    A secret reference missing from ``secrets`` is a warning and the variable
    is left unset.
    """
    env: List[Tuple[str, str]] = list(entry.environment.plain)
    secret_values: List[str] = []
    for key in entry.environment.secret:
        value = secrets.get(key)
        if value is None:
            logger.warning('Secret key "%s" for entry "%s" not found in loaded secrets', key, entry.name)
            continue
        env.append((key, value))
        secret_values.append(value)
    return tuple(env), tuple(secret_values)


def app_labels(app: AppEntry, project: str) -> Tuple[Tuple[str, str], ...]:
    return ((LABEL_PROJECT, project), (LABEL_APP, app.name))


def app_container_spec(
    app: AppEntry,
    release_id: str,
    project: str,
    network: str,
    env: Tuple[Tuple[str, str], ...],
) -> ContainerSpec:
    return ContainerSpec(
        name=app.container_name(release_id),
        image=app.release_image(release_id),
        network=network,
        alias=app.name,
        ports=app.ports,
        volumes=app.volumes,
        env=env,
        labels=app_labels(app, project) + ((LABEL_RELEASE, release_id),),
        restart=RESTART_POLICY,
    )


def service_container_spec(
    service: ServiceEntry,
    project: str,
    network: str,
    env: Tuple[Tuple[str, str], ...],
) -> ContainerSpec:
    return ContainerSpec(
        name=service.container_name,
        image=service.image,
        network=network,
        ports=service.ports,
        volumes=service.volumes,
        env=env,
        labels=((LABEL_PROJECT, project), (LABEL_SERVICE, service.name)),
        restart=RESTART_POLICY,
    )
