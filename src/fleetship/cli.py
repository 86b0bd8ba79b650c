import logging

import click
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE, DEFAULT_SECRETS_FILE
from .core import Deployer, DeployError

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
def main():
    """Zero-downtime container deployments across a fleet of servers."""


@main.command()
@click.argument("names", nargs=-1)
@click.option(
    "--services",
    "deploy_services",
    is_flag=True,
    default=False,
    help="Deploy services (in-place replacement) instead of apps.",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Deploy even if the git working directory has uncommitted changes.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Load config, resolve targets and print the plan without touching any server.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Path to the project configuration file.",
)
@click.option(
    "--secrets-file",
    type=click.Path(),
    default=DEFAULT_SECRETS_FILE,
    show_default=True,
    help="Path to the dotenv secrets file.",
)
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--report-file",
    type=click.Path(),
    help="Write a JSON report of phases and per-server outcomes to this path.",
)
def deploy(
    names,
    deploy_services,
    force,
    verbose,
    dry_run,
    config_file,
    secrets_file,
    log_file,
    report_file,
):
    """Deploy apps (blue-green) or services (--services) to their servers.

    NAMES restricts the run to the given entries; all entries of the selected
    kind are deployed when omitted.
    """
    logger = logging.getLogger("fleetship")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        deployer = Deployer(
            entry_names=names,
            force=force,
            deploy_services=deploy_services,
            verbose=verbose,
            dry_run=dry_run,
            config_file=config_file,
            secrets_file=secrets_file,
            report_file=report_file,
        )
    except DeployError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(deployer.run())


if __name__ == "__main__":
    main()
