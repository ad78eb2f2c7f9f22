"""devcli command line entry point."""

import asyncio
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from .bootstrap import EnvironmentBootstrap
from .common.exceptions import DevCLIError
from .common.logging import get_logger, setup_logging
from .common.session_config import SessionConfig
from .config import default_config_path, ensure_default_config, load_config
from .session import EXIT_FAILURE, SessionController

logger = get_logger(__name__)


async def run_session(
    conf: Path,
    environment: str | None,
    config: SessionConfig,
    bootstrap: bool = True,
) -> int:
    """Load the configuration and run every tunnel of the selected environment."""
    env_bootstrap = None
    if bootstrap:
        env_bootstrap = EnvironmentBootstrap(config)
        await env_bootstrap.check_tools()

    dev_config = load_config(conf)
    proxy = dev_config.select(environment)
    logger.info("Setting up environment", environment=proxy.environment)

    before_start = None
    if env_bootstrap is not None:
        env_bootstrap.cloud = dev_config.cloud
        env_bootstrap.project = proxy.cloud_project
        before_start = env_bootstrap.prepare

    controller = SessionController(config, before_start=before_start)
    return await controller.run(proxy.to_rule_set())


@click.command()
@click.option(
    "--conf",
    "conf",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the configuration file (default: ~/.devcli/config.yaml)",
)
@click.option("--env", "environment", default=None, help="Environment type (dev, staging, prod)")
@click.option(
    "--log-level",
    "log_level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.option("--json-logs", "json_logs", is_flag=True, help="Emit JSON log lines")
@click.option(
    "--log-file",
    "log_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append log lines to this file",
)
@click.option(
    "--skip-bootstrap",
    "skip_bootstrap",
    is_flag=True,
    help="Do not configure gcloud; use the current project and credentials",
)
@click.option("--no-port-check", "no_port_check", is_flag=True, help="Skip the local port availability probe")
@click.option(
    "--shutdown-timeout",
    "shutdown_timeout",
    default=5.0,
    type=float,
    show_default=True,
    help="Seconds to wait for a tunnel to stop before killing it",
)
def main(
    conf: Path | None,
    environment: str | None,
    log_level: str,
    json_logs: bool,
    log_file: Path | None,
    skip_bootstrap: bool,
    no_port_check: bool,
    shutdown_timeout: float,
) -> None:
    """devcli - forward local ports to cluster pods and through a bastion host."""
    setup_logging(
        level=log_level,
        json_format=json_logs,
        log_file=str(log_file) if log_file is not None else None,
    )

    try:
        config = SessionConfig(
            graceful_shutdown_timeout=shutdown_timeout,
            check_port_availability=not no_port_check,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--shutdown-timeout") from e

    try:
        if conf is None:
            conf = ensure_default_config(default_config_path())
        else:
            logger.info("Using configuration file", path=str(conf))

        logger.info("devcli - Development CLI, initializing")
        exit_code = asyncio.run(
            run_session(conf, environment, config, bootstrap=not skip_bootstrap)
        )
    except DevCLIError as e:
        logger.error("Error", error=str(e))
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        logger.warning("Interrupted before tunnels started")
        sys.exit(EXIT_FAILURE)

    sys.exit(exit_code)
