"""Cloud environment bootstrap.

Prepares gcloud and kubectl for a session: checks that both tools are
installed, points them at the configured credentials, selects the cloud
project and its first cluster, fetches cluster credentials, and looks up
the bastion's zone. Everything here is delegated to the gcloud CLI.
"""

import os
from collections.abc import MutableMapping
from pathlib import Path

from .common.exceptions import ConfigError, ToolError
from .common.logging import get_logger
from .common.session_config import SessionConfig
from .common.tools import check_tool, run_tool
from .common.utils import first_line
from .config import CloudConfig
from .models import Bastion, RuleSet

logger = get_logger(__name__)


class EnvironmentBootstrap:
    """Runs the gcloud steps that must succeed before tunnels can start."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        cloud: CloudConfig | None = None,
        project: str | None = None,
        environ: MutableMapping[str, str] | None = None,
    ):
        self.config = config or SessionConfig()
        self.cloud = cloud or CloudConfig()
        self.project = project
        self.environ = os.environ if environ is None else environ

    @property
    def gcloud(self) -> str:
        return self.config.gcloud_binary

    async def check_tools(self) -> None:
        """Raise ToolMissingError unless gcloud and kubectl both work."""
        await check_tool(self.gcloud, "version")
        await check_tool(self.config.kubectl_binary, "version", "--client")
        logger.info("Required tools found", gcloud=self.gcloud, kubectl=self.config.kubectl_binary)

    def apply_environment(self) -> None:
        """Export credential locations for every tool devcli starts."""
        home = Path.home()

        kubeconfig = self.cloud.kubeconfig
        if not kubeconfig:
            kubeconfig = str(home / ".kube" / "config")
            logger.info("kubeconfig is not set, using default", kubeconfig=kubeconfig)
        gcloud_config = self.cloud.gcloudconfig
        if not gcloud_config:
            gcloud_config = str(home / ".config" / "gcloud")
            logger.info("gcloud config path is not set, using default", gcloudconfig=gcloud_config)

        self.environ["KUBECONFIG"] = str(Path(kubeconfig).expanduser())
        self.environ["CLOUDSDK_CONFIG"] = str(Path(gcloud_config).expanduser())
        self.environ["USE_GKE_GCLOUD_AUTH_PLUGIN"] = "True"
        logger.info(
            "Credential locations set",
            kubeconfig=self.environ["KUBECONFIG"],
            gcloudconfig=self.environ["CLOUDSDK_CONFIG"],
        )

    async def resolve_bastion_zone(self, bastion: Bastion) -> Bastion:
        """Look up the bastion instance zone unless it is configured."""
        if bastion.zone:
            return bastion

        output = await run_tool(
            [
                self.gcloud,
                "compute",
                "instances",
                "list",
                "--filter",
                f"name={bastion.name}",
                "--format",
                "value(zone)",
            ]
        )
        zone = first_line(output)
        if not zone:
            raise ToolError(f"Bastion instance {bastion.name} was not found", self.gcloud)

        logger.info("Resolved bastion zone", bastion=bastion.name, zone=zone)
        return bastion.with_zone(zone)

    async def configure_project(self) -> None:
        if not self.project:
            raise ConfigError("Project is not set in the configuration file")
        logger.info("Setting the gcloud project", project=self.project)
        await run_tool([self.gcloud, "config", "set", "project", self.project])

    async def configure_cluster(self) -> str:
        """Select the project's first cluster and fetch its credentials.

        Returns:
            Name of the selected cluster
        """
        names = await run_tool(
            [self.gcloud, "container", "clusters", "list", "--format", "value(name)"]
        )
        cluster = first_line(names)
        if not cluster:
            raise ToolError(f"No cluster found in project {self.project}", self.gcloud)
        logger.info("Setting the default cluster", cluster=cluster)
        await run_tool([self.gcloud, "config", "set", "container/cluster", cluster])

        locations = await run_tool(
            [self.gcloud, "container", "clusters", "list", "--format", "value(location)"]
        )
        region = first_line(locations)
        if region:
            logger.info("Setting the default cluster region", region=region)
            await run_tool([self.gcloud, "config", "set", "compute/region", region])

        logger.info("Getting cluster credentials", cluster=cluster)
        await run_tool([self.gcloud, "container", "clusters", "get-credentials", cluster])
        return cluster

    async def prepare(self, rule_set: RuleSet) -> RuleSet:
        """Bootstrap the environment and return the rule set ready to run.

        Used as the session's ``before_start`` hook, so it runs after port
        validation and before any tunnel starts.
        """
        self.apply_environment()
        await self.configure_project()

        if rule_set.bastion is not None and rule_set.bastion.connections:
            rule_set = rule_set.with_bastion(
                await self.resolve_bastion_zone(rule_set.bastion)
            )

        if rule_set.rules:
            await self.configure_cluster()

        logger.info("Initialization complete")
        return rule_set
