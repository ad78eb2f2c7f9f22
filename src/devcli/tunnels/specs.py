"""Tunnel specifications.

Pod and bastion tunnels only differ in the command they run and in whether a
pod has to be looked up first; everything else about their lifecycle is
handled by :class:`~devcli.tunnels.supervisor.TunnelSupervisor`.
"""

import asyncio
import subprocess
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..common.cancellation import CancellationToken
from ..common.process import start_process
from ..models import Bastion, BastionConnection, ForwardRule

if TYPE_CHECKING:
    from ..resolver import PodResolver


class TunnelSpec(BaseModel, ABC):
    """Base tunnel specification with immutable design pattern."""

    model_config = ConfigDict(frozen=True)

    kind: str

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable tunnel identifier used in logs."""

    @property
    @abstractmethod
    def local_port(self) -> int: ...

    @property
    def needs_resolution(self) -> bool:
        return False

    async def resolve(
        self, token: CancellationToken, resolver: "PodResolver"
    ) -> "TunnelSpec":
        """Return a spec that is ready to start; the default needs no lookup."""
        return self

    @abstractmethod
    def build_command(self) -> list[str]:
        """Command line of the forwarding process."""

    async def start(self) -> asyncio.subprocess.Process:
        """Start the forwarding process.

        The process gets its own session and process group so a terminal
        Ctrl+C reaches only devcli, which then signals each tunnel's group.

        Raises:
            ToolMissingError: If the forwarding tool cannot be executed
            OSError: If the process cannot be spawned
        """
        return await start_process(
            self.build_command(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            start_new_session=True,
        )


class PodForwardSpec(TunnelSpec):
    """kubectl port-forward to the first running pod of a rule."""

    kind: Literal["pod"] = "pod"
    rule: ForwardRule
    kubectl_binary: str = Field(default="kubectl", min_length=1)
    pod_name: str | None = None

    @property
    def name(self) -> str:
        return f"pod:{self.rule.namespace}/{self.rule.app_label}:{self.rule.local_port}"

    @property
    def local_port(self) -> int:
        return self.rule.local_port

    @property
    def needs_resolution(self) -> bool:
        return self.pod_name is None

    async def resolve(
        self, token: CancellationToken, resolver: "PodResolver"
    ) -> "PodForwardSpec":
        if self.pod_name is not None:
            return self
        pod_name = await resolver.resolve(token, self.rule)
        return self.model_copy(update={"pod_name": pod_name})

    def build_command(self) -> list[str]:
        if self.pod_name is None:
            raise ValueError(f"Pod for tunnel {self.name} has not been resolved")
        return [
            self.kubectl_binary,
            "port-forward",
            f"--namespace={self.rule.namespace}",
            self.pod_name,
            f"{self.rule.local_port}:{self.rule.remote_port}",
        ]


class BastionForwardSpec(TunnelSpec):
    """gcloud compute ssh local forward through the bastion host."""

    kind: Literal["bastion"] = "bastion"
    bastion: Bastion
    connection: BastionConnection
    gcloud_binary: str = Field(default="gcloud", min_length=1)

    @property
    def name(self) -> str:
        return f"bastion:{self.bastion.name}->{self.connection}:{self.connection.local_port}"

    @property
    def local_port(self) -> int:
        return self.connection.local_port

    def build_command(self) -> list[str]:
        command = [self.gcloud_binary, "compute", "ssh", self.bastion.name]
        if self.bastion.zone:
            command += ["--zone", self.bastion.zone]
        binding = (
            f"localhost:{self.connection.local_port}:"
            f"{self.connection.remote_host}:{self.connection.remote_port}"
        )
        # Everything after "--" is handed to ssh; -N keeps the session tunnel-only
        command += ["--", "-N", "-L", binding]
        return command
