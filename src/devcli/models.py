"""Forwarding rule models.

A :class:`RuleSet` is the validated input of a session: the pod forwarding
rules of one environment plus the bastion whose connections are tunnelled
through a secure shell.
"""

from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .common.utils import MAX_PORT, MIN_PORT, validate_non_empty_string


class ForwardRule(BaseModel):
    """Forward a local port to a port of the first running pod matching a label."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    namespace: str = Field(description="Kubernetes namespace of the workload")
    app_label: str = Field(alias="app", description="Value of the pod's app label")
    local_port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Port to listen on locally")
    remote_port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Port on the pod")

    @field_validator("namespace", "app_label")
    @classmethod
    def validate_selector(cls, v: str, info: ValidationInfo) -> str:
        return validate_non_empty_string(v, info.field_name)

    def __str__(self) -> str:
        return f"app={self.app_label} in namespace {self.namespace}"


class BastionConnection(BaseModel):
    """One local-to-remote mapping tunnelled through the bastion host."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    local_port: int = Field(ge=MIN_PORT, le=MAX_PORT)
    remote_host: str = Field(min_length=1)
    remote_port: int = Field(ge=MIN_PORT, le=MAX_PORT)

    def __str__(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"


class Bastion(BaseModel):
    """Bastion host and the connections multiplexed through it."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1, description="Compute instance name")
    zone: str | None = Field(
        default=None, description="Instance zone, looked up when not configured"
    )
    connections: tuple[BastionConnection, ...] = Field(default_factory=tuple)

    @field_validator("zone")
    @classmethod
    def blank_zone_is_unset(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def with_zone(self, zone: str) -> "Bastion":
        """Create new bastion instance with a resolved zone (immutable pattern)."""
        return self.model_copy(update={"zone": zone})


class RuleSet(BaseModel):
    """Rules and bastion connections of the active environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rules: tuple[ForwardRule, ...] = Field(default_factory=tuple)
    bastion: Bastion | None = None

    @property
    def connections(self) -> tuple[BastionConnection, ...]:
        if self.bastion is None:
            return ()
        return self.bastion.connections

    def local_ports(self) -> Iterator[int]:
        """Yield every local port, rules first, then bastion connections."""
        for rule in self.rules:
            yield rule.local_port
        for connection in self.connections:
            yield connection.local_port

    def with_bastion(self, bastion: Bastion | None) -> "RuleSet":
        return self.model_copy(update={"bastion": bastion})

    def tunnel_count(self) -> int:
        """Number of tunnels this rule set starts."""
        return len(self.rules) + len(self.connections)
