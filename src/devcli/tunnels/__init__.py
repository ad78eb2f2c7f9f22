"""Tunnel specifications and process supervision."""

from .specs import BastionForwardSpec, PodForwardSpec, TunnelSpec
from .supervisor import TunnelHandle, TunnelOutcome, TunnelState, TunnelSupervisor

__all__ = [
    "TunnelSpec",
    "PodForwardSpec",
    "BastionForwardSpec",
    "TunnelHandle",
    "TunnelOutcome",
    "TunnelState",
    "TunnelSupervisor",
]
