"""devcli - local port forwarding to cluster pods and through a bastion host."""

from .bootstrap import EnvironmentBootstrap
from .common.cancellation import CancellationToken
from .common.exceptions import (
    ConfigError,
    DevCLIError,
    DuplicatePortError,
    PodNotFoundError,
    PortUnavailableError,
    PortValidationError,
    ProcessError,
    ResolutionError,
    ToolCancelledError,
    ToolError,
    ToolMissingError,
)
from .common.logging import get_logger, setup_logging
from .common.session_config import SessionConfig
from .config import CloudConfig, DevConfig, ProxyConfig, load_config
from .models import Bastion, BastionConnection, ForwardRule, RuleSet
from .resolver import PodResolver
from .session import SessionController, SessionPhase, SessionState
from .tunnels import (
    BastionForwardSpec,
    PodForwardSpec,
    TunnelHandle,
    TunnelOutcome,
    TunnelSpec,
    TunnelState,
    TunnelSupervisor,
)
from .validator import validate

__version__ = "0.1.0"


__all__ = [
    # Models
    "ForwardRule",
    "BastionConnection",
    "Bastion",
    "RuleSet",
    # Configuration
    "SessionConfig",
    "DevConfig",
    "ProxyConfig",
    "CloudConfig",
    "load_config",
    # Orchestration
    "validate",
    "PodResolver",
    "TunnelSpec",
    "PodForwardSpec",
    "BastionForwardSpec",
    "TunnelHandle",
    "TunnelOutcome",
    "TunnelState",
    "TunnelSupervisor",
    "CancellationToken",
    "SessionController",
    "SessionPhase",
    "SessionState",
    "EnvironmentBootstrap",
    # Exceptions
    "DevCLIError",
    "ConfigError",
    "PortValidationError",
    "DuplicatePortError",
    "PortUnavailableError",
    "ToolError",
    "ToolMissingError",
    "ToolCancelledError",
    "ResolutionError",
    "PodNotFoundError",
    "ProcessError",
    # Logging
    "get_logger",
    "setup_logging",
]
