"""Local port validation performed before any tunnel starts."""

from collections.abc import Callable
from functools import partial

from .common.exceptions import DuplicatePortError, PortUnavailableError
from .common.logging import get_logger
from .common.session_config import SessionConfig
from .common.tools import port_in_use
from .models import RuleSet

logger = get_logger(__name__)

PortProbe = Callable[[int], bool]
"""Returns True when the port is already in use on this machine."""


def find_duplicate_port(rule_set: RuleSet) -> int | None:
    """Return the first local port claimed twice, rules before connections."""
    seen: set[int] = set()
    for port in rule_set.local_ports():
        if port in seen:
            return port
        seen.add(port)
    return None


def validate(rule_set: RuleSet, probe: PortProbe | None = port_in_use) -> None:
    """Check that every local port of ``rule_set`` can be bound.

    Args:
        rule_set: Rules and bastion connections of the environment
        probe: Local availability check for rule ports, ``None`` to skip it

    Raises:
        DuplicatePortError: If a local port appears more than once
        PortUnavailableError: If the probe reports a rule's port as in use
    """
    duplicate = find_duplicate_port(rule_set)
    if duplicate is not None:
        raise DuplicatePortError(duplicate)

    if probe is not None:
        for rule in rule_set.rules:
            if probe(rule.local_port):
                raise PortUnavailableError(rule.local_port, rule)

    logger.debug(
        "Local ports validated",
        ports=sorted(rule_set.local_ports()),
        probed=probe is not None,
    )


def probe_for(config: SessionConfig) -> PortProbe | None:
    """Build the port probe described by ``config``."""
    if not config.check_port_availability:
        return None
    return partial(port_in_use, lsof_binary=config.lsof_binary)
