"""Shared pytest fixtures for devcli tests."""

import asyncio
import os
import sys
import time
from collections.abc import Callable
from typing import Literal

import pytest

from devcli.common.session_config import SessionConfig
from devcli.models import Bastion, BastionConnection, ForwardRule, RuleSet
from devcli.tunnels.specs import TunnelSpec

SLEEP_FOREVER = "import time; time.sleep(60)"


class CommandSpec(TunnelSpec):
    """Tunnel spec running an arbitrary command, for lifecycle tests."""

    kind: Literal["command"] = "command"
    label: str
    port: int = 9999
    argv: list[str]

    @property
    def name(self) -> str:
        return self.label

    @property
    def local_port(self) -> int:
        return self.port

    def build_command(self) -> list[str]:
        return list(self.argv)


def python_spec(label: str, code: str, port: int = 9999) -> CommandSpec:
    """Spec whose process is a short Python program."""
    return CommandSpec(label=label, port=port, argv=[sys.executable, "-c", code])


def spawning_code(pid_file) -> str:
    """Python program that ignores SIGTERM and starts a child that outlives it.

    The child inherits the ignored SIGTERM. The parent writes the child pid
    to ``pid_file``.
    """
    return (
        "import os, signal, subprocess, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        f"child = subprocess.Popen([sys.executable, \"-c\", {SLEEP_FOREVER!r}])\n"
        f"tmp = {str(pid_file)!r} + \".tmp\"\n"
        "with open(tmp, \"w\") as f:\n"
        "    f.write(str(child.pid))\n"
        f"os.replace(tmp, {str(pid_file)!r})\n"
        "time.sleep(60)\n"
    )


def pid_alive(pid: int) -> bool:
    """Whether ``pid`` is a live process. Zombies count as dead."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        with open(f"/proc/{pid}/stat") as f:
            # State follows the parenthesised command name
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    except (OSError, IndexError):
        return True


async def wait_until(condition: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll ``condition`` until it holds or fail the test."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            pytest.fail("Condition not reached before timeout")
        await asyncio.sleep(0.05)


@pytest.fixture
def session_config():
    """Session configuration with a short shutdown grace period.

    Returns:
        SessionConfig: config without the port probe
    """
    return SessionConfig(graceful_shutdown_timeout=1.0, check_port_availability=False)


@pytest.fixture
def forward_rule():
    return ForwardRule(namespace="a", app="svc1", local_port=8080, remote_port=80)


@pytest.fixture
def bastion():
    return Bastion(
        name="b",
        zone="europe-west1-b",
        connections=(
            BastionConnection(local_port=5432, remote_host="10.0.0.1", remote_port=5432),
        ),
    )


@pytest.fixture
def rule_set(forward_rule, bastion):
    """The rule set of a single pod rule and a single bastion connection.

    Returns:
        RuleSet: 8080 -> svc1:80 and 5432 -> 10.0.0.1:5432
    """
    return RuleSet(rules=(forward_rule,), bastion=bastion)


@pytest.fixture
def fake_tool(tmp_path):
    """Build executable scripts that stand in for kubectl or gcloud.

    Returns:
        Callable: takes Python source, returns the script path
    """

    def make(code: str, name: str = "fake-tool") -> str:
        script = tmp_path / name
        script.write_text(f"#!{sys.executable}\n{code}\n")
        script.chmod(0o755)
        return str(script)

    return make
