"""Tests for the session controller and interrupt escalation."""

import asyncio
import os
import signal
from unittest.mock import AsyncMock, Mock

import pytest

from devcli.common.exceptions import PodNotFoundError, ToolMissingError
from devcli.common.session_config import SessionConfig
from devcli.models import ForwardRule, RuleSet
from devcli.session import SessionController, SessionPhase, SessionState
from devcli.tunnels import BastionForwardSpec, PodForwardSpec, TunnelState, TunnelSupervisor

from conftest import SLEEP_FOREVER, python_spec, wait_until


def _running(state: SessionState, count: int):
    return lambda: (
        len(state.handles) == count
        and all(handle.state == TunnelState.RUNNING for handle in state.handles)
    )


class TestSessionState:
    """Test the RUNNING -> DRAINING -> FORCE_EXIT escalation."""

    def test_initial_state(self):
        state = SessionState(force_exit=Mock())
        assert state.phase == SessionPhase.RUNNING
        assert state.interrupts == 0
        assert not state.token.cancelled

    def test_first_interrupt_drains(self):
        force_exit = Mock()
        state = SessionState(force_exit=force_exit)

        state.interrupt()

        assert state.phase == SessionPhase.DRAINING
        assert state.token.cancelled
        force_exit.assert_not_called()

    def test_second_interrupt_forces_exit(self):
        """The second interrupt kills outstanding processes and exits with 1."""
        force_exit = Mock()
        state = SessionState(force_exit=force_exit)
        handle = Mock()
        state.handles.add(handle)

        state.interrupt()
        state.interrupt()

        assert state.phase == SessionPhase.FORCE_EXIT
        assert state.interrupts == 2
        handle.kill.assert_called_once()
        force_exit.assert_called_once_with(1)


class TestBuildSpecs:
    """One tunnel per rule and per bastion connection."""

    def test_specs_from_rule_set(self, rule_set, session_config):
        specs = SessionController(session_config).build_specs(rule_set)
        assert [type(spec) for spec in specs] == [PodForwardSpec, BastionForwardSpec]
        assert [spec.local_port for spec in specs] == [8080, 5432]

    def test_configured_binaries(self, rule_set):
        config = SessionConfig(kubectl_binary="/opt/kubectl", gcloud_binary="/opt/gcloud")
        pod, bastion = SessionController(config).build_specs(rule_set)
        assert pod.kubectl_binary == "/opt/kubectl"
        assert bastion.gcloud_binary == "/opt/gcloud"

    def test_no_bastion(self, forward_rule, session_config):
        specs = SessionController(session_config).build_specs(RuleSet(rules=(forward_rule,)))
        assert len(specs) == 1


class TestStartup:
    """Failures before any tunnel starts."""

    @pytest.mark.asyncio
    async def test_duplicate_ports_start_nothing(self, session_config):
        """Two rules on 9000: exit 1 and no tunnel task is started."""
        rule_set = RuleSet(
            rules=(
                ForwardRule(namespace="a", app="x", local_port=9000, remote_port=80),
                ForwardRule(namespace="b", app="y", local_port=9000, remote_port=80),
            )
        )
        supervisor = Mock(spec=TunnelSupervisor)
        before_start = AsyncMock()
        controller = SessionController(
            session_config, supervisor=supervisor, probe=None, before_start=before_start
        )

        assert await controller.run(rule_set) == 1
        supervisor.supervise.assert_not_called()
        before_start.assert_not_called()

    @pytest.mark.asyncio
    async def test_unavailable_port_starts_nothing(self, rule_set, session_config):
        supervisor = Mock(spec=TunnelSupervisor)
        controller = SessionController(session_config, supervisor=supervisor, probe=lambda port: True)
        assert await controller.run(rule_set) == 1
        supervisor.supervise.assert_not_called()

    @pytest.mark.asyncio
    async def test_setup_failure_starts_nothing(self, rule_set, session_config):
        """A missing tool during bootstrap is fatal."""
        supervisor = Mock(spec=TunnelSupervisor)
        before_start = AsyncMock(side_effect=ToolMissingError("gcloud is not installed", "gcloud"))
        controller = SessionController(
            session_config, supervisor=supervisor, probe=None, before_start=before_start
        )
        assert await controller.run(rule_set) == 1
        supervisor.supervise.assert_not_called()

    @pytest.mark.asyncio
    async def test_before_start_result_is_used(self, rule_set, session_config):
        """Tunnels are built from the rule set returned by the setup hook."""
        prepared = rule_set.with_bastion(None)
        controller = SessionController(
            session_config, probe=None, before_start=AsyncMock(return_value=prepared)
        )
        controller.build_specs = Mock(return_value=[])
        assert await controller.run(rule_set) == 0
        controller.build_specs.assert_called_once_with(prepared)

    @pytest.mark.asyncio
    async def test_sigterm_during_setup_exits_one(self, rule_set, session_config):
        """An interrupt while the environment is being prepared aborts startup."""
        started = asyncio.Event()
        setup_cancelled = []

        async def slow_setup(prepared):
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                setup_cancelled.append(True)
                raise
            return prepared

        supervisor = Mock(spec=TunnelSupervisor)
        state = SessionState(force_exit=Mock())
        controller = SessionController(
            session_config, supervisor=supervisor, probe=None, before_start=slow_setup, state=state
        )

        run = asyncio.ensure_future(controller.run(rule_set))
        await asyncio.wait_for(started.wait(), timeout=10)
        os.kill(os.getpid(), signal.SIGTERM)

        assert await asyncio.wait_for(run, timeout=10) == 1
        assert setup_cancelled == [True]
        assert state.phase == SessionPhase.DRAINING
        supervisor.supervise.assert_not_called()

    @pytest.mark.asyncio
    async def test_handlers_removed_after_startup_failure(self, session_config):
        """Signal handling is restored however the session ends."""
        rule_set = RuleSet(
            rules=(
                ForwardRule(namespace="a", app="x", local_port=9000, remote_port=80),
                ForwardRule(namespace="b", app="y", local_port=9000, remote_port=80),
            )
        )
        controller = SessionController(session_config, probe=None)
        assert await controller.run(rule_set) == 1
        assert not asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_empty_rule_set(self, session_config):
        assert await SessionController(session_config, probe=None).run(RuleSet()) == 0


class TestRun:
    """Concurrent tunnel runs."""

    @pytest.mark.asyncio
    async def test_all_tunnels_exit(self, rule_set, session_config):
        controller = SessionController(session_config, probe=None, state=SessionState(force_exit=Mock()))
        controller.build_specs = Mock(
            return_value=[python_spec("one", "pass"), python_spec("two", "import sys; sys.exit(2)")]
        )

        assert await controller.run(rule_set) == 0

        states = {outcome.name: (outcome.state, outcome.exit_code) for outcome in controller.outcomes}
        assert states == {"one": (TunnelState.EXITED, 0), "two": (TunnelState.EXITED, 2)}
        assert not controller.state.handles

    @pytest.mark.asyncio
    async def test_failed_resolution_does_not_block_sibling(self, session_config, fake_tool):
        """One rule without a running pod does not stop the other rule."""
        kubectl = fake_tool("pass", name="kubectl")
        missing = ForwardRule(namespace="a", app="gone", local_port=8080, remote_port=80)
        present = ForwardRule(namespace="a", app="here", local_port=8081, remote_port=80)

        async def resolve(token, rule):
            if rule.app_label == "gone":
                raise PodNotFoundError(rule.namespace, rule.app_label)
            return "here-abc"

        resolver = AsyncMock()
        resolver.resolve.side_effect = resolve
        config = session_config.model_copy(update={"kubectl_binary": kubectl})
        controller = SessionController(
            config,
            supervisor=TunnelSupervisor(config, resolver),
            probe=None,
            state=SessionState(force_exit=Mock()),
        )

        assert await controller.run(RuleSet(rules=(missing, present))) == 0

        by_port = {outcome.name: outcome for outcome in controller.outcomes}
        assert by_port["pod:a/gone:8080"].state == TunnelState.ABANDONED
        assert by_port["pod:a/here:8081"].state == TunnelState.EXITED
        assert by_port["pod:a/here:8081"].exit_code == 0

    @pytest.mark.asyncio
    async def test_interrupt_drains_and_exits_zero(self, rule_set, session_config):
        """Pod tunnel already exited, bastion still running: interrupt cancels it and exit is 0."""
        force_exit = Mock()
        state = SessionState(force_exit=force_exit)
        controller = SessionController(session_config, probe=None, state=state)
        controller.build_specs = Mock(
            return_value=[python_spec("pod", "pass", port=8080), python_spec("bastion", SLEEP_FOREVER, port=5432)]
        )

        run = asyncio.ensure_future(controller.run(rule_set))
        await wait_until(_running(state, 1))
        state.interrupt()
        exit_code = await asyncio.wait_for(run, timeout=10)

        assert exit_code == 0
        force_exit.assert_not_called()
        states = {outcome.name: outcome.state for outcome in controller.outcomes}
        assert states == {"pod": TunnelState.EXITED, "bastion": TunnelState.CANCELED}

    @pytest.mark.asyncio
    async def test_second_interrupt_does_not_wait(self, rule_set, session_config):
        """The second interrupt force-exits while tunnels are still draining."""
        ignore_term = (
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "time.sleep(60)\n"
        )
        force_exit = Mock()
        state = SessionState(force_exit=force_exit)
        config = session_config.model_copy(update={"graceful_shutdown_timeout": 30.0})
        controller = SessionController(config, probe=None, state=state)
        controller.build_specs = Mock(
            return_value=[python_spec("stubborn", ignore_term), python_spec("sleeper", SLEEP_FOREVER, port=9998)]
        )

        run = asyncio.ensure_future(controller.run(rule_set))
        await wait_until(_running(state, 2))
        await asyncio.sleep(0.5)
        state.interrupt()
        await wait_until(lambda: len(state.handles) == 1)
        assert not run.done()

        state.interrupt()

        force_exit.assert_called_once_with(1)
        # The stub exit returns, so the killed tunnel still reports in
        assert await asyncio.wait_for(run, timeout=10) == 0

    @pytest.mark.asyncio
    async def test_sigterm_triggers_graceful_shutdown(self, rule_set, session_config):
        """A real SIGTERM reaches the session's interrupt handler."""
        state = SessionState(force_exit=Mock())
        controller = SessionController(session_config, probe=None, state=state)
        controller.build_specs = Mock(return_value=[python_spec("sleeper", SLEEP_FOREVER)])

        run = asyncio.ensure_future(controller.run(rule_set))
        await wait_until(_running(state, 1))
        os.kill(os.getpid(), signal.SIGTERM)
        exit_code = await asyncio.wait_for(run, timeout=10)

        assert exit_code == 0
        assert state.interrupts == 1
        assert controller.outcomes[0].state == TunnelState.CANCELED

    @pytest.mark.asyncio
    async def test_crashing_supervisor_is_isolated(self, rule_set, session_config):
        """An unexpected error in one tunnel becomes an ABANDONED outcome."""
        supervisor = Mock(spec=TunnelSupervisor)
        supervisor.supervise = AsyncMock(side_effect=RuntimeError("boom"))
        controller = SessionController(
            session_config, supervisor=supervisor, probe=None, state=SessionState(force_exit=Mock())
        )

        assert await controller.run(rule_set) == 0
        assert [outcome.state for outcome in controller.outcomes] == [
            TunnelState.ABANDONED,
            TunnelState.ABANDONED,
        ]
        assert controller.outcomes[0].reason == "boom"
