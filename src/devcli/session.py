"""Session orchestration: validate, fan out tunnels, drain on interrupt."""

import asyncio
import os
import signal
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .common.cancellation import CancellationToken
from .common.exceptions import DevCLIError, PortValidationError
from .common.logging import get_logger
from .common.session_config import SessionConfig
from .models import RuleSet
from .tunnels import (
    BastionForwardSpec,
    PodForwardSpec,
    TunnelHandle,
    TunnelOutcome,
    TunnelSpec,
    TunnelState,
    TunnelSupervisor,
)
from .validator import PortProbe, probe_for, validate

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

BeforeStart = Callable[[RuleSet], Awaitable[RuleSet]]

_DEFAULT_PROBE: Any = object()


class SessionPhase(str, Enum):
    """Interrupt escalation phases."""

    RUNNING = "running"
    DRAINING = "draining"
    FORCE_EXIT = "force_exit"


def _exit_now(code: int) -> None:
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


class SessionState:
    """Shared state of one session run.

    Holds the cancellation token handed to every tunnel, the interrupt
    count driving the RUNNING -> DRAINING -> FORCE_EXIT escalation, and the
    handles of tunnels whose outcome has not been collected yet. The
    session controller is the only writer.
    """

    def __init__(self, force_exit: Callable[[int], None] = _exit_now):
        self.token = CancellationToken()
        self.interrupts = 0
        self.phase = SessionPhase.RUNNING
        self.handles: set[TunnelHandle] = set()
        self._force_exit = force_exit

    def interrupt(self) -> None:
        """Handle one SIGINT/SIGTERM."""
        self.interrupts += 1

        if self.interrupts == 1:
            self.phase = SessionPhase.DRAINING
            logger.warning(
                "Interrupted, shutting down gracefully (interrupt again to force exit)",
                tunnels=len(self.handles),
            )
            self.token.cancel()
            return

        self.phase = SessionPhase.FORCE_EXIT
        logger.error("Interrupted again, force exiting immediately")
        for handle in list(self.handles):
            handle.kill()
        self._force_exit(EXIT_FAILURE)


class SessionController:
    """Runs every tunnel of a rule set until they all end.

    Example:
        >>> controller = SessionController(SessionConfig())
        >>> exit_code = asyncio.run(controller.run(rule_set))
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        supervisor: TunnelSupervisor | None = None,
        probe: PortProbe | None = _DEFAULT_PROBE,
        before_start: BeforeStart | None = None,
        state: SessionState | None = None,
    ):
        self.config = config or SessionConfig()
        self.supervisor = supervisor or TunnelSupervisor(self.config)
        self.probe = probe_for(self.config) if probe is _DEFAULT_PROBE else probe
        self.before_start = before_start
        self.state = state or SessionState()
        self.outcomes: list[TunnelOutcome] = []
        self._previous_handlers: dict[int, Any] = {}

    def build_specs(self, rule_set: RuleSet) -> list[TunnelSpec]:
        """One pod tunnel per rule, then one bastion tunnel per connection."""
        specs: list[TunnelSpec] = [
            PodForwardSpec(rule=rule, kubectl_binary=self.config.kubectl_binary)
            for rule in rule_set.rules
        ]
        if rule_set.bastion is not None:
            specs.extend(
                BastionForwardSpec(
                    bastion=rule_set.bastion,
                    connection=connection,
                    gcloud_binary=self.config.gcloud_binary,
                )
                for connection in rule_set.bastion.connections
            )
        return specs

    async def run(self, rule_set: RuleSet) -> int:
        """Validate ``rule_set`` and run its tunnels.

        Returns:
            0 once every tunnel reached a terminal state, 1 when startup failed
            or was interrupted
        """
        loop = asyncio.get_running_loop()
        self._install_signal_handlers(loop)
        try:
            return await self._run(rule_set)
        finally:
            self._remove_signal_handlers(loop)

    async def _run(self, rule_set: RuleSet) -> int:
        try:
            await asyncio.to_thread(validate, rule_set, self.probe)
        except PortValidationError as e:
            logger.error("Port validation failed", port=e.port, error=str(e))
            return EXIT_FAILURE

        if self.before_start is not None and not self.state.token.cancelled:
            try:
                rule_set = await self._prepare(rule_set)
            except DevCLIError as e:
                logger.error("Session setup failed", error=str(e))
                return EXIT_FAILURE

        if self.state.token.cancelled:
            logger.warning("Interrupted before tunnels started")
            return EXIT_FAILURE

        if rule_set.tunnel_count() == 0:
            logger.warning("No tunnels configured for this environment")
            return EXIT_OK

        specs = self.build_specs(rule_set)
        logger.info("Starting tunnels", count=len(specs))
        self.outcomes = await self._fan_out(specs)
        self._report(self.outcomes)
        return EXIT_OK

    async def _prepare(self, rule_set: RuleSet) -> RuleSet:
        """Run the ``before_start`` hook, abandoning it on interrupt."""
        setup = asyncio.ensure_future(self.before_start(rule_set))
        interrupted = asyncio.ensure_future(self.state.token.wait())
        try:
            await asyncio.wait({setup, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            setup.cancel()
            raise
        finally:
            interrupted.cancel()

        if not setup.done():
            setup.cancel()
            await asyncio.gather(setup, return_exceptions=True)
            return rule_set
        return setup.result()

    async def _fan_out(self, specs: list[TunnelSpec]) -> list[TunnelOutcome]:
        """Start every tunnel and collect exactly one outcome per tunnel."""
        finished: asyncio.Queue[TunnelHandle] = asyncio.Queue()
        tasks = []
        for spec in specs:
            handle = TunnelHandle(spec, self.state.token)
            self.state.handles.add(handle)
            tasks.append(
                asyncio.create_task(self._run_tunnel(handle, finished), name=spec.name)
            )

        outcomes: list[TunnelOutcome] = []
        try:
            while len(outcomes) < len(tasks):
                handle = await finished.get()
                self.state.handles.discard(handle)
                if handle.outcome is not None:
                    outcomes.append(handle.outcome)
        except asyncio.CancelledError:
            self.state.token.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return outcomes

    async def _run_tunnel(self, handle: TunnelHandle, finished: "asyncio.Queue[TunnelHandle]") -> None:
        try:
            await self.supervisor.supervise(handle.token, handle.spec, handle)
        except Exception as e:
            logger.exception("Tunnel supervisor crashed", tunnel=handle.name)
            handle.kill()
            handle.finish(TunnelState.ABANDONED, reason=str(e))
        finished.put_nowait(handle)

    def _report(self, outcomes: list[TunnelOutcome]) -> None:
        failed = [outcome for outcome in outcomes if outcome.failed]
        logger.info(
            "All tunnels stopped",
            total=len(outcomes),
            failed=len(failed),
            canceled=sum(1 for o in outcomes if o.state == TunnelState.CANCELED),
        )
        for outcome in failed:
            logger.warning(
                "Tunnel ended with an error",
                tunnel=outcome.name,
                state=outcome.state.value,
                exit_code=outcome.exit_code,
                reason=outcome.reason,
            )

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.state.interrupt)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                self._previous_handlers[sig] = signal.signal(
                    sig, lambda *_: loop.call_soon_threadsafe(self.state.interrupt)
                )

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            if sig in self._previous_handlers:
                signal.signal(sig, self._previous_handlers.pop(sig))
            else:
                loop.remove_signal_handler(sig)
