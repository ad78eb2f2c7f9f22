"""Lifecycle supervision for a single tunnel process."""

import asyncio
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..common.cancellation import CancellationToken
from ..common.exceptions import ProcessError, ResolutionError, ToolError
from ..common.logging import get_logger
from ..common.process import kill_process, stop_process
from ..common.session_config import SessionConfig
from ..resolver import PodResolver
from .specs import TunnelSpec

logger = get_logger(__name__)


class TunnelState(str, Enum):
    """Tunnel state enumeration."""

    PENDING = "pending"
    RESOLVING = "resolving"
    RUNNING = "running"
    EXITED = "exited"
    CANCELED = "canceled"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (TunnelState.EXITED, TunnelState.CANCELED, TunnelState.ABANDONED)


class TunnelOutcome(BaseModel):
    """Terminal result of one tunnel."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    state: TunnelState
    exit_code: int | None = None
    reason: str | None = None

    @property
    def failed(self) -> bool:
        if self.state == TunnelState.ABANDONED:
            return True
        return self.state == TunnelState.EXITED and self.exit_code != 0


class TunnelHandle:
    """Runtime view of one tunnel: its spec, its process and its state.

    The cancellation token is borrowed from the session; the handle owns
    only the process.
    """

    def __init__(self, spec: TunnelSpec, token: CancellationToken):
        self.spec = spec
        self.token = token
        self.state = TunnelState.PENDING
        self.process: asyncio.subprocess.Process | None = None
        self.outcome: TunnelOutcome | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def pid(self) -> int | None:
        if self.process is None or self.process.returncode is not None:
            return None
        return self.process.pid

    def kill(self) -> None:
        """Kill the process group immediately without waiting for it."""
        kill_process(self.process, group=True)

    def finish(self, state: TunnelState, exit_code: int | None = None, reason: str | None = None) -> TunnelOutcome:
        if not state.terminal:
            raise ValueError(f"Tunnel cannot finish in state {state.value}")
        self.state = state
        self.outcome = TunnelOutcome(
            name=self.name, state=state, exit_code=exit_code, reason=reason
        )
        return self.outcome

    def __repr__(self) -> str:
        return f"TunnelHandle(name={self.name!r}, state={self.state.value}, pid={self.pid})"


class TunnelSupervisor:
    """Starts one forwarding process and waits for it to end.

    A tunnel ends when its process exits or when the session token fires.
    Failures are reported through the returned outcome and never affect
    sibling tunnels; there is no retry.
    """

    def __init__(self, config: SessionConfig | None = None, resolver: PodResolver | None = None):
        self.config = config or SessionConfig()
        self.resolver = resolver or PodResolver(self.config.kubectl_binary)

    async def supervise(
        self,
        token: CancellationToken,
        spec: TunnelSpec,
        handle: TunnelHandle | None = None,
    ) -> TunnelOutcome:
        """Run ``spec`` until its process exits or ``token`` fires.

        Args:
            token: Session cancellation token
            spec: Tunnel to run
            handle: Runtime handle to update, created when not given

        Returns:
            The tunnel's terminal outcome
        """
        handle = handle or TunnelHandle(spec, token)

        if token.cancelled:
            return self._cancelled(handle)

        if spec.needs_resolution:
            handle.state = TunnelState.RESOLVING
            try:
                spec = await spec.resolve(token, self.resolver)
            except (ResolutionError, ToolError) as e:
                if token.cancelled:
                    return self._cancelled(handle)
                logger.error("Abandoning tunnel", tunnel=handle.name, error=str(e))
                return handle.finish(TunnelState.ABANDONED, reason=str(e))
            handle.spec = spec

            if token.cancelled:
                return self._cancelled(handle)

        try:
            handle.process = await self._start(spec)
        except (ToolError, ProcessError) as e:
            logger.error("Abandoning tunnel", tunnel=handle.name, error=str(e))
            return handle.finish(TunnelState.ABANDONED, reason=str(e))

        handle.state = TunnelState.RUNNING
        logger.info(
            "Tunnel running",
            tunnel=handle.name,
            local_port=spec.local_port,
            pid=handle.process.pid,
        )

        exit_code = await self._wait(token, handle.process)

        if token.cancelled:
            return self._cancelled(handle, exit_code)

        if exit_code != 0:
            error = ProcessError(f"Tunnel {handle.name} exited with code {exit_code}")
            logger.error("Tunnel process failed", tunnel=handle.name, exit_code=exit_code, error=str(error))
            return handle.finish(TunnelState.EXITED, exit_code=exit_code, reason=str(error))

        logger.info("Tunnel process exited", tunnel=handle.name, exit_code=exit_code)
        return handle.finish(TunnelState.EXITED, exit_code=exit_code)

    async def _start(self, spec: TunnelSpec) -> asyncio.subprocess.Process:
        logger.info("Starting tunnel", tunnel=spec.name, command=" ".join(spec.build_command()))
        try:
            return await spec.start()
        except OSError as e:
            raise ProcessError(f"Failed to start tunnel {spec.name}: {e}") from e

    async def _wait(self, token: CancellationToken, process: asyncio.subprocess.Process) -> int:
        """Wait for the process, stopping it if the token fires first."""
        exited = asyncio.ensure_future(process.wait())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({exited, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            exited.cancel()
            await stop_process(process, self.config.graceful_shutdown_timeout, group=True)
            raise
        finally:
            cancelled.cancel()

        if exited.done():
            return exited.result()

        exited.cancel()
        logger.debug("Stopping tunnel process", pid=process.pid)
        return await stop_process(process, self.config.graceful_shutdown_timeout, group=True)

    def _cancelled(self, handle: TunnelHandle, exit_code: int | None = None) -> TunnelOutcome:
        logger.info("Tunnel stopped", tunnel=handle.name)
        return handle.finish(TunnelState.CANCELED, exit_code=exit_code)
