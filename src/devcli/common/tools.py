"""Short-lived external tool invocations (queries, version checks, port probe)."""

import asyncio
import subprocess
from collections.abc import Sequence

from .cancellation import CancellationToken
from .exceptions import ToolCancelledError, ToolError, ToolMissingError
from .logging import get_logger
from .process import start_process, stop_process

logger = get_logger(__name__)

PORT_PROBE_TIMEOUT = 5.0


async def run_tool(
    args: Sequence[str],
    token: CancellationToken | None = None,
) -> str:
    """Run a tool to completion and return its standard output.

    The call races the tool against ``token``; when the token fires first
    the tool is stopped and :class:`ToolCancelledError` is raised.

    Args:
        args: Program and arguments
        token: Optional session cancellation token

    Returns:
        Decoded standard output

    Raises:
        ToolMissingError: If the program cannot be executed
        ToolCancelledError: If the token fired before the tool finished
        ToolError: If the tool exits with a non-zero code
    """
    tool = args[0]
    logger.debug("Running tool", command=" ".join(args))
    try:
        process = await start_process(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise ToolError(f"Failed to run {tool}: {e}", tool) from e

    communicate = asyncio.ensure_future(process.communicate())
    waiters: set[asyncio.Future[object]] = {communicate}
    cancelled = None
    if token is not None:
        cancelled = asyncio.ensure_future(token.wait())
        waiters.add(cancelled)

    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        communicate.cancel()
        await stop_process(process, timeout=1.0)
        raise
    finally:
        if cancelled is not None:
            cancelled.cancel()

    if not communicate.done():
        await stop_process(process, timeout=1.0)
        communicate.cancel()
        raise ToolCancelledError(f"{tool} was cancelled", tool)

    stdout, stderr = communicate.result()
    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        raise ToolError(
            f"{tool} exited with code {process.returncode}: {detail}", tool
        )
    return stdout.decode(errors="replace")


async def check_tool(binary: str, *version_args: str) -> None:
    """Verify a tool is installed by running its version command.

    Raises:
        ToolMissingError: If the tool is absent or its version command fails
    """
    try:
        await run_tool([binary, *version_args])
    except ToolMissingError:
        raise
    except ToolError as e:
        raise ToolMissingError(
            f"{binary} is not installed or not configured: {e}", binary
        ) from e
    logger.debug("Tool available", tool=binary)


def port_in_use(port: int, lsof_binary: str = "lsof") -> bool:
    """Report whether anything on this machine already uses ``port``.

    Best effort: when the probe cannot decide (tool missing, denied or
    hung) the port is reported as free.
    """
    try:
        result = subprocess.run(
            [lsof_binary, "-i", f":{port}"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=PORT_PROBE_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Port probe unavailable, assuming port is free", port=port, error=str(e))
        return False
    return result.returncode == 0
