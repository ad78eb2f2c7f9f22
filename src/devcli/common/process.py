"""Subprocess lifecycle helpers shared by tool invocations and tunnels."""

import asyncio
import os
import signal
from collections.abc import Sequence
from typing import Any

from .exceptions import ToolMissingError
from .logging import get_logger

logger = get_logger(__name__)


async def start_process(
    args: Sequence[str], **kwargs: Any
) -> asyncio.subprocess.Process:
    """Start an external program without a shell.

    Args:
        args: Program and arguments
        **kwargs: Passed through to ``asyncio.create_subprocess_exec``

    Returns:
        The started process

    Raises:
        ToolMissingError: If the program does not exist or is not executable
        OSError: For any other failure to spawn
    """
    program = args[0]
    try:
        process = await asyncio.create_subprocess_exec(*args, **kwargs)
    except (FileNotFoundError, PermissionError) as e:
        raise ToolMissingError(
            f"{program} is not installed or not in the system's PATH", program
        ) from e
    logger.debug("Process started", program=program, pid=process.pid)
    return process


def _send_signal(process: asyncio.subprocess.Process, sig: int, group: bool) -> None:
    """Signal the process, or its whole process group when ``group`` is set.

    Raises:
        ProcessLookupError: If nothing received the signal
    """
    if group:
        os.killpg(process.pid, sig)
    else:
        process.send_signal(sig)


async def stop_process(
    process: asyncio.subprocess.Process, timeout: float = 5.0, group: bool = False
) -> int:
    """Stop a process gracefully, killing it if it does not exit in time.

    Args:
        process: Process to stop
        timeout: Seconds to wait after SIGTERM before SIGKILL
        group: Signal the process group led by ``process`` so that its own
            children stop with it. The process must have been started with
            ``start_new_session=True``.

    Returns:
        The process exit code
    """
    if process.returncode is not None:
        return process.returncode

    try:
        _send_signal(process, signal.SIGTERM, group)
    except ProcessLookupError:
        # Exited between the returncode check and the signal
        return await process.wait()

    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Process did not terminate gracefully, force killing", pid=process.pid, group=group
        )
        try:
            _send_signal(process, signal.SIGKILL, group)
        except ProcessLookupError:
            pass
        return await process.wait()


def kill_process(process: asyncio.subprocess.Process | None, group: bool = False) -> None:
    """Send SIGKILL without waiting; used when the whole program is exiting.

    With ``group`` the process group is killed even when its leader has
    already exited, so no child outlives devcli.
    """
    if process is None:
        return
    if process.returncode is not None and not group:
        return
    try:
        _send_signal(process, signal.SIGKILL, group)
    except ProcessLookupError:
        pass
