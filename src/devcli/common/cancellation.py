"""Session-wide cancellation token."""

import asyncio


class CancellationToken:
    """Broadcast cancellation signal shared by every tunnel of a session.

    Only the session mutates the token; tunnels and tool invocations observe
    it through :attr:`cancelled` or by awaiting :meth:`wait`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
