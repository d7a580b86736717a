"""Cooperative cancellation for workflow runs.

A CancellationToken is handed to WorkflowExecutor.execute(). Calling
``cancel()`` stops the executor from scheduling new steps; steps already
running are allowed to finish.
"""

import asyncio


class CancellationToken:
    """One-shot cancellation signal shared between a caller and a run."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Workflow run was cancelled") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
