"""Caller-owned cancellation token for a completion call."""

import asyncio


class AbortSignal:
    """One-shot abort flag the UI fires to stop an in-flight generation.

    Aborting is idempotent and never raises. The orchestrator checks
    ``aborted`` between stream items and also awaits ``wait()`` so a blocked
    network read is interrupted as soon as the signal fires.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
