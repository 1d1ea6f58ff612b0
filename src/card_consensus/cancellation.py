"""Per-round cancellation token."""
from __future__ import annotations

import asyncio

EARLY_CONSENSUS = "early-consensus"
INTERRUPTED = "interrupted"


class CancelToken:
    """Abort signal shared by the voters of a single round.

    The token fires at most once; the first reason wins and later calls
    are no-ops.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = INTERRUPTED) -> bool:
        if self._reason is not None:
            return False
        self._reason = reason
        self._event.set()
        return True

    async def wait(self) -> str | None:
        await self._event.wait()
        return self._reason

    def __repr__(self) -> str:
        return f"CancelToken(reason={self._reason!r})"


__all__ = ["CancelToken", "EARLY_CONSENSUS", "INTERRUPTED"]
