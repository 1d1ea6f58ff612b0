"""Fan a decision out to voter slots under a deadline and a shared abort signal."""
from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import replace
import logging
import time
from typing import Any

from .actions import describe_action, parse_action
from .cancellation import CancelToken
from .errors import InvalidProposalError, VoterAbortedError, VoterTimeoutError
from .observability import emit_event, EventLogger, VOTER_PENDING, VOTER_SETTLED
from .voters import DecisionContext, DecisionInvoker, VoterOutcome, VoterResult, VoterSlot

LOGGER = logging.getLogger(__name__)

SettleCallback = Callable[[VoterResult], None]


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _drain(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


class VoterDispatcher:
    """Run one cancellable, deadline-bound unit per slot.

    Every unit settles exactly once and reports through ``on_settled``
    before its task finishes.
    """

    def __init__(
        self,
        invoker: DecisionInvoker,
        *,
        timeout_s: float,
        event_logger: EventLogger | None = None,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self._invoker = invoker
        self._timeout_s = timeout_s
        self._event_logger = event_logger

    async def run_slot(
        self,
        slot: VoterSlot,
        context: DecisionContext,
        token: CancelToken,
        on_settled: SettleCallback,
    ) -> VoterResult:
        started = time.perf_counter()
        emit_event(
            self._event_logger,
            VOTER_PENDING,
            {
                "round_id": context.round_id,
                "provider": slot.provider,
                "slot": slot.index,
                "format": slot.format,
            },
        )
        call = asyncio.ensure_future(self._invoker.invoke(slot, context, token))
        call.add_done_callback(_drain)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {call, waiter},
                timeout=self._timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()

        result = self._settle(slot, call, done, token, started)
        on_settled(result)
        emit_event(
            self._event_logger,
            VOTER_SETTLED,
            {
                "round_id": context.round_id,
                "provider": slot.provider,
                "slot": slot.index,
                "outcome": result.outcome.value,
                "elapsed_ms": result.elapsed_ms,
                "action": describe_action(result.action) if result.action is not None else None,
                "format": result.format,
                "error": None if result.error is None else str(result.error),
            },
        )
        return result

    def _settle(
        self,
        slot: VoterSlot,
        call: asyncio.Future[Any],
        done: set[asyncio.Future[Any]],
        token: CancelToken,
        started: float,
    ) -> VoterResult:
        elapsed = _elapsed_ms(started)

        def _result(
            outcome: VoterOutcome, *, error: BaseException | None = None, **extra: Any
        ) -> VoterResult:
            return VoterResult(
                voter_id=slot.voter_id,
                slot_index=slot.index,
                provider=slot.provider,
                outcome=outcome,
                elapsed_ms=elapsed,
                error=error,
                **extra,
            )

        if token.cancelled:
            call.cancel()
            LOGGER.debug("%s aborted after %dms (%s)", slot.voter_id, elapsed, token.reason)
            return _result(
                VoterOutcome.ABORT, error=VoterAbortedError(f"aborted: {token.reason}")
            )
        if call not in done:
            call.cancel()
            LOGGER.info("%s timed out after %dms", slot.voter_id, elapsed)
            return _result(
                VoterOutcome.TIMEOUT,
                error=VoterTimeoutError(f"no proposal within {self._timeout_s * 1000:.0f}ms"),
            )
        if call.cancelled():
            return _result(VoterOutcome.ABORT, error=VoterAbortedError("decision call cancelled"))

        exc = call.exception()
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError, VoterTimeoutError)):  # noqa: UP038
            return _result(VoterOutcome.TIMEOUT, error=exc)
        if exc is not None:
            LOGGER.info("%s failed after %dms: %s", slot.voter_id, elapsed, exc)
            return _result(VoterOutcome.FAILURE, error=exc)

        proposal = call.result()
        proposal_format = getattr(proposal, "format", slot.format)
        try:
            action = parse_action(getattr(proposal, "action", proposal))
        except InvalidProposalError as err:
            LOGGER.info("%s returned a malformed action: %s", slot.voter_id, err)
            return _result(VoterOutcome.FAILURE, error=err, format=proposal_format)
        return _result(VoterOutcome.SUCCESS, action=action, format=proposal_format)

    async def dispatch(
        self,
        slots: Sequence[VoterSlot],
        context: DecisionContext,
        token: CancelToken,
        on_settled: SettleCallback,
    ) -> list[VoterResult]:
        if not slots:
            raise ValueError("slots must not be empty")
        tasks = [
            asyncio.create_task(
                self.run_slot(slot, replace(context, format=slot.format), token, on_settled)
            )
            for slot in slots
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


__all__ = ["SettleCallback", "VoterDispatcher"]
