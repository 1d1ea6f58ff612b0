from __future__ import annotations

import asyncio

from card_consensus.actions import BuyCard, EndPhase
from card_consensus.cancellation import CancelToken, EARLY_CONSENSUS, INTERRUPTED
from card_consensus.dispatch import VoterDispatcher
from card_consensus.errors import InvalidProposalError, VoterAbortedError, VoterTimeoutError
from card_consensus.observability import RecordingLogger, VOTER_PENDING, VOTER_SETTLED
from card_consensus.voters import DecisionContext, VoterOutcome, VoterResult, VoterSlot
from conftest import make_slots, Script, ScriptedInvoker
import pytest


def _context() -> DecisionContext:
    return DecisionContext(
        state=None,
        legal_actions=(EndPhase(), BuyCard(card="Silver")),
        player_id="ai",
        round_id="r1",
    )


def test_cancel_token_fires_once() -> None:
    async def scenario() -> None:
        token = CancelToken()
        assert token.cancel(EARLY_CONSENSUS)
        assert not token.cancel(INTERRUPTED)
        assert token.reason == EARLY_CONSENSUS
        assert await token.wait() == EARLY_CONSENSUS

    asyncio.run(scenario())


@pytest.mark.asyncio
async def test_each_slot_settles_exactly_once_with_its_outcome() -> None:
    invoker = ScriptedInvoker(
        {
            "fast": {"type": "buy_card", "card": "Silver", "reasoning": "cheap"},
            "broken": RuntimeError("boom"),
            "slow": Script({"type": "end_phase"}, delay=1.0),
            "garbled": {"type": "buy_card"},
            "deadline": asyncio.TimeoutError(),
        }
    )
    logger = RecordingLogger()
    dispatcher = VoterDispatcher(invoker, timeout_s=0.05, event_logger=logger)
    settled: list[VoterResult] = []

    results = await dispatcher.dispatch(
        make_slots("fast", "broken", "slow", "garbled", "deadline"),
        _context(),
        CancelToken(),
        settled.append,
    )

    outcomes = {result.provider: result.outcome for result in results}
    assert outcomes == {
        "fast": VoterOutcome.SUCCESS,
        "broken": VoterOutcome.FAILURE,
        "slow": VoterOutcome.TIMEOUT,
        "garbled": VoterOutcome.FAILURE,
        "deadline": VoterOutcome.TIMEOUT,
    }
    assert sorted(result.provider for result in settled) == sorted(outcomes)
    by_provider = {result.provider: result for result in results}
    assert by_provider["fast"].action == BuyCard(card="Silver")
    assert by_provider["fast"].action.rationale == "cheap"
    assert isinstance(by_provider["slow"].error, VoterTimeoutError)
    assert isinstance(by_provider["garbled"].error, InvalidProposalError)
    assert len(logger.of_type(VOTER_PENDING)) == 5
    assert len(logger.of_type(VOTER_SETTLED)) == 5


@pytest.mark.asyncio
async def test_cancelled_token_aborts_pending_slots() -> None:
    invoker = ScriptedInvoker(
        {
            "a": Script({"type": "end_phase"}, delay=1.0),
            "b": Script({"type": "end_phase"}, delay=1.0),
        }
    )
    dispatcher = VoterDispatcher(invoker, timeout_s=5.0)
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel, INTERRUPTED)

    results = await dispatcher.dispatch(make_slots("a", "b"), _context(), token, lambda _: None)

    assert [result.outcome for result in results] == [VoterOutcome.ABORT, VoterOutcome.ABORT]
    assert all(isinstance(result.error, VoterAbortedError) for result in results)
    await asyncio.sleep(0.01)
    assert sorted(invoker.cancelled) == ["a", "b"]


@pytest.mark.asyncio
async def test_context_carries_slot_format() -> None:
    invoker = ScriptedInvoker({"a": {"type": "end_phase"}, "b": {"type": "end_phase"}})
    slots = make_slots("a", "b")
    slots[1] = VoterSlot(index=1, provider="b", format="json")
    dispatcher = VoterDispatcher(invoker, timeout_s=1.0)

    results = await dispatcher.dispatch(slots, _context(), CancelToken(), lambda _: None)

    formats = {provider: context.format for provider, context in invoker.calls}
    assert formats == {"a": "toon", "b": "json"}
    assert [result.format for result in results] == ["toon", "json"]


def test_dispatch_requires_slots() -> None:
    dispatcher = VoterDispatcher(ScriptedInvoker({}), timeout_s=1.0)

    with pytest.raises(ValueError):
        asyncio.run(dispatcher.dispatch([], _context(), CancelToken(), lambda _: None))


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError):
        VoterDispatcher(ScriptedInvoker({}), timeout_s=0)
