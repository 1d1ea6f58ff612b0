from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from card_consensus.actions import (
    BuyCard,
    DiscardCard,
    EndPhase,
    PlayAction,
    parse_action,
    ProposedAction,
    SkipDecision,
)
from card_consensus.cancellation import CancelToken
from card_consensus.engine import ApplyResult, PendingDecision
from card_consensus.voters import DecisionContext, Proposal, VoterSlot
import pytest

Reply = Mapping[str, Any] | BaseException | Callable[[DecisionContext], Any]


@dataclass
class Script:
    reply: Reply
    delay: float = 0.0


class ScriptedInvoker:
    """Answer each provider from a fixed script after an optional delay."""

    def __init__(self, scripts: Mapping[str, Script | Reply]) -> None:
        self._scripts = {
            provider: entry if isinstance(entry, Script) else Script(entry)
            for provider, entry in scripts.items()
        }
        self.calls: list[tuple[str, DecisionContext]] = []
        self.cancelled: list[str] = []

    async def invoke(
        self, slot: VoterSlot, context: DecisionContext, cancel_token: CancelToken
    ) -> Proposal:
        self.calls.append((slot.provider, context))
        script = self._scripts[slot.provider]
        try:
            if script.delay:
                await asyncio.sleep(script.delay)
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled.append(slot.provider)
            raise
        reply = script.reply
        if callable(reply) and not isinstance(reply, BaseException):
            reply = reply(context)
        if isinstance(reply, BaseException):
            raise reply
        return Proposal(action=reply, format=context.format)

    def providers_called(self) -> list[str]:
        return [provider for provider, _ in self.calls]


def make_slots(*providers: str) -> list[VoterSlot]:
    return [VoterSlot(index=index, provider=name) for index, name in enumerate(providers)]


ACTION_CARDS = frozenset({"Village", "Smithy", "Market"})


@dataclass
class FakeState:
    active_player_id: str = "ai"
    phase: str = "action"
    turn: int = 1
    game_over: bool = False
    pending_decision: PendingDecision | None = None
    hand: list[str] = field(default_factory=lambda: ["Village", "Copper", "Estate"])
    buys: int = 1
    supply: tuple[str, ...] = ("Silver", "Gold")
    bought: list[str] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    focus_index: int | None = None


class FakeEngine:
    """Tiny action -> buy -> next player rule engine."""

    def __init__(
        self,
        state: FakeState | None = None,
        *,
        reject: Sequence[str] = (),
        next_player: str = "opponent",
    ) -> None:
        self._state = state or FakeState()
        self._reject = frozenset(reject)
        self._next_player = next_player
        self.applied: list[tuple[str, ProposedAction]] = []

    @property
    def state(self) -> FakeState:
        return self._state

    def legal_actions(self, state: FakeState) -> list[ProposedAction]:
        pending = state.pending_decision
        if pending is not None and pending.actions and state.focus_index is not None:
            card = pending.card_options[state.focus_index]
            per_card = [parse_action({"type": kind, "card": card}) for kind in pending.actions]
            return [*per_card, SkipDecision()]
        if pending is not None:
            options: list[ProposedAction] = [
                DiscardCard(card=card) for card in pending.card_options
            ]
            return [*options, SkipDecision()]
        if state.phase == "action":
            plays = [PlayAction(card=card) for card in state.hand if card in ACTION_CARDS]
            return [EndPhase(), *plays]
        if state.phase == "buy":
            buys = [BuyCard(card=card) for card in state.supply] if state.buys > 0 else []
            return [EndPhase(), *buys]
        return []

    def apply_action(
        self, state: FakeState, action: ProposedAction, player_id: str
    ) -> ApplyResult:
        self.applied.append((player_id, action))
        if action.type in self._reject:
            return ApplyResult(ok=False, error=f"{action.type} refused")
        if isinstance(action, EndPhase):
            if state.phase == "action":
                state.phase = "buy"
            else:
                state.phase = "action"
                state.turn += 1
                state.active_player_id = self._next_player
        elif isinstance(action, PlayAction):
            state.hand.remove(action.card)
        elif isinstance(action, BuyCard):
            state.bought.append(action.card)
            state.buys -= 1
        elif isinstance(action, DiscardCard):
            state.discarded.append(action.card)
            state.pending_decision = None
        elif isinstance(action, SkipDecision):
            state.pending_decision = None
        return ApplyResult(ok=True)


class BatchEngine(FakeEngine):
    """Engine that resolves multi-card decisions in one submission."""

    def __init__(self, state: FakeState | None = None, **kwargs: Any) -> None:
        super().__init__(state, **kwargs)
        self.submitted: list[tuple[str, tuple[str, ...]]] = []
        self.simulated: list[str] = []

    def simulate_selection(self, state: FakeState, card: str) -> FakeState:
        self.simulated.append(card)
        pending = state.pending_decision
        assert pending is not None
        remaining = list(pending.card_options)
        remaining.remove(card)
        return replace(
            state, pending_decision=replace(pending, card_options=tuple(remaining))
        )

    def submit_selection(
        self, state: FakeState, cards: Sequence[str], player_id: str
    ) -> ApplyResult:
        self.submitted.append((player_id, tuple(cards)))
        state.discarded.extend(cards)
        state.pending_decision = None
        return ApplyResult(ok=True)


class MultiActionEngine(FakeEngine):
    """Engine that takes one action per revealed card in a single submission."""

    def __init__(self, state: FakeState | None = None, **kwargs: Any) -> None:
        super().__init__(state, **kwargs)
        self.submitted: list[tuple[str, dict[int, str], list[int]]] = []
        self.focused: list[int] = []

    def focus_card(self, state: FakeState, index: int) -> FakeState:
        self.focused.append(index)
        return replace(state, focus_index=index)

    def submit_card_actions(
        self,
        state: FakeState,
        card_actions: Mapping[int, str],
        card_order: Sequence[int],
        player_id: str,
    ) -> ApplyResult:
        self.submitted.append((player_id, dict(card_actions), list(card_order)))
        state.pending_decision = None
        return ApplyResult(ok=True)


@pytest.fixture
def fake_state() -> FakeState:
    return FakeState()


@pytest.fixture
def fake_engine(fake_state: FakeState) -> FakeEngine:
    return FakeEngine(fake_state)
