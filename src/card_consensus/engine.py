"""Interfaces consumed from the card-game rule engine.

The consensus engine never interprets rules: legality comes from
``legal_actions`` and every state change goes through ``apply_action``.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .actions import ProposedAction

SELECTION_ACTIONS = frozenset({"select", "skip"})


@dataclass(frozen=True)
class PendingDecision:
    player_id: str
    card_options: tuple[str, ...] = ()
    min: int = 0
    max: int = 1
    stage: str | None = None
    actions: tuple[str, ...] = ()
    default_action: str | None = None

    @property
    def is_batch(self) -> bool:
        return self.max > 1

    @property
    def is_multi_action(self) -> bool:
        """Each card option gets its own action (trash / discard / topdeck ...)."""

        return bool(self.actions) and not all(
            kind in SELECTION_ACTIONS for kind in self.actions
        )


class GameView(Protocol):
    """Read-only accessors the turn driver needs."""

    @property
    def active_player_id(self) -> str: ...

    @property
    def phase(self) -> str: ...

    @property
    def turn(self) -> int: ...

    @property
    def game_over(self) -> bool: ...

    @property
    def pending_decision(self) -> PendingDecision | None: ...


@dataclass(frozen=True)
class ApplyResult:
    ok: bool
    error: str | None = None


class RuleEngine(Protocol):
    @property
    def state(self) -> Any: ...

    def legal_actions(self, state: Any) -> Sequence[ProposedAction]: ...

    def apply_action(self, state: Any, action: ProposedAction, player_id: str) -> ApplyResult: ...


@runtime_checkable
class BatchDecisionSupport(Protocol):
    """Optional engine extension for decisions selecting several cards at once."""

    def simulate_selection(self, state: Any, card: str) -> Any: ...

    def submit_selection(
        self, state: Any, cards: Sequence[str], player_id: str
    ) -> ApplyResult: ...


@runtime_checkable
class MultiActionSupport(Protocol):
    """Optional engine extension for decisions that act on each revealed card."""

    def focus_card(self, state: Any, index: int) -> Any:
        """Return a view of ``state`` whose legal actions concern card ``index`` only."""

    def submit_card_actions(
        self,
        state: Any,
        card_actions: Mapping[int, str],
        card_order: Sequence[int],
        player_id: str,
    ) -> ApplyResult: ...


__all__ = [
    "ApplyResult",
    "BatchDecisionSupport",
    "GameView",
    "MultiActionSupport",
    "PendingDecision",
    "RuleEngine",
    "SELECTION_ACTIONS",
]
