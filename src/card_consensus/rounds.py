"""One dispatch -> aggregate -> decide cycle."""
from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging
import time
from typing import Any
import uuid

from .actions import describe_action, is_action_legal, ProposedAction
from .aggregation import VoteAggregator
from .cancellation import CancelToken, EARLY_CONSENSUS
from .config import ConsensusConfig, required_margin
from .dispatch import VoterDispatcher
from .errors import NoLegalActionsError, RoundAbortedError, RoundFailedError
from .observability import (
    EARLY_WINNER_REJECTED,
    emit_event,
    EventLogger,
    ROUND_DECIDED,
    ROUND_FAILED,
    ROUND_START,
)
from .selection import ConsensusOutcome, select_winner
from .voters import DecisionContext, DecisionInvoker, VoterResult, VoterSlot

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundOptions:
    player_id: str
    config: ConsensusConfig = field(default_factory=ConsensusConfig)
    round_id: str | None = None
    prior_choice: Sequence[str] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class RoundState:
    """Mutable state owned by exactly one round."""

    round_id: str
    slots: Sequence[VoterSlot]
    aggregator: VoteAggregator
    token: CancelToken
    pending: set[int] = field(default_factory=set)
    started: float = field(default_factory=time.perf_counter)

    @classmethod
    def start(
        cls,
        round_id: str,
        slots: Sequence[VoterSlot],
        margin: int,
        token: CancelToken | None = None,
    ) -> RoundState:
        return cls(
            round_id=round_id,
            slots=tuple(slots),
            aggregator=VoteAggregator(len(slots), margin),
            token=token or CancelToken(),
            pending={slot.index for slot in slots},
        )

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def on_settled(self, result: VoterResult) -> None:
        self.pending.discard(result.slot_index)
        winner = self.aggregator.record(result)
        if winner is None:
            return
        if self.token.cancel(EARLY_CONSENSUS):
            LOGGER.info(
                "round %s: early consensus on %s with %d votes; aborting %d pending voters",
                self.round_id,
                describe_action(winner.action),
                winner.count,
                len(self.pending),
            )

    def considered_results(self) -> list[VoterResult]:
        settled = list(self.aggregator.settled)
        cutoff = self.aggregator.settled_at_termination
        if cutoff is None:
            return settled
        return settled[:cutoff]


def _ranked_breakdown(
    outcome: ConsensusOutcome,
    results: Sequence[VoterResult],
    legal_actions: Sequence[ProposedAction],
) -> list[dict[str, Any]]:
    rationales = {
        result.voter_id: result.action.rationale
        for result in results
        if result.ok and result.action is not None
    }
    return [
        {
            "action": describe_action(group.action),
            "signature": group.signature,
            "votes": group.count,
            "voters": list(group.voters),
            "valid": is_action_legal(group.action, legal_actions),
            "rationales": [
                {"voter": voter, "rationale": rationales.get(voter)} for voter in group.voters
            ],
        }
        for group in outcome.ranked_groups
    ]


async def run_round(
    slots: Sequence[VoterSlot],
    state: Any,
    legal_actions: Sequence[ProposedAction],
    options: RoundOptions,
    *,
    invoker: DecisionInvoker,
    event_logger: EventLogger | None = None,
    cancel_token: CancelToken | None = None,
) -> ConsensusOutcome:
    """Run one consensus round and return its outcome.

    Raises :class:`RoundFailedError` subclasses when no winner exists and
    :class:`RoundAbortedError` when ``cancel_token`` is triggered from the
    outside before the round decides.
    """

    if not slots:
        raise ValueError("run_round requires at least one voter slot")
    if not legal_actions:
        raise NoLegalActionsError()

    config = options.config
    margin = required_margin(len(slots), config)
    round_id = options.round_id or uuid.uuid4().hex[:12]
    round_state = RoundState.start(round_id, slots, margin, cancel_token)

    emit_event(
        event_logger,
        ROUND_START,
        {
            "round_id": round_id,
            "player_id": options.player_id,
            "providers": [slot.provider for slot in slots],
            "total_voters": len(slots),
            "margin": margin,
            "legal_actions": [describe_action(action) for action in legal_actions],
            "prior_choice": list(options.prior_choice),
        },
    )
    LOGGER.debug(
        "round %s: %d voters, margin %d, %d legal actions",
        round_id,
        len(slots),
        margin,
        len(legal_actions),
    )

    context = DecisionContext(
        state=state,
        legal_actions=tuple(legal_actions),
        player_id=options.player_id,
        round_id=round_id,
        prior_choice=tuple(options.prior_choice),
        metadata=dict(options.metadata),
    )
    dispatcher = VoterDispatcher(
        invoker, timeout_s=config.voter_timeout_s, event_logger=event_logger
    )
    await dispatcher.dispatch(slots, context, round_state.token, round_state.on_settled)

    aggregator = round_state.aggregator
    if round_state.cancelled and round_state.token.reason != EARLY_CONSENSUS:
        emit_event(
            event_logger,
            ROUND_FAILED,
            {"round_id": round_id, "reason": round_state.token.reason},
        )
        raise RoundAbortedError(f"round {round_id} aborted", reason=round_state.token.reason)

    considered = round_state.considered_results()
    outcomes = Counter(result.outcome.value for result in aggregator.settled)
    try:
        outcome = select_winner(
            aggregator.groups, considered, aggregator.early_consensus, legal_actions
        )
    except RoundFailedError as exc:
        emit_event(
            event_logger,
            ROUND_FAILED,
            {
                "round_id": round_id,
                "reason": str(exc),
                "error_type": type(exc).__name__,
                "failures": exc.failures,
                "outcomes": dict(outcomes),
            },
        )
        raise

    duration_ms = int((time.perf_counter() - round_state.started) * 1000)
    if outcome.early_winner_rejected and aggregator.early_consensus is not None:
        emit_event(
            event_logger,
            EARLY_WINNER_REJECTED,
            {
                "round_id": round_id,
                "rejected": describe_action(aggregator.early_consensus.action),
                "fallback": describe_action(outcome.winning_action),
            },
        )
    strength = 0.0
    if outcome.votes_considered:
        strength = outcome.winner_vote_count / outcome.votes_considered
    emit_event(
        event_logger,
        ROUND_DECIDED,
        {
            "round_id": round_id,
            "player_id": options.player_id,
            "winner": describe_action(outcome.winning_action),
            "winner_signature": outcome.winning_signature,
            "votes": outcome.winner_vote_count,
            "votes_considered": outcome.votes_considered,
            "percentage": f"{strength * 100:.1f}%",
            "early_consensus": outcome.early_consensus_applied,
            "early_winner_rejected": outcome.early_winner_rejected,
            "margin": margin,
            "total_voters": len(slots),
            "outcomes": dict(outcomes),
            "ranked": _ranked_breakdown(outcome, aggregator.settled, legal_actions),
            "duration_ms": duration_ms,
        },
    )
    LOGGER.info(
        "round %s: %s (%d/%d votes%s, %dms)",
        round_id,
        describe_action(outcome.winning_action),
        outcome.winner_vote_count,
        outcome.votes_considered,
        ", early" if outcome.early_consensus_applied else "",
        duration_ms,
    )
    return outcome


__all__ = ["RoundOptions", "RoundState", "run_round"]
