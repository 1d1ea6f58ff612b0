"""Winner selection over a finished round."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging

from .actions import ActionSignature, ProposedAction, describe_action, is_action_legal
from .aggregation import rank_vote_groups, VoteGroup
from .errors import AllProposalsInvalidError, NoUsableProposalsError
from .voters import VoterResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsensusOutcome:
    winning_action: ProposedAction
    winner_vote_count: int
    votes_considered: int
    early_consensus_applied: bool
    ranked_groups: tuple[VoteGroup, ...]
    winner: VoteGroup
    early_winner_rejected: bool = False

    @property
    def winning_signature(self) -> ActionSignature:
        return self.winner.signature


def _failure_summaries(results: Sequence[VoterResult]) -> list[dict[str, str]]:
    return [
        {
            "voter": result.voter_id,
            "outcome": result.outcome.value,
            "summary": f"{type(result.error).__name__}: {result.error}"
            if result.error is not None
            else "no action",
        }
        for result in results
        if not result.ok
    ]


def select_winner(
    groups: Mapping[ActionSignature, VoteGroup],
    results: Sequence[VoterResult],
    early_consensus: VoteGroup | None,
    legal_actions: Sequence[ProposedAction],
) -> ConsensusOutcome:
    """Pick the winning group.

    ``results`` are the voters that settled before the round terminated.
    Raises :class:`NoUsableProposalsError` when nobody proposed anything and
    :class:`AllProposalsInvalidError` when nothing proposed is legal.
    """

    if not groups:
        LOGGER.error("all %d voters failed to produce an action", len(results))
        raise NoUsableProposalsError(failures=_failure_summaries(results))

    ranked = rank_vote_groups(groups.values())
    valid_ranked = [group for group in ranked if is_action_legal(group.action, legal_actions)]

    early_rejected = False
    chosen: VoteGroup | None = None
    if early_consensus is not None:
        if is_action_legal(early_consensus.action, legal_actions):
            chosen = early_consensus
        else:
            early_rejected = True
            LOGGER.warning(
                "early consensus winner %s (%d votes) is not legal; voters may be out of sync",
                describe_action(early_consensus.action),
                early_consensus.count,
            )

    if chosen is None:
        if not valid_ranked:
            LOGGER.error(
                "all %d proposed actions were invalid: %s",
                len(ranked),
                ", ".join(describe_action(group.action) for group in ranked),
            )
            raise AllProposalsInvalidError(
                failures=[
                    {"action": describe_action(group.action), "votes": str(group.count)}
                    for group in ranked
                ]
            )
        chosen = valid_ranked[0]

    if early_consensus is not None:
        votes_considered = len(results)
    else:
        votes_considered = sum(1 for result in results if result.ok)

    return ConsensusOutcome(
        winning_action=chosen.action,
        winner_vote_count=chosen.count,
        votes_considered=votes_considered,
        early_consensus_applied=chosen is early_consensus,
        ranked_groups=tuple(ranked),
        winner=chosen,
        early_winner_rejected=early_rejected,
    )


__all__ = ["ConsensusOutcome", "select_winner"]
