"""Vote grouping and early-consensus detection."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .actions import ActionSignature, ProposedAction, action_signature
from .voters import VoterResult


@dataclass(slots=True)
class VoteGroup:
    signature: ActionSignature
    action: ProposedAction
    voters: list[str] = field(default_factory=list)
    count: int = 0

    def add(self, voter_id: str) -> None:
        self.voters.append(voter_id)
        self.count += 1


def rank_vote_groups(groups: Iterable[VoteGroup]) -> list[VoteGroup]:
    """Order by count descending, then signature ascending."""

    return sorted(groups, key=lambda group: (-group.count, group.signature))


def leader_and_runner_up(groups: Iterable[VoteGroup]) -> tuple[VoteGroup | None, int]:
    ranked = rank_vote_groups(groups)
    if not ranked:
        return None, 0
    runner_up = ranked[1].count if len(ranked) > 1 else 0
    return ranked[0], runner_up


def find_early_consensus(groups: Iterable[VoteGroup], margin: int) -> VoteGroup | None:
    leader, runner_up = leader_and_runner_up(groups)
    if leader is None:
        return None
    if leader.count - runner_up >= margin:
        return leader
    return None


class VoteAggregator:
    """Running tally for one round.

    Callers must feed results from a single task at a time; ``record`` is
    the round's only writer.
    """

    def __init__(self, total_voters: int, margin: int) -> None:
        self.total_voters = total_voters
        self.margin = margin
        self._groups: dict[ActionSignature, VoteGroup] = {}
        self._settled: list[VoterResult] = []
        self._early: VoteGroup | None = None
        self._settled_at_termination: int | None = None

    @property
    def groups(self) -> dict[ActionSignature, VoteGroup]:
        return self._groups

    @property
    def settled(self) -> Sequence[VoterResult]:
        return tuple(self._settled)

    @property
    def early_consensus(self) -> VoteGroup | None:
        return self._early

    @property
    def terminated(self) -> bool:
        return self._early is not None

    @property
    def settled_at_termination(self) -> int | None:
        return self._settled_at_termination

    def record(self, result: VoterResult) -> VoteGroup | None:
        """Record ``result``; return the early winner the moment it is found."""

        self._settled.append(result)
        if self.terminated or not result.ok or result.action is None:
            return None
        signature = action_signature(result.action)
        group = self._groups.get(signature)
        if group is None:
            group = VoteGroup(signature=signature, action=result.action)
            self._groups[signature] = group
        group.add(result.voter_id)

        winner = find_early_consensus(self._groups.values(), self.margin)
        if winner is not None:
            self._early = winner
            self._settled_at_termination = len(self._settled)
        return winner

    def vote_total(self) -> int:
        return sum(group.count for group in self._groups.values())


__all__ = [
    "VoteAggregator",
    "VoteGroup",
    "find_early_consensus",
    "leader_and_runner_up",
    "rank_vote_groups",
]
