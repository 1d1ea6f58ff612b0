from card_consensus.actions import BuyCard, EndPhase, ProposedAction
from card_consensus.aggregation import (
    find_early_consensus,
    rank_vote_groups,
    VoteAggregator,
)
from card_consensus.config import required_margin
from card_consensus.errors import VoterTimeoutError
from card_consensus.voters import VoterOutcome, VoterResult


def _ok(voter: str, action: ProposedAction) -> VoterResult:
    return VoterResult(
        voter_id=voter,
        slot_index=0,
        provider=voter,
        outcome=VoterOutcome.SUCCESS,
        elapsed_ms=1,
        action=action,
    )


def _timeout(voter: str) -> VoterResult:
    return VoterResult(
        voter_id=voter,
        slot_index=0,
        provider=voter,
        outcome=VoterOutcome.TIMEOUT,
        elapsed_ms=5000,
        error=VoterTimeoutError("slow"),
    )


def test_lead_of_two_over_one_triggers_for_six_voters() -> None:
    aggregator = VoteAggregator(6, required_margin(6))
    silver = BuyCard(card="Silver")

    assert aggregator.record(_ok("a", silver)) is None
    assert aggregator.record(_ok("b", BuyCard(card="Gold"))) is None
    assert aggregator.record(_ok("c", silver)) is None
    winner = aggregator.record(_ok("d", silver))

    assert winner is not None
    assert winner.count == 3
    assert aggregator.terminated
    assert aggregator.settled_at_termination == 4


def test_lead_of_one_does_not_trigger() -> None:
    aggregator = VoteAggregator(6, required_margin(6))

    aggregator.record(_ok("a", BuyCard(card="Silver")))
    aggregator.record(_ok("b", BuyCard(card="Gold")))
    aggregator.record(_ok("c", BuyCard(card="Silver")))

    assert aggregator.early_consensus is None
    assert aggregator.settled_at_termination is None


def test_rationale_variants_merge_into_one_group() -> None:
    aggregator = VoteAggregator(6, required_margin(6))

    aggregator.record(_ok("a", BuyCard(card="Silver", rationale="cheap")))
    aggregator.record(_ok("b", BuyCard(card="Silver", rationale="economy")))

    assert len(aggregator.groups) == 1
    (group,) = aggregator.groups.values()
    assert group.voters == ["a", "b"]


def test_failures_and_late_results_never_vote() -> None:
    aggregator = VoteAggregator(4, 2)
    end = EndPhase()

    aggregator.record(_timeout("a"))
    aggregator.record(_ok("b", end))
    winner = aggregator.record(_ok("c", end))
    late = aggregator.record(_ok("d", BuyCard(card="Gold")))

    assert winner is not None
    assert late is None
    assert aggregator.vote_total() == 2
    assert len(aggregator.settled) == 4
    assert aggregator.settled_at_termination == 3
    assert aggregator.vote_total() <= len(aggregator.settled)


def test_early_winner_is_reported_once() -> None:
    aggregator = VoteAggregator(6, 2)
    end = EndPhase()

    aggregator.record(_ok("a", end))
    assert aggregator.record(_ok("b", end)) is not None
    assert aggregator.record(_ok("c", end)) is None


def test_ranking_breaks_ties_by_signature() -> None:
    aggregator = VoteAggregator(6, 6)
    aggregator.record(_ok("a", BuyCard(card="Silver")))
    aggregator.record(_ok("b", BuyCard(card="Gold")))

    ranked = rank_vote_groups(aggregator.groups.values())

    assert [group.action for group in ranked] == [BuyCard(card="Gold"), BuyCard(card="Silver")]
    assert find_early_consensus(aggregator.groups.values(), 1) is None


def test_single_group_measures_against_zero() -> None:
    aggregator = VoteAggregator(3, 6)
    aggregator.record(_ok("a", EndPhase()))
    aggregator.record(_ok("b", EndPhase()))

    assert find_early_consensus(aggregator.groups.values(), 2) is not None
