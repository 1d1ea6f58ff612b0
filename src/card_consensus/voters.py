"""Voter slots, the decision-call seam and per-voter results."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import logging
import random
from typing import Any, Protocol, TYPE_CHECKING

from .actions import ProposedAction
from .config import DataFormat

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .cancellation import CancelToken

LOGGER = logging.getLogger(__name__)

DEFAULT_VOTERS: tuple[str, ...] = (
    "cerebras-llama-3.3-70b",
    "groq-llama-3.3-70b",
    "groq-llama-4-scout",
    "gemini-2.5-flash-lite",
    "gpt-4o-mini",
    "cerebras-llama-3.3-70b",
    "groq-llama-3.3-70b",
    "gemini-2.5-flash-lite",
)


@dataclass(frozen=True, slots=True)
class VoterSlot:
    index: int
    provider: str
    format: str = DataFormat.TOON.value

    @property
    def voter_id(self) -> str:
        return f"{self.provider}#{self.index}"


def build_voter_roster(
    enabled: Sequence[str],
    count: int,
    *,
    rng: random.Random | None = None,
) -> list[str]:
    """Cycle ``enabled`` providers up to ``count`` entries, then shuffle them."""

    providers = [name for name in enabled if name]
    if not providers:
        LOGGER.warning("no voters enabled, falling back to %d default voters", len(DEFAULT_VOTERS))
        return list(DEFAULT_VOTERS)
    if count <= 0:
        raise ValueError("count must be a positive integer")
    roster = [providers[index % len(providers)] for index in range(count)]
    (rng or random.Random()).shuffle(roster)
    return roster


def assign_slots(
    providers: Sequence[str],
    data_format: DataFormat | str = DataFormat.TOON,
) -> list[VoterSlot]:
    """Turn an ordered provider list into slots; ``mixed`` alternates json/toon."""

    fmt = data_format if isinstance(data_format, DataFormat) else DataFormat(data_format)
    slots: list[VoterSlot] = []
    for index, provider in enumerate(providers):
        if fmt is DataFormat.MIXED:
            slot_format = DataFormat.JSON if index % 2 == 0 else DataFormat.TOON
        else:
            slot_format = fmt
        slots.append(VoterSlot(index=index, provider=provider, format=slot_format.value))
    return slots


@dataclass(frozen=True)
class DecisionContext:
    """Everything a voter needs to propose one atomic action."""

    state: Any
    legal_actions: Sequence[ProposedAction]
    player_id: str
    round_id: str
    prior_choice: Sequence[str] = ()
    format: str = DataFormat.TOON.value
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Proposal:
    action: ProposedAction | Mapping[str, Any]
    format: str = DataFormat.TOON.value


class DecisionInvoker(Protocol):
    """Opaque asynchronous decision call (prompting and transport live elsewhere)."""

    async def invoke(
        self, slot: VoterSlot, context: DecisionContext, cancel_token: CancelToken
    ) -> Proposal:  # pragma: no cover - protocol
        ...


class VoterOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ABORT = "abort"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class VoterResult:
    voter_id: str
    slot_index: int
    provider: str
    outcome: VoterOutcome
    elapsed_ms: int
    action: ProposedAction | None = None
    error: BaseException | None = None
    format: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is VoterOutcome.SUCCESS and self.action is not None


__all__ = [
    "DEFAULT_VOTERS",
    "DecisionContext",
    "DecisionInvoker",
    "Proposal",
    "VoterOutcome",
    "VoterResult",
    "VoterSlot",
    "assign_slots",
    "build_voter_roster",
]
