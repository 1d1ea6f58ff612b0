"""Typed action proposals and their canonical signatures."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
import json
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import InvalidProposalError

ActionSignature = str


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    rationale: str | None = Field(
        default=None,
        validation_alias=AliasChoices("rationale", "reasoning"),
    )

    # identity is the signature; rationale never splits or merges actions
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _ActionBase):
            return NotImplemented
        return action_signature(self) == action_signature(other)  # type: ignore[arg-type]

    def __hash__(self) -> int:
        return hash(action_signature(self))  # type: ignore[arg-type]


class _CardAction(_ActionBase):
    card: str = Field(min_length=1)


class PlayAction(_CardAction):
    type: Literal["play_action"] = "play_action"


class PlayTreasure(_CardAction):
    type: Literal["play_treasure"] = "play_treasure"


class BuyCard(_CardAction):
    type: Literal["buy_card"] = "buy_card"


class GainCard(_CardAction):
    type: Literal["gain_card"] = "gain_card"


class DiscardCard(_CardAction):
    type: Literal["discard_card"] = "discard_card"


class TrashCard(_CardAction):
    type: Literal["trash_card"] = "trash_card"


class TopdeckCard(_CardAction):
    type: Literal["topdeck_card"] = "topdeck_card"


class EndPhase(_ActionBase):
    type: Literal["end_phase"] = "end_phase"


class SkipDecision(_ActionBase):
    type: Literal["skip_decision"] = "skip_decision"


class ChooseOption(_ActionBase):
    type: Literal["choose_from_options"] = "choose_from_options"
    option_index: int = Field(ge=0, validation_alias=AliasChoices("option_index", "optionIndex"))


ProposedAction = Annotated[
    Union[
        PlayAction,
        PlayTreasure,
        BuyCard,
        GainCard,
        DiscardCard,
        TrashCard,
        TopdeckCard,
        EndPhase,
        SkipDecision,
        ChooseOption,
    ],
    Field(discriminator="type"),
]

CARD_ACTION_TYPES = frozenset(
    {
        "play_action",
        "play_treasure",
        "buy_card",
        "gain_card",
        "discard_card",
        "trash_card",
        "topdeck_card",
    }
)

_ACTION_ADAPTER: TypeAdapter[ProposedAction] = TypeAdapter(ProposedAction)


def parse_action(value: Any) -> ProposedAction:
    """Return a typed action for ``value`` or raise :class:`InvalidProposalError`."""

    if isinstance(value, _ActionBase):
        return value  # type: ignore[return-value]
    if not isinstance(value, Mapping):
        raise InvalidProposalError(f"action must be a mapping, got {type(value).__name__}")
    try:
        return _ACTION_ADAPTER.validate_python(dict(value))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        raise InvalidProposalError(f"malformed action: {details}") from exc


def action_signature(action: ProposedAction) -> ActionSignature:
    """Canonical serialization used to group identical proposals."""

    payload = action.model_dump(mode="json", exclude={"rationale"})
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_action_legal(action: ProposedAction, legal_actions: Iterable[ProposedAction]) -> bool:
    for legal in legal_actions:
        if legal.type != action.type:
            continue
        if isinstance(action, _CardAction):
            if isinstance(legal, _CardAction) and legal.card == action.card:
                return True
            continue
        if isinstance(action, ChooseOption):
            if isinstance(legal, ChooseOption) and legal.option_index == action.option_index:
                return True
            continue
        return True
    return False


def describe_action(action: ProposedAction) -> str:
    if isinstance(action, _CardAction):
        return f"{action.type}({action.card})"
    if isinstance(action, ChooseOption):
        return f"choose[{action.option_index}]"
    return action.type


def action_card(action: ProposedAction) -> str | None:
    if isinstance(action, _CardAction):
        return action.card
    return None


__all__ = [
    "ActionSignature",
    "BuyCard",
    "CARD_ACTION_TYPES",
    "ChooseOption",
    "DiscardCard",
    "EndPhase",
    "GainCard",
    "PlayAction",
    "PlayTreasure",
    "ProposedAction",
    "SkipDecision",
    "TopdeckCard",
    "TrashCard",
    "action_card",
    "action_signature",
    "describe_action",
    "is_action_legal",
    "parse_action",
]
