"""Load voter panels and consensus settings from YAML files."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import random
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator, ValidationError
import yaml

from .config import (
    ConsensusConfig,
    DataFormat,
    DEFAULT_MARGIN_DIVISOR,
    DEFAULT_MARGIN_FLOOR,
    DEFAULT_MAX_TURN_STEPS,
    DEFAULT_VOTER_TIMEOUT_MS,
)
from .errors import ConfigError
from .voters import assign_slots, build_voter_roster, VoterSlot

SCHEMA_VERSION = 1


class ConsensusSettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    voter_timeout_ms: int = Field(default=DEFAULT_VOTER_TIMEOUT_MS, gt=0)
    margin_floor: int = Field(default=DEFAULT_MARGIN_FLOOR, gt=0)
    margin_divisor: int = Field(default=DEFAULT_MARGIN_DIVISOR, gt=0)
    max_turn_steps: int = Field(default=DEFAULT_MAX_TURN_STEPS, gt=0)
    data_format: DataFormat = DataFormat.TOON
    skip_single_legal_action: bool = True


class VoterPanelModel(BaseModel):
    """Either an explicit ``slots`` list or ``enabled`` providers cycled to ``count``."""

    model_config = ConfigDict(extra="forbid")

    slots: list[str] | None = None
    enabled: list[str] = Field(default_factory=list)
    count: int = Field(default=8, gt=0)
    seed: int | None = None

    @model_validator(mode="after")
    def _check_source(self) -> VoterPanelModel:
        if self.slots is not None and not self.slots:
            raise ValueError("slots must not be empty when given")
        return self


class PanelFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = SCHEMA_VERSION
    consensus: ConsensusSettingsModel = Field(default_factory=ConsensusSettingsModel)
    voters: VoterPanelModel = Field(default_factory=VoterPanelModel)


@dataclass(frozen=True)
class PanelSettings:
    path: Path | None
    config: ConsensusConfig
    slots: tuple[VoterSlot, ...]

    @property
    def providers(self) -> list[str]:
        return [slot.provider for slot in self.slots]


def _format_validation_error(path: Path | None, exc: ValidationError) -> str:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part is not None)
        message = error.get("msg", "unknown error")
        if location:
            details.append(f"{location}: {message}")
        else:
            details.append(message)
    summary = "; ".join(details)
    source = f" ({path})" if path is not None else ""
    return f"invalid consensus settings{source}: {summary}"


def build_panel_settings(
    data: Mapping[str, Any],
    *,
    path: Path | None = None,
    rng: random.Random | None = None,
) -> PanelSettings:
    try:
        model = PanelFileModel.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(path, exc)) from exc

    settings = model.consensus
    config = ConsensusConfig(
        voter_timeout_ms=settings.voter_timeout_ms,
        margin_floor=settings.margin_floor,
        margin_divisor=settings.margin_divisor,
        max_turn_steps=settings.max_turn_steps,
        data_format=settings.data_format,
        skip_single_legal_action=settings.skip_single_legal_action,
    )

    panel = model.voters
    if panel.slots is not None:
        providers = list(panel.slots)
    else:
        if rng is None and panel.seed is not None:
            rng = random.Random(panel.seed)
        providers = build_voter_roster(panel.enabled, panel.count, rng=rng)

    return PanelSettings(
        path=path,
        config=config,
        slots=tuple(assign_slots(providers, config.data_format)),
    )


def load_panel_settings(path: str | Path, *, rng: random.Random | None = None) -> PanelSettings:
    """Read a YAML panel file."""

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read consensus settings: {path}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"YAML content is not a mapping: {path}")
    return build_panel_settings(data, path=path, rng=rng)


__all__ = [
    "ConsensusSettingsModel",
    "PanelFileModel",
    "PanelSettings",
    "SCHEMA_VERSION",
    "VoterPanelModel",
    "build_panel_settings",
    "load_panel_settings",
]
