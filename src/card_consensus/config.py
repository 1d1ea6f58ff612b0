"""Configuration objects for consensus rounds and automated turns."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math

DEFAULT_VOTER_TIMEOUT_MS = 5000
DEFAULT_MARGIN_FLOOR = 2
DEFAULT_MARGIN_DIVISOR = 3
DEFAULT_MAX_TURN_STEPS = 20


class DataFormat(str, Enum):
    """Serialization hint forwarded to each voter."""

    JSON = "json"
    TOON = "toon"
    MIXED = "mixed"


def _require_positive_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int")
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer")


@dataclass(frozen=True)
class ConsensusConfig:
    voter_timeout_ms: int = DEFAULT_VOTER_TIMEOUT_MS
    margin_floor: int = DEFAULT_MARGIN_FLOOR
    margin_divisor: int = DEFAULT_MARGIN_DIVISOR
    max_turn_steps: int = DEFAULT_MAX_TURN_STEPS
    data_format: DataFormat | str = DataFormat.TOON
    skip_single_legal_action: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.data_format, DataFormat):
            normalized = self.data_format
        else:
            normalized = DataFormat(str(self.data_format).strip().lower())
        object.__setattr__(self, "data_format", normalized)

        _require_positive_int("voter_timeout_ms", self.voter_timeout_ms)
        _require_positive_int("margin_floor", self.margin_floor)
        _require_positive_int("margin_divisor", self.margin_divisor)
        _require_positive_int("max_turn_steps", self.max_turn_steps)
        if not isinstance(self.skip_single_legal_action, bool):
            raise TypeError("skip_single_legal_action must be a bool")

    @property
    def voter_timeout_s(self) -> float:
        return self.voter_timeout_ms / 1000.0


def required_margin(total_voters: int, config: ConsensusConfig | None = None) -> int:
    """Lead over the runner-up needed to stop a round early: ``max(floor, ceil(N / divisor))``."""

    if total_voters < 0:
        raise ValueError("total_voters must not be negative")
    config = config or ConsensusConfig()
    return max(config.margin_floor, math.ceil(total_voters / config.margin_divisor))


__all__ = [
    "ConsensusConfig",
    "DataFormat",
    "DEFAULT_MARGIN_DIVISOR",
    "DEFAULT_MARGIN_FLOOR",
    "DEFAULT_MAX_TURN_STEPS",
    "DEFAULT_VOTER_TIMEOUT_MS",
    "required_margin",
]
