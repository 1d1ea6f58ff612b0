"""Normalized exception hierarchy for the consensus engine."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class ConsensusError(Exception):
    """Base class for engine-originated errors."""


class VoterError(ConsensusError):
    """Base class for per-voter failures; absorbed into a voter result."""


class VoterTimeoutError(VoterError):
    """Raised when a voter exceeds its per-voter deadline."""


class VoterAbortedError(VoterError):
    """Raised when a voter is abandoned after the round was cancelled."""


class InvalidProposalError(VoterError):
    """Raised when a voter returns something that is not a well-formed action."""


class RoundFailedError(ConsensusError):
    """Base class for errors that end a round without a winner."""

    def __init__(
        self,
        message: str,
        *,
        failures: Iterable[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.failures = list(failures) if failures is not None else []


class NoUsableProposalsError(RoundFailedError):
    """Raised when every voter failed to produce an action."""

    def __init__(self, message: str = "no usable proposals", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AllProposalsInvalidError(RoundFailedError):
    """Raised when no proposed action passes the legal-action filter."""

    def __init__(self, message: str = "all proposals invalid", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NoLegalActionsError(RoundFailedError):
    """Raised when the rule engine offers nothing to vote on."""

    def __init__(self, message: str = "no legal actions available", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ActionRejectedError(RoundFailedError):
    """Raised when the rule engine refuses or fails to apply a winning action."""


class RoundAbortedError(ConsensusError):
    """Raised when a round is interrupted from outside; its outcome is discarded."""

    def __init__(self, message: str = "round aborted", *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class ConfigError(ConsensusError):
    """Raised when engine configuration is invalid."""


__all__ = [
    "ConsensusError",
    "VoterError",
    "VoterTimeoutError",
    "VoterAbortedError",
    "InvalidProposalError",
    "RoundFailedError",
    "NoUsableProposalsError",
    "AllProposalsInvalidError",
    "NoLegalActionsError",
    "ActionRejectedError",
    "RoundAbortedError",
    "ConfigError",
]
