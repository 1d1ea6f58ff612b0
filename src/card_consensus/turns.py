"""Drive an automated player through a turn, one consensus round per decision."""
from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import logging
import time
from typing import Any, cast
import uuid

from .actions import action_card, describe_action, ProposedAction
from .cancellation import CancelToken, INTERRUPTED
from .config import ConsensusConfig
from .engine import (
    ApplyResult,
    BatchDecisionSupport,
    MultiActionSupport,
    PendingDecision,
    RuleEngine,
)
from .errors import (
    ActionRejectedError,
    NoLegalActionsError,
    RoundAbortedError,
    RoundFailedError,
)
from .observability import (
    CONSENSUS_SKIPPED,
    emit_event,
    EventLogger,
    TURN_COMPLETE,
    TURN_STALLED,
    TURN_START,
)
from .rounds import RoundOptions, run_round
from .selection import ConsensusOutcome
from .voters import DecisionInvoker, VoterSlot

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[Any], None]


class TurnStatus(str, Enum):
    AWAITING_DECISION = "awaiting_decision"
    ACTION_APPLIED = "action_applied"
    PHASE_ADVANCE = "phase_advance"
    TURN_COMPLETE = "turn_complete"
    STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"
    ROUND_FAILED = "round_failed"
    INTERRUPTED = "interrupted"


TERMINAL_STATUSES = frozenset(
    {
        TurnStatus.TURN_COMPLETE,
        TurnStatus.STEP_BUDGET_EXHAUSTED,
        TurnStatus.ROUND_FAILED,
        TurnStatus.INTERRUPTED,
    }
)


@dataclass
class DecisionResult:
    """What one call to :meth:`TurnDriver.advance` applied."""

    actions: list[ProposedAction]
    outcomes: list[ConsensusOutcome] = field(default_factory=list)

    @property
    def rounds(self) -> int:
        return len(self.outcomes)


@dataclass
class TurnReport:
    player_id: str
    status: TurnStatus = TurnStatus.AWAITING_DECISION
    steps: int = 0
    transitions: list[TurnStatus] = field(
        default_factory=lambda: [TurnStatus.AWAITING_DECISION]
    )
    applied: list[ProposedAction] = field(default_factory=list)
    outcomes: list[ConsensusOutcome] = field(default_factory=list)
    error: BaseException | None = None

    def transition(self, status: TurnStatus) -> None:
        self.status = status
        self.transitions.append(status)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def stalled(self) -> bool:
        return self.status in TERMINAL_STATUSES and self.status is not TurnStatus.TURN_COMPLETE


def holds_control(state: Any, player_id: str) -> bool:
    """True while ``player_id`` owes the engine a decision."""

    if state.game_over:
        return False
    pending: PendingDecision | None = state.pending_decision
    if pending is not None:
        return pending.player_id == player_id
    return state.active_player_id == player_id


class TurnDriver:
    """Runs consensus rounds for one automated seat.

    Each driver owns its cancellation; :meth:`abort` never affects other
    drivers or sessions.
    """

    def __init__(
        self,
        engine: RuleEngine,
        slots: Sequence[VoterSlot],
        invoker: DecisionInvoker,
        *,
        config: ConsensusConfig | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        if not slots:
            raise ValueError("TurnDriver requires at least one voter slot")
        self._engine = engine
        self._slots = tuple(slots)
        self._invoker = invoker
        self._config = config or ConsensusConfig()
        self._event_logger = event_logger
        self._active_token: CancelToken | None = None
        self._abort_requested = False
        self._active = 0

    @property
    def slots(self) -> tuple[VoterSlot, ...]:
        return self._slots

    def abort(self) -> bool:
        """Interrupt the in-flight decision; its outcome is never applied.

        Returns False when the driver is idle. An abort only ever affects the
        call that is running when it arrives.
        """

        if self._active == 0:
            return False
        self._abort_requested = True
        token = self._active_token
        if token is None:
            return True
        LOGGER.info("aborting in-flight consensus round")
        return token.cancel(INTERRUPTED)

    def _enter(self) -> None:
        if self._active == 0:
            self._abort_requested = False
        self._active += 1

    def _leave(self) -> None:
        self._active -= 1
        if self._active == 0:
            self._abort_requested = False

    async def _run_round(
        self,
        state: Any,
        legal_actions: Sequence[ProposedAction],
        player_id: str,
        *,
        round_id: str,
        prior_choice: Sequence[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> ConsensusOutcome:
        token = CancelToken()
        self._active_token = token
        if self._abort_requested:
            token.cancel(INTERRUPTED)
        try:
            outcome = await run_round(
                self._slots,
                state,
                legal_actions,
                RoundOptions(
                    player_id=player_id,
                    config=self._config,
                    round_id=round_id,
                    prior_choice=tuple(prior_choice),
                    metadata=dict(metadata or {}),
                ),
                invoker=self._invoker,
                event_logger=self._event_logger,
                cancel_token=token,
            )
        finally:
            self._active_token = None
        if self._abort_requested:
            raise RoundAbortedError(f"round {round_id} interrupted", reason=INTERRUPTED)
        return outcome

    def _apply(self, state: Any, action: ProposedAction, player_id: str) -> None:
        description = describe_action(action)
        try:
            result = self._engine.apply_action(state, action, player_id)
        except Exception as exc:  # noqa: BLE001
            raise ActionRejectedError(f"applying {description} failed: {exc}") from exc
        _ensure_applied(result, description)

    def _round_id(self, state: Any) -> str:
        return f"t{state.turn}-{state.phase}-{uuid.uuid4().hex[:6]}"

    def _legal_actions(self, state: Any) -> list[ProposedAction]:
        return list(self._engine.legal_actions(state))

    async def advance(
        self, player_id: str, *, max_rounds: int | None = None
    ) -> DecisionResult:
        """Resolve the current decision point for ``player_id``.

        ``max_rounds`` caps the voted rounds a batch or per-card decision may
        spend; whatever was chosen by then is submitted. A plain decision
        always gets its one round.
        """

        if max_rounds is not None and max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self._enter()
        try:
            return await self._advance(player_id, max_rounds)
        finally:
            self._leave()

    async def _advance(self, player_id: str, max_rounds: int | None) -> DecisionResult:
        state = self._engine.state
        pending: PendingDecision | None = state.pending_decision
        if pending is not None and pending.player_id == player_id:
            if pending.is_multi_action and isinstance(self._engine, MultiActionSupport):
                return await self._resolve_multi_action(player_id, state, pending, max_rounds)
            if pending.is_batch and isinstance(self._engine, BatchDecisionSupport):
                return await self._resolve_batch(player_id, state, pending, max_rounds)

        legal_actions = self._legal_actions(state)
        if not legal_actions:
            raise NoLegalActionsError()

        if len(legal_actions) == 1 and self._config.skip_single_legal_action:
            action = legal_actions[0]
            LOGGER.info("only one legal action: %s (skipping consensus)", describe_action(action))
            emit_event(
                self._event_logger,
                CONSENSUS_SKIPPED,
                {
                    "player_id": player_id,
                    "action": describe_action(action),
                    "turn": state.turn,
                },
            )
            self._apply(state, action, player_id)
            return DecisionResult(actions=[action])

        outcome = await self._run_round(
            state, legal_actions, player_id, round_id=self._round_id(state)
        )
        self._apply(state, outcome.winning_action, player_id)
        return DecisionResult(actions=[outcome.winning_action], outcomes=[outcome])

    async def _resolve_batch(
        self,
        player_id: str,
        state: Any,
        pending: PendingDecision,
        max_rounds: int | None = None,
    ) -> DecisionResult:
        engine = cast(BatchDecisionSupport, self._engine)
        base_round_id = self._round_id(state)
        LOGGER.info("batch decision: up to %d selections", pending.max)

        selected: list[str] = []
        chosen: list[ProposedAction] = []
        outcomes: list[ConsensusOutcome] = []
        simulated = state
        for index in range(pending.max):
            legal_actions = self._legal_actions(simulated)
            if not legal_actions:
                break
            if len(legal_actions) == 1 and self._config.skip_single_legal_action:
                action = legal_actions[0]
            else:
                if _budget_spent(outcomes, max_rounds):
                    LOGGER.warning(
                        "round budget of %s spent, submitting %d selections",
                        max_rounds,
                        len(selected),
                    )
                    break
                outcome = await self._run_round(
                    simulated,
                    legal_actions,
                    player_id,
                    round_id=f"{base_round_id}-r{index}",
                    prior_choice=selected,
                )
                outcomes.append(outcome)
                action = outcome.winning_action
            if action.type == "skip_decision":
                LOGGER.info("voted to skip after %d selections", len(selected))
                break
            card = action_card(action)
            if card is None:
                LOGGER.warning("%s carries no card, stopping batch", describe_action(action))
                break
            selected.append(card)
            chosen.append(action)
            simulated = engine.simulate_selection(simulated, card)

        try:
            result = engine.submit_selection(state, tuple(selected), player_id)
        except Exception as exc:  # noqa: BLE001
            raise ActionRejectedError(f"submitting {selected} failed: {exc}") from exc
        _ensure_applied(result, f"selection {selected}")
        LOGGER.info("batch decision complete: %d cards", len(selected))
        return DecisionResult(actions=chosen, outcomes=outcomes)

    async def _resolve_multi_action(
        self,
        player_id: str,
        state: Any,
        pending: PendingDecision,
        max_rounds: int | None = None,
    ) -> DecisionResult:
        """Vote one action per revealed card, then submit them together.

        Cards left undecided by a skip vote or the round budget take
        ``pending.default_action``. Topdecked cards go back in reveal order.
        """

        engine = cast(MultiActionSupport, self._engine)
        default = pending.default_action
        if default is None:
            raise ActionRejectedError("per-card decision has no default action")
        base_round_id = self._round_id(state)
        LOGGER.info(
            "per-card decision over %d cards (%s)",
            len(pending.card_options),
            ", ".join(pending.actions),
        )

        card_actions: dict[int, str] = {}
        chosen: list[ProposedAction] = []
        outcomes: list[ConsensusOutcome] = []
        for index, card in enumerate(pending.card_options):
            focused = engine.focus_card(state, index)
            legal_actions = self._legal_actions(focused)
            if not legal_actions:
                continue
            if len(legal_actions) == 1 and self._config.skip_single_legal_action:
                action = legal_actions[0]
            else:
                if _budget_spent(outcomes, max_rounds):
                    LOGGER.warning(
                        "round budget of %s spent at card %d, rest take %s",
                        max_rounds,
                        index,
                        default,
                    )
                    break
                outcome = await self._run_round(
                    focused,
                    legal_actions,
                    player_id,
                    round_id=f"{base_round_id}-r{index}",
                    prior_choice=[describe_action(action) for action in chosen],
                    metadata={"card_index": index, "card": card},
                )
                outcomes.append(outcome)
                action = outcome.winning_action
            if action.type == "skip_decision":
                LOGGER.info("voted to skip at card %d, rest take %s", index, default)
                break
            card_actions[index] = action.type
            chosen.append(action)

        for index in range(len(pending.card_options)):
            card_actions.setdefault(index, default)
        card_order = [
            index for index in sorted(card_actions) if card_actions[index] == "topdeck_card"
        ]
        try:
            result = engine.submit_card_actions(state, card_actions, card_order, player_id)
        except Exception as exc:  # noqa: BLE001
            raise ActionRejectedError(f"submitting card actions failed: {exc}") from exc
        _ensure_applied(result, f"card actions {card_actions}")
        LOGGER.info("per-card decision complete: %d voted", len(chosen))
        return DecisionResult(actions=chosen, outcomes=outcomes)

    async def run_automated_turn(
        self,
        player_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> TurnReport:
        """Keep deciding for ``player_id`` until control passes or progress stalls."""

        self._enter()
        try:
            return await self._run_turn(player_id, on_progress)
        finally:
            self._leave()

    async def _run_turn(
        self, player_id: str, on_progress: ProgressCallback | None
    ) -> TurnReport:
        report = TurnReport(player_id=player_id)
        started = time.perf_counter()
        state = self._engine.state
        LOGGER.info("automated turn start: %s (%s phase)", player_id, state.phase)
        emit_event(
            self._event_logger,
            TURN_START,
            {
                "player_id": player_id,
                "phase": state.phase,
                "turn": state.turn,
                "providers": [slot.provider for slot in self._slots],
            },
        )

        while True:
            state = self._engine.state
            if self._abort_requested:
                report.transition(TurnStatus.INTERRUPTED)
                break
            if not holds_control(state, player_id):
                report.transition(TurnStatus.TURN_COMPLETE)
                break
            if report.steps >= self._config.max_turn_steps:
                LOGGER.warning(
                    "step budget of %d exhausted for %s", self._config.max_turn_steps, player_id
                )
                report.transition(TurnStatus.STEP_BUDGET_EXHAUSTED)
                break
            try:
                decision = await self.advance(
                    player_id, max_rounds=self._config.max_turn_steps - report.steps
                )
            except RoundAbortedError as exc:
                LOGGER.info("automated turn interrupted: %s", exc)
                report.error = exc
                report.transition(TurnStatus.INTERRUPTED)
                break
            except RoundFailedError as exc:
                LOGGER.error("consensus step failed: %s", exc)
                report.error = exc
                report.transition(TurnStatus.ROUND_FAILED)
                break
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("consensus step crashed")
                report.error = exc
                report.transition(TurnStatus.ROUND_FAILED)
                break

            report.steps += max(1, decision.rounds)
            report.applied.extend(decision.actions)
            report.outcomes.extend(decision.outcomes)
            report.transition(TurnStatus.ACTION_APPLIED)

            state = self._engine.state
            if holds_control(state, player_id):
                pending = state.pending_decision
                if pending is not None:
                    report.transition(TurnStatus.AWAITING_DECISION)
                else:
                    report.transition(TurnStatus.PHASE_ADVANCE)
            if on_progress is not None:
                on_progress(state)

        duration_ms = int((time.perf_counter() - started) * 1000)
        if report.stalled:
            emit_event(
                self._event_logger,
                TURN_STALLED,
                {
                    "player_id": player_id,
                    "status": report.status.value,
                    "steps": report.steps,
                    "error": None if report.error is None else str(report.error),
                },
            )
        emit_event(
            self._event_logger,
            TURN_COMPLETE,
            {
                "player_id": player_id,
                "status": report.status.value,
                "steps": report.steps,
                "applied": [describe_action(action) for action in report.applied],
                "duration_ms": duration_ms,
            },
        )
        LOGGER.info(
            "automated turn complete: %s after %d steps (%s)",
            player_id,
            report.steps,
            report.status.value,
        )
        return report


async def run_automated_turn(
    engine: RuleEngine,
    player_id: str,
    slots: Sequence[VoterSlot],
    invoker: DecisionInvoker,
    *,
    config: ConsensusConfig | None = None,
    event_logger: EventLogger | None = None,
    on_progress: ProgressCallback | None = None,
) -> TurnReport:
    driver = TurnDriver(engine, slots, invoker, config=config, event_logger=event_logger)
    return await driver.run_automated_turn(player_id, on_progress)


def _budget_spent(outcomes: Sequence[ConsensusOutcome], max_rounds: int | None) -> bool:
    return max_rounds is not None and len(outcomes) >= max_rounds


def _ensure_applied(result: ApplyResult | bool, description: str) -> None:
    ok = result if isinstance(result, bool) else bool(getattr(result, "ok", False))
    if ok:
        return
    detail = getattr(result, "error", None)
    message = f"rule engine rejected {description}"
    if detail:
        message = f"{message}: {detail}"
    raise ActionRejectedError(message)


__all__ = [
    "DecisionResult",
    "ProgressCallback",
    "TERMINAL_STATUSES",
    "TurnDriver",
    "TurnReport",
    "TurnStatus",
    "holds_control",
    "run_automated_turn",
]
