from .actions import (
    action_signature as action_signature,
    describe_action as describe_action,
    is_action_legal as is_action_legal,
    parse_action as parse_action,
    ProposedAction as ProposedAction,
)
from .cancellation import CancelToken as CancelToken
from .config import (
    ConsensusConfig as ConsensusConfig,
    DataFormat as DataFormat,
    required_margin as required_margin,
)
from .engine import (
    BatchDecisionSupport as BatchDecisionSupport,
    MultiActionSupport as MultiActionSupport,
    PendingDecision as PendingDecision,
    RuleEngine as RuleEngine,
)
from .errors import (
    AllProposalsInvalidError as AllProposalsInvalidError,
    ConfigError as ConfigError,
    ConsensusError as ConsensusError,
    NoLegalActionsError as NoLegalActionsError,
    NoUsableProposalsError as NoUsableProposalsError,
    RoundAbortedError as RoundAbortedError,
    RoundFailedError as RoundFailedError,
)
from .loader import (
    load_panel_settings as load_panel_settings,
    PanelSettings as PanelSettings,
)
from .observability import (
    JsonlLogger as JsonlLogger,
    LoggingEventLogger as LoggingEventLogger,
    RecordingLogger as RecordingLogger,
)
from .rounds import RoundOptions as RoundOptions, run_round as run_round
from .selection import ConsensusOutcome as ConsensusOutcome
from .turns import (
    run_automated_turn as run_automated_turn,
    TurnDriver as TurnDriver,
    TurnReport as TurnReport,
    TurnStatus as TurnStatus,
)
from .voters import (
    assign_slots as assign_slots,
    build_voter_roster as build_voter_roster,
    DecisionContext as DecisionContext,
    Proposal as Proposal,
    VoterOutcome as VoterOutcome,
    VoterResult as VoterResult,
    VoterSlot as VoterSlot,
)

__version__ = "0.1.0"
