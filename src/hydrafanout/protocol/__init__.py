"""
hydrafanout/protocol/

Distribution protocol: share allocation, batch planning, submission with
retry, and the distribution ledger.
"""

from .shares import (
    MemberBalance,
    MemberShare,
    allocate_shares,
    validate_members,
    validate_share_total,
)
from .planner import (
    SigningSession,
    TransactionBatch,
    plan_batches,
    plan_sessions,
)
from .retry import RetryPolicy
from .ledger import (
    DistributionLedger,
    DistributionRecord,
    MerkleTree,
    export_filename,
    parse_records,
    serialize_records,
)
from .orchestrator import (
    DistributionProgress,
    OutcomeStatus,
    ProgressEvent,
    SessionPhase,
    SessionReport,
    SubmissionOrchestrator,
    SubmissionOutcome,
)
from .distribution import FanoutCoordinator

__all__ = [
    # Shares
    "MemberBalance",
    "MemberShare",
    "allocate_shares",
    "validate_members",
    "validate_share_total",
    # Planning
    "SigningSession",
    "TransactionBatch",
    "plan_batches",
    "plan_sessions",
    # Submission
    "RetryPolicy",
    "DistributionProgress",
    "OutcomeStatus",
    "ProgressEvent",
    "SessionPhase",
    "SessionReport",
    "SubmissionOrchestrator",
    "SubmissionOutcome",
    # Ledger
    "DistributionLedger",
    "DistributionRecord",
    "MerkleTree",
    "export_filename",
    "parse_records",
    "serialize_records",
    # Flows
    "FanoutCoordinator",
]
