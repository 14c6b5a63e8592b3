"""
hydrafanout - Batched distribution for pooled (fanout) wallets

Splits a pooled wallet's balance among its members by share:
- Proportional share allocation that always sums to the wallet total
- Batching of per-member operations into bounded transactions and
  signing sessions
- Sequential submission with bounded retry and per-member outcome records
- CSV export and merkle digest of what was paid to whom

Usage:
    from hydrafanout import FanoutCoordinator, NetworkConfig

    coordinator = FanoutCoordinator(
        client, network, signer,
        network_config=NetworkConfig.from_env("devnet"),
    )

    outcome = await coordinator.distribute_all(wallet_id)
    print(outcome.summary())

    with open(export_filename(), "w") as f:
        f.write(coordinator.ledger.serialize())

Metrics Usage:
    from hydrafanout.metrics import MetricsCollector

    metrics = MetricsCollector()
    coordinator = FanoutCoordinator(client, network, signer, metrics=metrics)
    prometheus_output = metrics.collect()
"""

from .config import (
    DEFAULT_TOTAL_SHARES,
    MIN_TOKEN_REQUIREMENT,
    NetworkConfig,
    OrchestratorConfig,
    from_base_units,
    is_valid_address,
    to_base_units,
)
from .errors import (
    FanoutError,
    ValidationError,
    OversizedOperationError,
    UserDeclined,
    SubmissionError,
    ConfirmationTimeout,
    RetryBudgetExhausted,
    WalletAlreadyExistsError,
    WalletNotFoundError,
)
from .blockchain import (
    AtomicOperation,
    BatchSigner,
    ConfirmationStatus,
    FreshnessAnchor,
    LedgerNetwork,
    OperationKind,
    ProgramClient,
)
from .protocol import (
    DistributionLedger,
    DistributionRecord,
    FanoutCoordinator,
    MemberShare,
    OutcomeStatus,
    ProgressEvent,
    RetryPolicy,
    SubmissionOrchestrator,
    SubmissionOutcome,
    allocate_shares,
    export_filename,
    parse_records,
    plan_sessions,
    serialize_records,
)
from .metrics import MetricsCollector

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "DEFAULT_TOTAL_SHARES",
    "MIN_TOKEN_REQUIREMENT",
    "NetworkConfig",
    "OrchestratorConfig",
    "from_base_units",
    "is_valid_address",
    "to_base_units",
    # Errors
    "FanoutError",
    "ValidationError",
    "OversizedOperationError",
    "UserDeclined",
    "SubmissionError",
    "ConfirmationTimeout",
    "RetryBudgetExhausted",
    "WalletAlreadyExistsError",
    "WalletNotFoundError",
    # Ledger network boundary
    "AtomicOperation",
    "BatchSigner",
    "ConfirmationStatus",
    "FreshnessAnchor",
    "LedgerNetwork",
    "OperationKind",
    "ProgramClient",
    # Protocol
    "DistributionLedger",
    "DistributionRecord",
    "FanoutCoordinator",
    "MemberShare",
    "OutcomeStatus",
    "ProgressEvent",
    "RetryPolicy",
    "SubmissionOrchestrator",
    "SubmissionOutcome",
    "allocate_shares",
    "export_filename",
    "parse_records",
    "plan_sessions",
    "serialize_records",
    # Metrics
    "MetricsCollector",
]
