"""
hydrafanout/blockchain/

Ledger-network boundary for hydrafanout.

Defines the contracts of the external program SDK, the RPC surface and the
signer, and builds the per-session transactions handed to the signer.
"""

from .network import (
    BatchSigner,
    ConfirmationStatus,
    FreshnessAnchor,
    LedgerNetwork,
)

from .program import (
    AtomicOperation,
    MemberVoucher,
    OperationBuilder,
    OperationKind,
    ProgramClient,
    WalletMint,
    WalletState,
    expected_payout,
    sort_vouchers,
)

from .tx_builder import (
    SignedTransaction,
    TransactionBuilder,
    UnsignedTransaction,
    priority_fee_operation,
)

__all__ = [
    # Network and signing
    "BatchSigner",
    "ConfirmationStatus",
    "FreshnessAnchor",
    "LedgerNetwork",
    # Program client adapter
    "AtomicOperation",
    "MemberVoucher",
    "OperationBuilder",
    "OperationKind",
    "ProgramClient",
    "WalletMint",
    "WalletState",
    "expected_payout",
    "sort_vouchers",
    # Transaction building
    "SignedTransaction",
    "TransactionBuilder",
    "UnsignedTransaction",
    "priority_fee_operation",
]
