"""
hydrafanout/blockchain/tx_builder.py

Transaction builder for planned batches.

Compiles one TransactionBatch into an UnsignedTransaction bound to a
session's freshness anchor and fee payer:
- member operation payloads, in batch order
- the trailing priority-fee instruction, priced per batch

The resulting transactions are handed to a BatchSigner and then to the
LedgerNetwork for submission.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .program import AtomicOperation, OperationKind

if TYPE_CHECKING:
    from .network import FreshnessAnchor
    from ..protocol.planner import TransactionBatch

logger = logging.getLogger("hydrafanout.blockchain.tx_builder")


# ============================================================================
# CONSTANTS
# ============================================================================

COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"
DEFAULT_COMPUTE_UNIT_PRICE = 0       # Micro-lamports per compute unit
MAX_COMPUTE_UNIT_PRICE = 5_000_000   # Cap on a network-suggested price


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class UnsignedTransaction:
    """A compiled batch, ready for signing."""
    session_index: int
    batch_index: int
    fee_payer: str
    anchor: str
    instructions: List[Any]
    members: List[str]
    compute_unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE
    message_hash: str = ""

    def to_dict(self) -> dict:
        return {
            "session_index": self.session_index,
            "batch_index": self.batch_index,
            "fee_payer": self.fee_payer,
            "anchor": self.anchor,
            "num_instructions": len(self.instructions),
            "members": list(self.members),
            "compute_unit_price": self.compute_unit_price,
            "message_hash": self.message_hash,
        }


@dataclass
class SignedTransaction:
    """An unsigned transaction plus the signer's signature."""
    transaction: UnsignedTransaction
    signature: str
    raw: Optional[bytes] = field(default=None, repr=False)

    @property
    def batch_index(self) -> int:
        return self.transaction.batch_index


# ============================================================================
# PRIORITY FEE
# ============================================================================

def priority_fee_operation(compute_unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE) -> AtomicOperation:
    """Create the compute-budget operation appended to every batch."""
    return AtomicOperation(
        kind=OperationKind.PRIORITY_FEE,
        size=1,
        payload=[_compute_unit_price_instruction(compute_unit_price)],
    )


def _compute_unit_price_instruction(price: int) -> Dict[str, Any]:
    return {
        "program": COMPUTE_BUDGET_PROGRAM,
        "instruction": "set_compute_unit_price",
        "micro_lamports": price,
    }


# ============================================================================
# TRANSACTION BUILDER
# ============================================================================

class TransactionBuilder:
    """
    Compiles planned batches into unsigned transactions.

    Example:
        builder = TransactionBuilder(fee_payer=signer.fee_payer)
        unsigned = builder.build(batch, anchor, session_index=0)
    """

    def __init__(self, fee_payer: str, max_compute_unit_price: int = MAX_COMPUTE_UNIT_PRICE):
        """
        Initialize transaction builder.

        Args:
            fee_payer: Address paying fees for every transaction
            max_compute_unit_price: Upper bound applied to the priority fee
        """
        self.fee_payer = fee_payer
        self.max_compute_unit_price = max_compute_unit_price

    def member_instructions(self, batch: "TransactionBatch") -> List[Any]:
        """Flatten the payloads of a batch's member operations, in order."""
        instructions: List[Any] = []
        for op in batch.operations:
            instructions.extend(_as_instruction_list(op.payload))
        return instructions

    def build(
        self,
        batch: "TransactionBatch",
        anchor: "FreshnessAnchor",
        session_index: int,
        compute_unit_price: Optional[int] = None,
    ) -> UnsignedTransaction:
        """
        Build an unsigned transaction for one batch.

        Args:
            batch: Planned batch (member operations + fee operation)
            anchor: Session freshness anchor
            session_index: Index of the owning session
            compute_unit_price: Price for the fee instruction; if None the
                price already in the fee operation is kept

        Returns:
            UnsignedTransaction ready for signing
        """
        instructions = self.member_instructions(batch)

        if compute_unit_price is None:
            instructions.extend(_as_instruction_list(batch.fee_operation.payload))
            price = _price_of(batch.fee_operation)
        else:
            price = max(0, min(compute_unit_price, self.max_compute_unit_price))
            instructions.append(_compute_unit_price_instruction(price))

        unsigned = UnsignedTransaction(
            session_index=session_index,
            batch_index=batch.index,
            fee_payer=self.fee_payer,
            anchor=anchor.anchor,
            instructions=instructions,
            members=batch.members,
            compute_unit_price=price,
        )
        unsigned.message_hash = self._message_hash(unsigned)

        logger.debug(
            f"Built TX for batch {batch.index}: {len(instructions)} instructions, "
            f"{len(batch.members)} members, price {price}"
        )
        return unsigned

    def _message_hash(self, unsigned: UnsignedTransaction) -> str:
        """Deterministic digest of the transaction contents, for logs and audits."""
        body = json.dumps(
            {
                "fee_payer": unsigned.fee_payer,
                "anchor": unsigned.anchor,
                "instructions": unsigned.instructions,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(body.encode()).hexdigest()


def _as_instruction_list(payload: Any) -> List[Any]:
    if payload is None:
        return []
    if isinstance(payload, (list, tuple)):
        return list(payload)
    return [payload]


def _price_of(op: AtomicOperation) -> int:
    for ix in _as_instruction_list(op.payload):
        if isinstance(ix, dict) and "micro_lamports" in ix:
            return int(ix["micro_lamports"])
    return DEFAULT_COMPUTE_UNIT_PRICE
