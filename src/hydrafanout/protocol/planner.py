"""
hydrafanout/protocol/planner.py

Batch planning.

Groups an ordered list of atomic operations into transactions and groups
transactions into signing sessions:

    operations ──► TransactionBatch (≤ max_operations_per_batch + fee op)
               ──► SigningSession   (≤ max_batches_per_session batches)

Input order is preserved everywhere so a run can be audited and replayed.
An initialize operation, when present, gets a batch of its own ahead of
every member operation.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ..blockchain.program import AtomicOperation, OperationKind
from ..blockchain.tx_builder import priority_fee_operation
from ..errors import OversizedOperationError, ValidationError

logger = logging.getLogger("hydrafanout.protocol.planner")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class TransactionBatch:
    """Operations submitted together as one transaction."""
    index: int
    operations: List[AtomicOperation]
    fee_operation: AtomicOperation

    @property
    def all_operations(self) -> List[AtomicOperation]:
        """Member operations followed by the trailing fee operation."""
        return self.operations + [self.fee_operation]

    @property
    def member_operations(self) -> List[AtomicOperation]:
        return [op for op in self.operations if op.is_member_operation]

    @property
    def members(self) -> List[str]:
        return [op.member for op in self.member_operations]

    @property
    def cost(self) -> int:
        return sum(op.size for op in self.operations)

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'operations': [op.to_dict() for op in self.operations],
            'fee_operation': self.fee_operation.to_dict(),
        }


@dataclass
class SigningSession:
    """Batches sharing one freshness anchor and one signing request."""
    index: int
    batches: List[TransactionBatch] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return sum(len(b.member_operations) for b in self.batches)

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'batches': [b.to_dict() for b in self.batches],
        }


# ============================================================================
# PLANNING
# ============================================================================

def _check_batch_limit(max_operations_per_batch: int) -> None:
    if max_operations_per_batch < 1:
        raise ValidationError(
            f"max_operations_per_batch must be at least 1, got {max_operations_per_batch}"
        )


def _check_session_limit(max_batches_per_session: int) -> None:
    if max_batches_per_session < 1:
        raise ValidationError(
            f"max_batches_per_session must be at least 1, got {max_batches_per_session}"
        )


def _check_initialize_position(operations: Sequence[AtomicOperation]) -> None:
    init_positions = [i for i, op in enumerate(operations) if op.kind == OperationKind.INITIALIZE]
    if len(init_positions) > 1:
        raise ValidationError("At most one initialize operation may be planned")
    if init_positions and init_positions[0] != 0:
        raise ValidationError("The initialize operation must come before member operations")


def plan_batches(
    operations: Sequence[AtomicOperation],
    max_operations_per_batch: int,
    fee_operation: Optional[Callable[[], AtomicOperation]] = None,
) -> List[TransactionBatch]:
    """
    Partition operations into consecutive batches.

    Args:
        operations: Operations in submission order
        max_operations_per_batch: Cost limit for a batch's member operations
        fee_operation: Factory for the trailing fee operation

    Returns:
        Batches in input order, each sealed with one fee operation

    Raises:
        OversizedOperationError: If one operation alone exceeds the limit
        ValidationError: On a bad limit or a misplaced initialize operation
    """
    _check_batch_limit(max_operations_per_batch)
    _check_initialize_position(operations)
    make_fee = fee_operation or priority_fee_operation

    batches: List[TransactionBatch] = []
    current: List[AtomicOperation] = []
    current_cost = 0

    def seal() -> None:
        nonlocal current, current_cost
        if current:
            batches.append(TransactionBatch(
                index=len(batches),
                operations=current,
                fee_operation=make_fee(),
            ))
        current = []
        current_cost = 0

    for op in operations:
        if op.size > max_operations_per_batch:
            raise OversizedOperationError(op.size, max_operations_per_batch, op.member)

        if op.kind == OperationKind.INITIALIZE:
            current.append(op)
            seal()
            continue

        if current_cost + op.size > max_operations_per_batch:
            seal()
        current.append(op)
        current_cost += op.size

    seal()
    return batches


def plan_sessions(
    operations: Sequence[AtomicOperation],
    max_operations_per_batch: int,
    max_batches_per_session: int,
    fee_operation: Optional[Callable[[], AtomicOperation]] = None,
) -> List[SigningSession]:
    """
    Plan a whole run: operations → batches → signing sessions.

    Planning is deterministic: the same operations and limits always give
    the same partitioning. Zero operations give an empty plan.

    Args:
        operations: Operations in submission order
        max_operations_per_batch: Cost limit for a batch's member operations
        max_batches_per_session: Batches per signing request
        fee_operation: Factory for the trailing fee operation

    Returns:
        Signing sessions in order
    """
    _check_session_limit(max_batches_per_session)
    batches = plan_batches(operations, max_operations_per_batch, fee_operation)

    sessions = [
        SigningSession(index=n, batches=batches[i:i + max_batches_per_session])
        for n, i in enumerate(range(0, len(batches), max_batches_per_session))
    ]

    if sessions:
        logger.info(
            f"Planned {len(operations)} operations into {len(batches)} batches "
            f"across {len(sessions)} signing sessions"
        )
    return sessions
