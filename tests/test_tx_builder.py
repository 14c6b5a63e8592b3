"""
Tests for hydrafanout/blockchain/tx_builder.py

Tests compiling planned batches into unsigned transactions.
"""

import pytest
from decimal import Decimal

from hydrafanout.blockchain.network import FreshnessAnchor
from hydrafanout.blockchain.program import AtomicOperation, OperationKind
from hydrafanout.blockchain.tx_builder import (
    COMPUTE_BUDGET_PROGRAM,
    DEFAULT_COMPUTE_UNIT_PRICE,
    MAX_COMPUTE_UNIT_PRICE,
    SignedTransaction,
    TransactionBuilder,
    UnsignedTransaction,
    priority_fee_operation,
)
from hydrafanout.protocol.planner import plan_batches


# ============================================================================
# TEST DATA
# ============================================================================

ANCHOR = FreshnessAnchor(anchor="GHtXQBsoZHVnNFa9YevAzFr17DJjgHXk3ycTKD5xD3Zi", expiry=250)


def make_batch(addresses, payload=True):
    ops = [
        AtomicOperation(
            kind=OperationKind.PAYOUT,
            member=a,
            share_units=Decimal(10),
            payload=[{"ix": "distribute", "member": a}] if payload else None,
        )
        for a in addresses
    ]
    return plan_batches(ops, len(ops))[0]


# ============================================================================
# PRIORITY FEE TESTS
# ============================================================================

class TestPriorityFeeOperation:
    """Tests for priority_fee_operation."""

    def test_default_price(self):
        op = priority_fee_operation()
        assert op.kind == OperationKind.PRIORITY_FEE
        assert op.member is None
        assert not op.is_member_operation
        assert op.payload == [{
            "program": COMPUTE_BUDGET_PROGRAM,
            "instruction": "set_compute_unit_price",
            "micro_lamports": DEFAULT_COMPUTE_UNIT_PRICE,
        }]

    def test_custom_price(self):
        assert priority_fee_operation(1234).payload[0]["micro_lamports"] == 1234


# ============================================================================
# TRANSACTION BUILDER TESTS
# ============================================================================

class TestTransactionBuilder:
    """Tests for TransactionBuilder."""

    def test_build_keeps_member_order(self, addresses, operator):
        batch = make_batch(addresses[:3])
        unsigned = TransactionBuilder(operator).build(batch, ANCHOR, session_index=2)

        assert isinstance(unsigned, UnsignedTransaction)
        assert unsigned.session_index == 2
        assert unsigned.batch_index == 0
        assert unsigned.fee_payer == operator
        assert unsigned.anchor == ANCHOR.anchor
        assert unsigned.members == addresses[:3]
        assert [ix.get("member") for ix in unsigned.instructions[:3]] == addresses[:3]
        assert unsigned.instructions[-1]["program"] == COMPUTE_BUDGET_PROGRAM

    def test_price_from_fee_operation(self, addresses, operator):
        batch = make_batch(addresses[:2])
        unsigned = TransactionBuilder(operator).build(batch, ANCHOR, 0)
        assert unsigned.compute_unit_price == DEFAULT_COMPUTE_UNIT_PRICE

    def test_explicit_price_replaces_fee_operation(self, addresses, operator):
        batch = make_batch(addresses[:2])
        unsigned = TransactionBuilder(operator).build(batch, ANCHOR, 0, compute_unit_price=4200)

        assert unsigned.compute_unit_price == 4200
        fee_instructions = [ix for ix in unsigned.instructions if ix.get("program") == COMPUTE_BUDGET_PROGRAM]
        assert len(fee_instructions) == 1
        assert fee_instructions[0]["micro_lamports"] == 4200

    def test_price_is_clamped(self, addresses, operator):
        batch = make_batch(addresses[:1])
        builder = TransactionBuilder(operator)
        assert builder.build(batch, ANCHOR, 0, MAX_COMPUTE_UNIT_PRICE * 10).compute_unit_price == MAX_COMPUTE_UNIT_PRICE
        assert builder.build(batch, ANCHOR, 0, -5).compute_unit_price == 0

        capped = TransactionBuilder(operator, max_compute_unit_price=100)
        assert capped.build(batch, ANCHOR, 0, 500).compute_unit_price == 100

    def test_operations_without_payload(self, addresses, operator):
        batch = make_batch(addresses[:2], payload=False)
        unsigned = TransactionBuilder(operator).build(batch, ANCHOR, 0)
        assert len(unsigned.instructions) == 1
        assert unsigned.members == addresses[:2]

    def test_message_hash_is_deterministic(self, addresses, operator):
        batch = make_batch(addresses[:3])
        builder = TransactionBuilder(operator)
        first = builder.build(batch, ANCHOR, 0)
        second = builder.build(batch, ANCHOR, 0)

        assert len(first.message_hash) == 64
        assert first.message_hash == second.message_hash

        other_anchor = FreshnessAnchor(anchor="4sGjMW1sUnHzSxGspuhpqLDx6wiyjNtZAMdL4VZHirAn", expiry=300)
        assert builder.build(batch, other_anchor, 0).message_hash != first.message_hash

    def test_member_instructions(self, addresses, operator):
        batch = make_batch(addresses[:2])
        instructions = TransactionBuilder(operator).member_instructions(batch)
        assert instructions == [
            {"ix": "distribute", "member": addresses[0]},
            {"ix": "distribute", "member": addresses[1]},
        ]

    def test_to_dict(self, addresses, operator):
        unsigned = TransactionBuilder(operator).build(make_batch(addresses[:2]), ANCHOR, 1)
        data = unsigned.to_dict()
        assert data["session_index"] == 1
        assert data["num_instructions"] == 3
        assert data["members"] == addresses[:2]


class TestSignedTransaction:
    """Tests for SignedTransaction."""

    def test_batch_index(self, addresses, operator):
        unsigned = TransactionBuilder(operator).build(make_batch(addresses[:1]), ANCHOR, 0)
        signed = SignedTransaction(transaction=unsigned, signature="sig")
        assert signed.batch_index == 0
        assert signed.raw is None
