"""
hydrafanout/protocol/ledger.py

Distribution ledger: the audit trail of a run.

One DistributionRecord is appended per confirmed per-member payout. The
ledger is in-memory and append-only; callers export it as CSV with a fixed
column order, or summarize it with a merkle root over its records.
"""

import csv
import hashlib
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..config import short_address
from ..errors import ValidationError

logger = logging.getLogger("hydrafanout.protocol.ledger")

EXPORT_COLUMNS = ("address", "transaction_id", "share_units", "amount_paid")


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class DistributionRecord:
    """One confirmed payout to one member."""
    member_address: str
    transaction_id: str
    share_units: Decimal
    amount_paid: Decimal
    session_index: int = 0

    def as_row(self) -> Tuple[str, str, str, str]:
        return (
            self.member_address,
            self.transaction_id,
            str(self.share_units),
            str(self.amount_paid),
        )

    def to_dict(self) -> dict:
        return {
            'address': self.member_address,
            'transaction_id': self.transaction_id,
            'share_units': str(self.share_units),
            'amount_paid': str(self.amount_paid),
            'session_index': self.session_index,
        }

    def leaf_hash(self) -> str:
        """Deterministic hash of the exported fields."""
        return hashlib.sha256(":".join(self.as_row()).encode()).hexdigest()


def serialize_records(records: Iterable[DistributionRecord]) -> str:
    """
    Render records as CSV text.

    Columns are always address, transaction_id, share_units, amount_paid,
    with a header row.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for record in records:
        writer.writerow(record.as_row())
    return buffer.getvalue()


def parse_records(text: str) -> List[DistributionRecord]:
    """
    Parse CSV produced by serialize_records.

    Raises:
        ValidationError: If the header or a row is malformed
    """
    reader = csv.reader(io.StringIO(text))
    rows = [row for row in reader if row]
    if not rows:
        return []
    if tuple(rows[0]) != EXPORT_COLUMNS:
        raise ValidationError(f"Unexpected export header: {rows[0]}")

    records = []
    for line_no, row in enumerate(rows[1:], start=2):
        if len(row) != len(EXPORT_COLUMNS):
            raise ValidationError(f"Line {line_no}: expected {len(EXPORT_COLUMNS)} columns, got {len(row)}")
        address, tx_id, share_units, amount_paid = row
        try:
            records.append(DistributionRecord(
                member_address=address,
                transaction_id=tx_id,
                share_units=Decimal(share_units),
                amount_paid=Decimal(amount_paid),
            ))
        except ArithmeticError:
            raise ValidationError(f"Line {line_no}: invalid number in {row}")
    return records


def export_filename(now: Optional[datetime] = None) -> str:
    """Default file name for an export, stamped with the UTC time."""
    now = now or datetime.now(timezone.utc)
    return f"distribution_details_{now.strftime('%Y-%m-%dT%H-%M-%SZ')}.csv"


# ============================================================================
# MERKLE TREE
# ============================================================================

class MerkleTree:
    """
    SHA-256 merkle tree over record hashes.

    Gives a single digest for a whole run, and per-record inclusion proofs.
    """

    def __init__(self, leaves: Optional[List[str]] = None):
        self.leaves = list(leaves or [])
        self.root = self._root_of(self.leaves)

    @staticmethod
    def _combine(left: str, right: str) -> str:
        return hashlib.sha256((left + right).encode()).hexdigest()

    @classmethod
    def _next_level(cls, level: List[str]) -> List[str]:
        # Odd count: the last node is paired with itself
        return [
            cls._combine(level[i], level[i + 1] if i + 1 < len(level) else level[i])
            for i in range(0, len(level), 2)
        ]

    @classmethod
    def _root_of(cls, leaves: List[str]) -> str:
        if not leaves:
            return ""
        level = list(leaves)
        while len(level) > 1:
            level = cls._next_level(level)
        return level[0]

    def get_proof(self, leaf_index: int) -> List[Tuple[str, str]]:
        """
        Merkle proof for a leaf.

        Returns:
            List of (direction, sibling_hash) tuples
        """
        if leaf_index >= len(self.leaves):
            return []

        proof = []
        level = list(self.leaves)
        idx = leaf_index
        while len(level) > 1:
            if idx % 2 == 0:
                sibling = idx + 1 if idx + 1 < len(level) else idx
                proof.append(("right", level[sibling]))
            else:
                proof.append(("left", level[idx - 1]))
            level = self._next_level(level)
            idx //= 2
        return proof

    @classmethod
    def verify_proof(cls, leaf_hash: str, merkle_root: str, proof: List[Tuple[str, str]]) -> bool:
        """Check a proof produced by get_proof."""
        current = leaf_hash
        for direction, sibling in proof:
            if direction == "left":
                current = cls._combine(sibling, current)
            else:
                current = cls._combine(current, sibling)
        return current == merkle_root


# ============================================================================
# LEDGER
# ============================================================================

class DistributionLedger:
    """
    Append-only accumulator of distribution records.

    At most one record exists per (member, session) pair.
    """

    def __init__(self):
        self._records: List[DistributionRecord] = []
        self._keys: Set[Tuple[str, int]] = set()

    def record(self, record: DistributionRecord) -> bool:
        """
        Append a record.

        Returns:
            False (and nothing is stored) if the member already has a
            record for the same session
        """
        key = (record.member_address, record.session_index)
        if key in self._keys:
            logger.warning(
                f"Duplicate record for {short_address(record.member_address)} "
                f"in session {record.session_index} ignored"
            )
            return False
        self._keys.add(key)
        self._records.append(record)
        return True

    @property
    def records(self) -> List[DistributionRecord]:
        """Records in the order they were confirmed."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def paid_members(self) -> Set[str]:
        """Addresses with at least one confirmed payout."""
        return {r.member_address for r in self._records}

    def total_paid(self) -> Decimal:
        return sum((r.amount_paid for r in self._records), Decimal(0))

    def amounts_by_member(self) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for r in self._records:
            totals[r.member_address] = totals.get(r.member_address, Decimal(0)) + r.amount_paid
        return totals

    def merkle_root(self) -> str:
        """Digest of every record, in order."""
        return MerkleTree([r.leaf_hash() for r in self._records]).root

    def serialize(self) -> str:
        return serialize_records(self._records)

    def to_dict(self) -> dict:
        return {
            'num_records': len(self._records),
            'total_paid': str(self.total_paid()),
            'merkle_root': self.merkle_root(),
            'records': [r.to_dict() for r in self._records],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
