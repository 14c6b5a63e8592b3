"""
hydrafanout/blockchain/network.py

Network and signing primitives consumed by the submission orchestrator.

Provides:
- FreshnessAnchor (recent blockhash + last valid block height)
- ConfirmationStatus
- LedgerNetwork (abstract RPC surface)
- BatchSigner (abstract signing capability)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .tx_builder import UnsignedTransaction, SignedTransaction


@dataclass(frozen=True)
class FreshnessAnchor:
    """
    Short-lived token a transaction must carry to be accepted.

    `expiry` is the last block height at which transactions built on
    `anchor` are still valid.
    """
    anchor: str
    expiry: int

    def to_dict(self) -> dict:
        return {"anchor": self.anchor, "expiry": self.expiry}


class ConfirmationStatus(Enum):
    """Result of waiting for a transaction."""
    CONFIRMED = "confirmed"
    EXPIRED = "expired"            # Anchor expired before confirmation
    UNCONFIRMED = "unconfirmed"    # Still not confirmed when the wait ended


class LedgerNetwork(ABC):
    """
    RPC surface of the ledger network.

    Every method is a suspension point; the orchestrator awaits them one at
    a time and never issues two concurrently.
    """

    @abstractmethod
    async def acquire_freshness_anchor(self) -> FreshnessAnchor:
        """Fetch a fresh anchor and its expiry."""
        pass

    @abstractmethod
    async def submit(self, transaction: "SignedTransaction") -> str:
        """
        Send a signed transaction.

        Returns:
            Transaction identifier (signature)

        Raises:
            SubmissionError: If the network rejected or dropped it
        """
        pass

    @abstractmethod
    async def confirm(self, transaction_id: str, anchor: FreshnessAnchor) -> ConfirmationStatus:
        """Wait for a transaction bound to `anchor` to confirm."""
        pass

    async def priority_fee(self, instructions: Sequence[Any]) -> int:
        """
        Compute-unit price (micro-lamports) to attach to a transaction.

        Networks without a fee market return 0.
        """
        return 0


class BatchSigner(ABC):
    """
    Signing capability supplied by the caller (a connected wallet).

    One call signs a whole session, so the user authorizes many
    transactions at once.
    """

    @property
    @abstractmethod
    def fee_payer(self) -> str:
        """Address paying fees for every transaction."""
        pass

    @abstractmethod
    async def sign_batch(
        self,
        transactions: List["UnsignedTransaction"]
    ) -> List["SignedTransaction"]:
        """
        Sign every transaction of a session.

        Returns:
            Signed transactions, same order as given

        Raises:
            UserDeclined: If the user refused
        """
        pass
