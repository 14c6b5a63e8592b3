"""
hydrafanout/blockchain/program.py

Adapter around the on-chain fanout program client.

The program's account layout and instruction encoding live in an external
SDK. This module fixes the narrow contract hydrafanout needs from it
(ProgramClient) and turns its output into AtomicOperations: one indivisible
unit of ledger work bound to exactly one member.

Architecture:
    ProgramClient (abstract, implemented by an SDK binding)
    OperationBuilder (wraps a ProgramClient, computes expected amounts)

Usage:
    builder = OperationBuilder(client)
    ops = await builder.payout_operations(wallet_id, state, vouchers)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, List, Optional, Sequence

from ..config import NATIVE_DECIMALS, short_address

logger = logging.getLogger("hydrafanout.blockchain.program")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class OperationKind(Enum):
    """What an atomic operation does on-chain."""
    INITIALIZE = "initialize"        # Create the pooled wallet
    REGISTRATION = "registration"    # Add one member with its shares
    PAYOUT = "payout"                # Distribute one member's portion
    PRIORITY_FEE = "priority_fee"    # Compute-budget price, one per batch


@dataclass(frozen=True)
class AtomicOperation:
    """
    One unit of ledger work.

    `payload` is whatever the program client produced (usually a list of
    encoded instructions) and is passed through untouched. `size` is the
    operation's cost against the per-transaction limit.
    """
    kind: OperationKind
    member: Optional[str] = None
    share_units: Decimal = Decimal(0)
    expected_amount: Optional[Decimal] = None
    size: int = 1
    payload: Any = field(default=None, compare=False)

    @property
    def is_member_operation(self) -> bool:
        return self.kind in (OperationKind.REGISTRATION, OperationKind.PAYOUT)

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'member': self.member,
            'share_units': str(self.share_units),
            'expected_amount': str(self.expected_amount) if self.expected_amount is not None else None,
            'size': self.size,
        }


@dataclass
class WalletState:
    """Pooled wallet account as fetched from the network."""
    wallet_id: str
    name: str
    total_shares: Decimal
    total_members: int
    balance: Decimal                 # Distributable native balance
    total_inflow: Decimal = Decimal(0)

    def to_dict(self) -> dict:
        return {
            'wallet_id': self.wallet_id,
            'name': self.name,
            'total_shares': str(self.total_shares),
            'total_members': self.total_members,
            'balance': str(self.balance),
            'total_inflow': str(self.total_inflow),
        }


@dataclass
class MemberVoucher:
    """Membership account of one member of a wallet."""
    member_address: str
    share_units: Decimal
    cumulative_claimed: Decimal = Decimal(0)


@dataclass
class WalletMint:
    """A token mint the wallet accepts inflows in."""
    mint: str
    token_account: str
    balance: Decimal
    decimals: int
    symbol: str = ""
    total_inflow: Decimal = Decimal(0)


# ============================================================================
# ABSTRACT PROGRAM CLIENT
# ============================================================================

class ProgramClient(ABC):
    """
    Contract of the external fanout program SDK.

    Subclass this to bind a concrete SDK or RPC client.
    """

    @abstractmethod
    def derive_wallet_id(self, name: str) -> str:
        """Derive the pooled wallet address for a wallet name."""
        pass

    @abstractmethod
    async def build_initialize_operation(
        self,
        name: str,
        total_shares: Decimal
    ) -> AtomicOperation:
        """Build the operation that creates the pooled wallet."""
        pass

    @abstractmethod
    async def build_registration_operation(
        self,
        wallet_id: str,
        member_address: str,
        share_units: Decimal
    ) -> AtomicOperation:
        """Build the operation that adds one member with its shares."""
        pass

    @abstractmethod
    async def build_payout_operation(
        self,
        wallet_id: str,
        member_address: str,
        for_token_mint: Optional[str] = None
    ) -> AtomicOperation:
        """Build the operation that distributes one member's portion."""
        pass

    @abstractmethod
    async def fetch_wallet_state(self, wallet_id: str) -> Optional[WalletState]:
        """
        Fetch the pooled wallet.

        Returns:
            WalletState, or None if no such wallet exists
        """
        pass

    @abstractmethod
    async def fetch_member_vouchers(self, wallet_id: str) -> List[MemberVoucher]:
        """Fetch every membership account of a wallet."""
        pass

    async def fetch_wallet_mints(self, wallet_id: str) -> List[WalletMint]:
        """Fetch token mints registered on the wallet (none by default)."""
        return []

    async def fetch_token_balance(self, owner: str, mint: str) -> Decimal:
        """Fetch an owner's balance of a token (zero by default)."""
        return Decimal(0)


# ============================================================================
# OPERATION BUILDER
# ============================================================================

def sort_vouchers(vouchers: Sequence[MemberVoucher]) -> List[MemberVoucher]:
    """
    Order vouchers for payout: most shares first, then by address.

    The order is stable across runs so batches can be audited.
    """
    return sorted(vouchers, key=lambda v: (-v.share_units, v.member_address))


def expected_payout(
    balance: Decimal,
    share_units: Decimal,
    total_shares: Decimal,
    decimals: int = NATIVE_DECIMALS
) -> Decimal:
    """Member's share-proportional portion of a balance, truncated to `decimals`."""
    if total_shares <= 0:
        return Decimal(0)
    amount = balance * share_units / total_shares
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


class OperationBuilder:
    """
    Builds per-member operations through a ProgramClient.

    Registration and payout operations are produced in a deterministic
    order, one per member.
    """

    def __init__(self, client: ProgramClient, amount_decimals: int = NATIVE_DECIMALS):
        """
        Initialize OperationBuilder.

        Args:
            client: Program client used to encode operations
            amount_decimals: Fractional digits for expected payout amounts
        """
        self.client = client
        self.amount_decimals = amount_decimals

    async def registration_operations(
        self,
        wallet_id: str,
        shares: Sequence[Any]
    ) -> List[AtomicOperation]:
        """
        Build one registration per member holding a positive share.

        Args:
            wallet_id: Pooled wallet address
            shares: Objects with `address` and `share_units` attributes

        Returns:
            Registration operations in input order
        """
        operations = []
        for member in shares:
            if member.share_units <= 0:
                logger.debug(f"Skipping {short_address(member.address)}: no shares")
                continue
            op = await self.client.build_registration_operation(
                wallet_id, member.address, member.share_units
            )
            operations.append(op)
        logger.info(f"Built {len(operations)} registration operations for {wallet_id}")
        return operations

    async def payout_operations(
        self,
        wallet_id: str,
        state: WalletState,
        vouchers: Sequence[MemberVoucher],
        mint: Optional[WalletMint] = None,
    ) -> List[AtomicOperation]:
        """
        Build one payout per member, with its expected amount attached.

        Args:
            wallet_id: Pooled wallet address
            state: Wallet state (balance and total shares)
            vouchers: Membership accounts to pay
            mint: Token mint to distribute instead of the native balance

        Returns:
            Payout operations, most shares first
        """
        balance = mint.balance if mint else state.balance
        decimals = mint.decimals if mint else self.amount_decimals

        operations = []
        for voucher in sort_vouchers(vouchers):
            op = await self.client.build_payout_operation(
                wallet_id,
                voucher.member_address,
                mint.mint if mint else None,
            )
            operations.append(AtomicOperation(
                kind=OperationKind.PAYOUT,
                member=voucher.member_address,
                share_units=voucher.share_units,
                expected_amount=expected_payout(
                    balance, voucher.share_units, state.total_shares, decimals
                ),
                size=op.size,
                payload=op.payload,
            ))

        logger.info(
            f"Built {len(operations)} payout operations for {wallet_id} "
            f"(balance {balance}{' ' + mint.symbol if mint and mint.symbol else ''})"
        )
        return operations
