"""
Shared fakes for hydrafanout tests.

Provides in-memory stand-ins for the external collaborators:
- FakeProgramClient (fanout program SDK)
- FakeNetwork (RPC surface with scripted failures)
- FakeSigner (connected wallet that may decline)
"""

from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

import pytest

from hydrafanout.blockchain.network import (
    BatchSigner,
    ConfirmationStatus,
    FreshnessAnchor,
    LedgerNetwork,
)
from hydrafanout.blockchain.program import (
    AtomicOperation,
    MemberVoucher,
    OperationKind,
    ProgramClient,
    WalletMint,
    WalletState,
)
from hydrafanout.blockchain.tx_builder import SignedTransaction
from hydrafanout.errors import SubmissionError, UserDeclined

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def make_address(n: int, prefix: str = "Mbr") -> str:
    """Deterministic, valid 44-character base58 address."""
    digits = ""
    while True:
        n, rem = divmod(n, 58)
        digits = BASE58_ALPHABET[rem] + digits
        if n == 0:
            break
    return prefix + "z" * (44 - len(prefix) - 8) + digits.rjust(8, "1")


# ============================================================================
# PROGRAM CLIENT
# ============================================================================

class FakeProgramClient(ProgramClient):
    """Program client backed by dictionaries."""

    def __init__(self):
        self.wallets: Dict[str, WalletState] = {}
        self.vouchers: Dict[str, List[MemberVoucher]] = {}
        self.mints: Dict[str, List[WalletMint]] = {}
        self.token_balances: Dict[Tuple[str, str], Decimal] = {}
        self.unreadable_balances: Set[str] = set()

    def add_wallet(
        self,
        name: str,
        members: List[Tuple[str, int]],
        balance: Decimal = Decimal(100),
        total_shares: Decimal = Decimal(100),
    ) -> str:
        wallet_id = self.derive_wallet_id(name)
        self.wallets[wallet_id] = WalletState(
            wallet_id=wallet_id,
            name=name,
            total_shares=Decimal(total_shares),
            total_members=len(members),
            balance=Decimal(balance),
        )
        self.vouchers[wallet_id] = [
            MemberVoucher(member_address=address, share_units=Decimal(units))
            for address, units in members
        ]
        return wallet_id

    def derive_wallet_id(self, name: str) -> str:
        return f"wallet-{name}"

    async def build_initialize_operation(self, name, total_shares):
        return AtomicOperation(
            kind=OperationKind.INITIALIZE,
            payload=[{"ix": "init", "name": name, "total_shares": str(total_shares)}],
        )

    async def build_registration_operation(self, wallet_id, member_address, share_units):
        return AtomicOperation(
            kind=OperationKind.REGISTRATION,
            member=member_address,
            share_units=share_units,
            payload=[{"ix": "add_member", "wallet": wallet_id, "member": member_address}],
        )

    async def build_payout_operation(self, wallet_id, member_address, for_token_mint=None):
        return AtomicOperation(
            kind=OperationKind.PAYOUT,
            member=member_address,
            payload=[{"ix": "distribute", "member": member_address, "mint": for_token_mint}],
        )

    async def fetch_wallet_state(self, wallet_id):
        return self.wallets.get(wallet_id)

    async def fetch_member_vouchers(self, wallet_id):
        return [
            MemberVoucher(v.member_address, v.share_units, v.cumulative_claimed)
            for v in self.vouchers.get(wallet_id, [])
        ]

    async def fetch_wallet_mints(self, wallet_id):
        return list(self.mints.get(wallet_id, []))

    async def fetch_token_balance(self, owner, mint):
        if owner in self.unreadable_balances:
            raise ConnectionError("account not found")
        return self.token_balances.get((owner, mint), Decimal(0))


# ============================================================================
# NETWORK
# ============================================================================

class FakeNetwork(LedgerNetwork):
    """
    Network that confirms everything unless told otherwise.

    `submit_failures[batch_index]` and `confirm_failures[batch_index]` hold
    how many attempts of that batch fail before one succeeds.
    """

    def __init__(self, fee: int = 0):
        self.fee = fee
        self.submit_failures: Dict[int, int] = {}
        self.confirm_failures: Dict[int, int] = {}
        self.anchor_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self.submitted: List[SignedTransaction] = []
        self.on_confirmed = None
        self._anchors = 0

    async def acquire_freshness_anchor(self):
        self.calls.append(("anchor",))
        if self.anchor_error:
            raise self.anchor_error
        self._anchors += 1
        return FreshnessAnchor(anchor=f"anchor-{self._anchors}", expiry=1000 + self._anchors)

    async def submit(self, transaction):
        batch_index = transaction.batch_index
        self.calls.append(("submit", batch_index))
        if self.submit_failures.get(batch_index, 0) > 0:
            self.submit_failures[batch_index] -= 1
            raise SubmissionError(f"blockhash not found for batch {batch_index}")
        self.submitted.append(transaction)
        return f"tx-{transaction.transaction.session_index}-{batch_index}-{len(self.submitted)}"

    async def confirm(self, transaction_id, anchor):
        self.calls.append(("confirm", transaction_id, anchor.anchor))
        batch_index = self.submitted[-1].batch_index
        if self.confirm_failures.get(batch_index, 0) > 0:
            self.confirm_failures[batch_index] -= 1
            return ConfirmationStatus.UNCONFIRMED
        if self.on_confirmed:
            self.on_confirmed(self.submitted[-1])
        return ConfirmationStatus.CONFIRMED

    async def priority_fee(self, instructions):
        return self.fee


# ============================================================================
# SIGNER
# ============================================================================

class FakeSigner(BatchSigner):
    """Signer that signs everything except the sessions it is told to decline."""

    def __init__(self, address: str, decline_sessions: Optional[Set[int]] = None):
        self._address = address
        self.decline_sessions = set(decline_sessions or ())
        self.requests: List[list] = []

    @property
    def fee_payer(self):
        return self._address

    async def sign_batch(self, transactions):
        self.requests.append(list(transactions))
        session_index = transactions[0].session_index
        if session_index in self.decline_sessions:
            raise UserDeclined("User rejected the request")
        return [
            SignedTransaction(transaction=tx, signature=f"sig-{tx.session_index}-{tx.batch_index}")
            for tx in transactions
        ]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def addresses():
    """Thirty distinct member addresses."""
    return [make_address(i) for i in range(1, 31)]


@pytest.fixture
def operator():
    return make_address(7, prefix="Fee")


@pytest.fixture
def client():
    return FakeProgramClient()


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def signer(operator):
    return FakeSigner(operator)
