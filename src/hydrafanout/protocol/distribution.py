"""
hydrafanout/protocol/distribution.py

High-level flows over a pooled (fanout) wallet.

Manages:
- Share allocation from members' token holdings
- Wallet creation (initialize + one registration per member)
- Distribute-to-all (one payout per member)
- Single-member claim

This is the main entry point for callers; it wires the program client,
planner, orchestrator and ledger together for each run.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set, TYPE_CHECKING

from ..blockchain.network import BatchSigner, LedgerNetwork
from ..blockchain.program import (
    AtomicOperation,
    MemberVoucher,
    OperationBuilder,
    ProgramClient,
    WalletMint,
)
from ..config import (
    DEFAULT_TOTAL_SHARES,
    MIN_TOKEN_REQUIREMENT,
    NetworkConfig,
    OrchestratorConfig,
    is_valid_address,
    short_address,
)
from ..errors import ValidationError, WalletAlreadyExistsError, WalletNotFoundError
from .ledger import DistributionLedger
from .orchestrator import AmountResolver, SubmissionOrchestrator, SubmissionOutcome
from .planner import TransactionBatch
from .retry import RetryPolicy
from .shares import MemberBalance, MemberShare, allocate_shares, validate_members, validate_share_total

if TYPE_CHECKING:
    from ..metrics import MetricsCollector

logger = logging.getLogger("hydrafanout.protocol.distribution")


def validate_wallet_name(name: Optional[str]) -> str:
    """
    Check a wallet name.

    Raises:
        ValidationError: If the name is empty or contains spaces
    """
    if not name:
        raise ValidationError("Specify a wallet name")
    if " " in name:
        raise ValidationError("Wallet name cannot contain spaces")
    return name


class FanoutCoordinator:
    """
    Runs wallet-creation and distribution flows.

    Each run gets a fresh orchestrator and ledger; the ledger of the most
    recent run stays available for export.

    Usage:
        coordinator = FanoutCoordinator(client, network, signer)
        outcome = await coordinator.distribute_all(wallet_id)
        csv_text = coordinator.ledger.serialize()
    """

    def __init__(
        self,
        client: ProgramClient,
        network: LedgerNetwork,
        signer: BatchSigner,
        network_config: Optional[NetworkConfig] = None,
        config: Optional[OrchestratorConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        """
        Initialize FanoutCoordinator.

        Args:
            client: Fanout program client
            network: Ledger network RPC surface
            signer: Signing capability of the operator
            network_config: Network the client and network are bound to
            config: Batching and retry limits
            retry_policy: Overrides the policy derived from `config`
            metrics: Optional collector fed with every run
        """
        self.client = client
        self.network = network
        self.signer = signer
        self.network_config = network_config or NetworkConfig()
        self.config = config or OrchestratorConfig()
        self.retry_policy = retry_policy
        self.metrics = metrics
        self.builder = OperationBuilder(client, amount_decimals=self.config.amount_decimals)

        self.ledger = DistributionLedger()
        self._paid_members: Set[str] = set()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def new_orchestrator(
        self,
        amount_resolver: Optional[AmountResolver] = None,
    ) -> SubmissionOrchestrator:
        """Create the orchestrator for one run, with a fresh ledger."""
        self.ledger = DistributionLedger()
        orchestrator = SubmissionOrchestrator(
            network=self.network,
            signer=self.signer,
            config=self.config,
            retry_policy=self.retry_policy,
            ledger=self.ledger,
            amount_resolver=amount_resolver,
        )
        if self.metrics:
            self.metrics.attach(orchestrator)
        return orchestrator

    @property
    def paid_members(self) -> Set[str]:
        """Members paid by any distribution run of this coordinator."""
        return set(self._paid_members)

    async def allocate_from_holdings(
        self,
        addresses: Iterable[str],
        mint: str,
        threshold_min: Decimal = MIN_TOKEN_REQUIREMENT,
        total: Decimal = Decimal(DEFAULT_TOTAL_SHARES),
        precision: int = 0,
    ) -> List[MemberShare]:
        """
        Allocate shares from each address's holding of `mint`.

        A balance that cannot be read counts as 0.

        Raises:
            ValidationError: On invalid or duplicate addresses
        """
        members = []
        for address in addresses:
            if not is_valid_address(address):
                raise ValidationError(f"Invalid member address: {address!r}")
            try:
                balance = await self.client.fetch_token_balance(address, mint)
            except Exception as e:
                logger.warning(f"Could not read {mint} balance of {short_address(address)}: {e}")
                balance = Decimal(0)
            members.append(MemberBalance(address=address, balance=Decimal(balance)))

        return allocate_shares(members, threshold_min, total, precision)

    async def create_wallet(
        self,
        name: str,
        shares: Sequence[MemberShare],
        total_shares: Decimal = Decimal(DEFAULT_TOTAL_SHARES),
    ) -> SubmissionOutcome:
        """
        Create a pooled wallet and register its members.

        The initialize operation goes first in a batch of its own; members
        with a zero share are not registered.

        Raises:
            ValidationError: On a bad name, total, member list or share sum
            WalletAlreadyExistsError: If the wallet name is taken
        """
        validate_wallet_name(name)
        if total_shares is None or Decimal(total_shares) <= 0:
            raise ValidationError("Please specify a positive number of shares")
        validate_members(
            [MemberBalance(address=s.address, balance=Decimal(0)) for s in shares]
        )
        validate_share_total(shares, total_shares)

        wallet_id = self.client.derive_wallet_id(name)
        if await self.client.fetch_wallet_state(wallet_id) is not None:
            raise WalletAlreadyExistsError(name)

        logger.info(
            f"Creating wallet '{name}' ({wallet_id}) with "
            f"{sum(1 for s in shares if s.share_units > 0)} members"
        )
        init_op = await self.client.build_initialize_operation(name, Decimal(total_shares))
        registrations = await self.builder.registration_operations(wallet_id, shares)

        orchestrator = self.new_orchestrator()
        outcome = await orchestrator.run([init_op] + registrations)
        self._finish(outcome, payouts=False)
        return outcome

    async def distribute_all(
        self,
        wallet_id: str,
        mint: Optional[str] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> SubmissionOutcome:
        """
        Pay every member of a wallet its share of the current balance.

        Args:
            wallet_id: Pooled wallet address
            mint: Token mint to distribute instead of the native balance
            exclude: Members to skip, e.g. those already paid by a failed run

        Raises:
            WalletNotFoundError: If the wallet does not exist
            ValidationError: If the wallet has no members or the mint is
                not registered on it
        """
        operations = await self.payout_operations(wallet_id, mint, exclude)
        resolver = None
        if mint is None:
            vouchers = await self.client.fetch_member_vouchers(wallet_id)
            resolver = self.claimed_delta_resolver(wallet_id, vouchers)

        orchestrator = self.new_orchestrator(amount_resolver=resolver)
        outcome = await orchestrator.run(operations)
        self._finish(outcome)
        return outcome

    async def claim(
        self,
        wallet_id: str,
        member: Optional[str] = None,
        mint: Optional[str] = None,
    ) -> SubmissionOutcome:
        """
        Distribute one member's portion (the signer's own by default).

        Raises:
            WalletNotFoundError: If the wallet does not exist
            ValidationError: If the member is not part of the wallet
        """
        member = member or self.signer.fee_payer
        state = await self._fetch_state(wallet_id)
        vouchers = await self.client.fetch_member_vouchers(wallet_id)
        mine = [v for v in vouchers if v.member_address == member]
        if not mine:
            raise ValidationError(f"{member} is not a member of {wallet_id}")

        wallet_mint = await self._find_mint(wallet_id, mint) if mint else None
        operations = await self.builder.payout_operations(wallet_id, state, mine, wallet_mint)
        orchestrator = self.new_orchestrator()
        outcome = await orchestrator.run(operations)
        self._finish(outcome)
        return outcome

    async def payout_operations(
        self,
        wallet_id: str,
        mint: Optional[str] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> List[AtomicOperation]:
        """Build the payout operations distribute_all would submit."""
        state = await self._fetch_state(wallet_id)
        vouchers = await self.client.fetch_member_vouchers(wallet_id)
        if not vouchers:
            raise ValidationError("No membership data found")

        skipped = set(exclude or ())
        if skipped:
            vouchers = [v for v in vouchers if v.member_address not in skipped]
            logger.info(f"Excluding {len(skipped)} already-paid members")

        wallet_mint = await self._find_mint(wallet_id, mint) if mint else None
        return await self.builder.payout_operations(wallet_id, state, vouchers, wallet_mint)

    def claimed_delta_resolver(
        self,
        wallet_id: str,
        before: Sequence[MemberVoucher],
    ) -> AmountResolver:
        """
        Resolver reporting what each member's voucher actually gained.

        Members whose claimed total did not move are left out, so the
        orchestrator falls back to the computed amount for them.
        """
        claimed: Dict[str, Decimal] = {v.member_address: v.cumulative_claimed for v in before}

        async def resolve(batch: TransactionBatch, transaction_id: str) -> Dict[str, Decimal]:
            current = {
                v.member_address: v.cumulative_claimed
                for v in await self.client.fetch_member_vouchers(wallet_id)
            }
            deltas = {}
            for member in batch.members:
                if member in current:
                    delta = current[member] - claimed.get(member, Decimal(0))
                    if delta > 0:
                        deltas[member] = delta
                    claimed[member] = current[member]
            return deltas

        return resolve

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _fetch_state(self, wallet_id: str):
        state = await self.client.fetch_wallet_state(wallet_id)
        if state is None:
            raise WalletNotFoundError(wallet_id)
        return state

    async def _find_mint(self, wallet_id: str, mint: str) -> WalletMint:
        for wallet_mint in await self.client.fetch_wallet_mints(wallet_id):
            if wallet_mint.mint == mint:
                return wallet_mint
        raise ValidationError(f"Mint {mint} is not registered on wallet {wallet_id}")

    def _finish(self, outcome: SubmissionOutcome, payouts: bool = True) -> None:
        # Registration runs confirm members but pay nobody
        if payouts:
            self._paid_members.update(r.member_address for r in outcome.records)
        if self.metrics:
            self.metrics.record_outcome(outcome)
        log = logger.info if outcome.ok else logger.error
        log(f"Run finished ({outcome.status.value}): {outcome.summary()}")
