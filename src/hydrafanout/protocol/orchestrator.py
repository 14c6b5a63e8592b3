"""
hydrafanout/protocol/orchestrator.py

Submission orchestrator.

Drives a planned run through the network one signing session at a time:

1. Acquire one freshness anchor for the session
2. Build every transaction of the session and request one batch signature
3. For each signed transaction, in order: submit, then wait for
   confirmation, retrying through the RetryPolicy
4. Record one DistributionRecord per member operation of each confirmed
   transaction and report progress

A failed session (declined signature, exhausted retries) stops the run;
records of batches confirmed before the failure stand. Nothing runs
concurrently: every network call is awaited before the next one starts.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..blockchain.network import BatchSigner, ConfirmationStatus, FreshnessAnchor, LedgerNetwork
from ..blockchain.program import AtomicOperation
from ..blockchain.tx_builder import SignedTransaction, TransactionBuilder
from ..config import OrchestratorConfig
from ..errors import (
    ConfirmationTimeout,
    FanoutError,
    UserDeclined,
)
from .ledger import DistributionLedger, DistributionRecord
from .planner import SigningSession, TransactionBatch, plan_sessions
from .retry import RetryPolicy

logger = logging.getLogger("hydrafanout.protocol.orchestrator")

AmountResolver = Callable[[TransactionBatch, str], Awaitable[Dict[str, Decimal]]]


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class SessionPhase(Enum):
    """Phases of one signing session."""
    PLANNED = "planned"                  # Not started
    ANCHOR_ACQUIRED = "anchor_acquired"  # Freshness anchor fetched
    SIGNED = "signed"                    # Batch signature obtained
    SUBMITTING = "submitting"            # Sending a transaction
    CONFIRMING = "confirming"            # Waiting for a confirmation
    DONE = "done"                        # Every batch confirmed
    FAILED = "failed"                    # Aborted


class OutcomeStatus(Enum):
    """How a run ended."""
    DONE = "done"
    NOTHING_TO_DO = "nothing_to_do"
    FAILED = "failed"
    STOPPED = "stopped"                  # Caller asked to stop between sessions


@dataclass
class ProgressEvent:
    """Emitted after each confirmed batch."""
    session_index: int
    batch_index: int
    transaction_id: str
    confirmed_members: int
    pending_members: int

    def to_dict(self) -> dict:
        return {
            'session_index': self.session_index,
            'batch_index': self.batch_index,
            'transaction_id': self.transaction_id,
            'confirmed_members': self.confirmed_members,
            'pending_members': self.pending_members,
        }


@dataclass
class DistributionProgress:
    """Live counters the caller may poll while a run is in flight."""
    total_members: int = 0
    confirmed_members: int = 0
    total_batches: int = 0
    confirmed_batches: int = 0
    retries: int = 0
    current_session: Optional[int] = None
    current_batch: Optional[int] = None

    @property
    def pending_members(self) -> int:
        return self.total_members - self.confirmed_members

    def to_dict(self) -> dict:
        return {
            'total_members': self.total_members,
            'confirmed_members': self.confirmed_members,
            'pending_members': self.pending_members,
            'total_batches': self.total_batches,
            'confirmed_batches': self.confirmed_batches,
            'retries': self.retries,
            'current_session': self.current_session,
            'current_batch': self.current_batch,
        }


@dataclass
class SessionReport:
    """What happened to one signing session."""
    index: int
    phase: SessionPhase = SessionPhase.PLANNED
    anchor: Optional[FreshnessAnchor] = None
    confirmed_batches: List[int] = field(default_factory=list)
    transaction_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'phase': self.phase.value,
            'anchor': self.anchor.to_dict() if self.anchor else None,
            'confirmed_batches': list(self.confirmed_batches),
            'transaction_ids': list(self.transaction_ids),
            'error': self.error,
        }


@dataclass
class SubmissionOutcome:
    """Terminal result of a run."""
    status: OutcomeStatus
    records: List[DistributionRecord] = field(default_factory=list)
    sessions: List[SessionReport] = field(default_factory=list)
    succeeded_members: int = 0
    pending_members: int = 0
    failure_reason: Optional[str] = None
    failed_session_index: Optional[int] = None
    failed_batch_index: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.DONE, OutcomeStatus.NOTHING_TO_DO)

    @property
    def completed_batches(self) -> List[Tuple[int, int]]:
        """(session_index, batch_index) of every confirmed batch."""
        return [(s.index, b) for s in self.sessions for b in s.confirmed_batches]

    @property
    def completed_sessions(self) -> List[int]:
        return [s.index for s in self.sessions if s.phase == SessionPhase.DONE]

    def summary(self) -> str:
        """One line for the operator."""
        if self.status == OutcomeStatus.NOTHING_TO_DO:
            return "Nothing to do"
        line = f"{self.succeeded_members} members succeeded, {self.pending_members} pending"
        if self.status == OutcomeStatus.FAILED:
            line += f"; failed at session {self.failed_session_index}"
            if self.failed_batch_index is not None:
                line += f" batch {self.failed_batch_index}"
            line += f": {self.failure_reason}"
        elif self.status == OutcomeStatus.STOPPED:
            line += "; stopped before the next session"
        return line

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'records': [r.to_dict() for r in self.records],
            'sessions': [s.to_dict() for s in self.sessions],
            'succeeded_members': self.succeeded_members,
            'pending_members': self.pending_members,
            'failure_reason': self.failure_reason,
            'failed_session_index': self.failed_session_index,
            'failed_batch_index': self.failed_batch_index,
        }


class _SessionFailed(Exception):
    """Internal: a session was aborted at `batch_index` (None = before any batch)."""

    def __init__(self, detail: str, batch_index: Optional[int] = None):
        self.detail = detail
        self.batch_index = batch_index
        super().__init__(detail)


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class SubmissionOrchestrator:
    """
    Plans operations and submits them session by session.

    One orchestrator serves one run: its ledger refuses a second record for
    the same member and session, so a rerun needs a fresh orchestrator (or
    ledger).

    Usage:
        orchestrator = SubmissionOrchestrator(network, signer, config)

        async for item in orchestrator.plan_and_submit(operations):
            if isinstance(item, ProgressEvent):
                print(item.confirmed_members, item.pending_members)
            else:
                outcome = item
    """

    def __init__(
        self,
        network: LedgerNetwork,
        signer: BatchSigner,
        config: Optional[OrchestratorConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        ledger: Optional[DistributionLedger] = None,
        amount_resolver: Optional[AmountResolver] = None,
    ):
        """
        Initialize SubmissionOrchestrator.

        Args:
            network: Ledger network RPC surface
            signer: Signing capability of the fee payer
            config: Batching and retry limits
            retry_policy: Overrides the policy derived from `config`
            ledger: Ledger to append records to (a new one if None)
            amount_resolver: Optional async callable returning the
                ledger-observed amount per member of a confirmed batch

        Raises:
            ValidationError: On invalid limits in `config`
        """
        self.network = network
        self.signer = signer
        self.config = config or OrchestratorConfig()
        self.config.validate()
        self.retry_policy = retry_policy or self.config.retry_policy()
        self.ledger = ledger if ledger is not None else DistributionLedger()
        self.amount_resolver = amount_resolver

        self._progress = DistributionProgress()
        self._reports: List[SessionReport] = []
        self._stop_requested = False

        # Callbacks
        self._on_progress: Optional[Callable[[ProgressEvent], None]] = None
        self._on_session_failed: Optional[Callable[[SessionReport], None]] = None
        self._on_retry: Optional[Callable[[int, int], None]] = None

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    @property
    def progress(self) -> DistributionProgress:
        """Live progress counters (the object is updated in place)."""
        return self._progress

    @property
    def session_reports(self) -> List[SessionReport]:
        return list(self._reports)

    def request_stop(self) -> None:
        """
        Stop after the session in flight; an in-flight call is never interrupted.

        A request made before the run starts stops it before its first
        session. The request is cleared once the run has ended.
        """
        logger.info("Stop requested; no further sessions will start")
        self._stop_requested = True

    async def run(self, operations: Sequence[AtomicOperation]) -> SubmissionOutcome:
        """Plan and submit, returning only the final outcome."""
        outcome = None
        async for item in self.plan_and_submit(operations):
            if isinstance(item, SubmissionOutcome):
                outcome = item
        return outcome

    async def plan_and_submit(
        self,
        operations: Sequence[AtomicOperation],
    ) -> AsyncIterator[Union[ProgressEvent, SubmissionOutcome]]:
        """
        Plan `operations` and submit them.

        Yields a ProgressEvent after every confirmed batch, then exactly one
        SubmissionOutcome.

        Raises:
            ValidationError: On invalid limits
            OversizedOperationError: If an operation cannot fit in a batch
        """
        self.config.validate()
        sessions = plan_sessions(
            operations,
            self.config.max_operations_per_batch,
            self.config.max_batches_per_session,
        )

        self._reports = [SessionReport(index=s.index) for s in sessions]
        self._progress = DistributionProgress(
            total_members=sum(s.member_count for s in sessions),
            total_batches=sum(len(s.batches) for s in sessions),
        )
        run_records: List[DistributionRecord] = []

        if not sessions:
            logger.info("No operations to submit")
            yield self._outcome(OutcomeStatus.NOTHING_TO_DO, run_records)
            return

        for session in sessions:
            if self._stop_requested:
                logger.info(f"Stopping before session {session.index}")
                yield self._outcome(OutcomeStatus.STOPPED, run_records)
                return

            report = self._reports[session.index]
            self._progress.current_session = session.index

            try:
                anchor, signed = await self._prepare_session(session, report)

                for batch, signed_tx in zip(session.batches, signed):
                    self._progress.current_batch = batch.index
                    tx_id = await self._submit_batch(session, batch, signed_tx, anchor, report)
                    records = await self._record_batch(session, batch, tx_id)
                    run_records.extend(records)

                    report.confirmed_batches.append(batch.index)
                    report.transaction_ids.append(tx_id)
                    self._progress.confirmed_batches += 1
                    self._progress.confirmed_members += len(batch.member_operations)

                    event = ProgressEvent(
                        session_index=session.index,
                        batch_index=batch.index,
                        transaction_id=tx_id,
                        confirmed_members=self._progress.confirmed_members,
                        pending_members=self._progress.pending_members,
                    )
                    if self._on_progress:
                        self._on_progress(event)
                    yield event

            except _SessionFailed as failure:
                report.phase = SessionPhase.FAILED
                report.error = failure.detail
                logger.error(
                    f"Session {session.index} failed: {failure.detail} "
                    f"({self._progress.confirmed_members} members paid, "
                    f"{self._progress.pending_members} pending)"
                )
                if self._on_session_failed:
                    self._on_session_failed(report)
                outcome = self._outcome(OutcomeStatus.FAILED, run_records)
                outcome.failure_reason = failure.detail
                outcome.failed_session_index = session.index
                outcome.failed_batch_index = failure.batch_index
                yield outcome
                return

            report.phase = SessionPhase.DONE
            logger.info(f"Session {session.index} done ({len(session.batches)} batches)")

        logger.info(
            f"Run complete: {self._progress.confirmed_members} members in "
            f"{self._progress.confirmed_batches} transactions"
        )
        yield self._outcome(OutcomeStatus.DONE, run_records)

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _prepare_session(
        self,
        session: SigningSession,
        report: SessionReport,
    ) -> Tuple[FreshnessAnchor, List[SignedTransaction]]:
        """Acquire the session anchor, build its transactions and sign them once."""
        try:
            anchor = await self.network.acquire_freshness_anchor()
        except Exception as e:
            raise _SessionFailed(f"Could not acquire freshness anchor: {e}")
        report.anchor = anchor
        report.phase = SessionPhase.ANCHOR_ACQUIRED
        logger.info(
            f"Session {session.index}: anchor {anchor.anchor} valid until {anchor.expiry}, "
            f"{len(session.batches)} batches"
        )

        builder = TransactionBuilder(fee_payer=self.signer.fee_payer)
        transactions = []
        try:
            for batch in session.batches:
                price = await self.network.priority_fee(builder.member_instructions(batch))
                transactions.append(builder.build(batch, anchor, session.index, price))
        except Exception as e:
            raise _SessionFailed(f"Could not build transactions: {e}")

        try:
            signed = await self.signer.sign_batch(transactions)
        except UserDeclined as e:
            raise _SessionFailed(f"Signing declined: {e}")
        except Exception as e:
            raise _SessionFailed(f"Signing failed: {e}")

        if len(signed) != len(transactions):
            raise _SessionFailed(
                f"Signer returned {len(signed)} transactions for {len(transactions)}"
            )
        report.phase = SessionPhase.SIGNED
        return anchor, signed

    async def _submit_batch(
        self,
        session: SigningSession,
        batch: TransactionBatch,
        signed_tx: SignedTransaction,
        anchor: FreshnessAnchor,
        report: SessionReport,
    ) -> str:
        """Submit and confirm one transaction through the retry policy."""

        async def attempt(n: int) -> str:
            if n > 1:
                self._progress.retries += 1
                if self._on_retry:
                    self._on_retry(session.index, batch.index)
            report.phase = SessionPhase.SUBMITTING
            tx_id = await self.network.submit(signed_tx)
            report.phase = SessionPhase.CONFIRMING
            status = await self.network.confirm(tx_id, anchor)
            if status != ConfirmationStatus.CONFIRMED:
                raise ConfirmationTimeout(tx_id, status.value)
            return tx_id

        try:
            tx_id = await self.retry_policy.run(
                attempt, description=f"Session {session.index} batch {batch.index}"
            )
        except FanoutError as e:
            # RetryBudgetExhausted carries the last transient error
            raise _SessionFailed(str(e), batch_index=batch.index)
        except Exception as e:
            raise _SessionFailed(f"{type(e).__name__}: {e}", batch_index=batch.index)

        logger.info(
            f"Session {session.index} batch {batch.index} confirmed: {tx_id} "
            f"({len(batch.member_operations)} members)"
        )
        return tx_id

    async def _record_batch(
        self,
        session: SigningSession,
        batch: TransactionBatch,
        tx_id: str,
    ) -> List[DistributionRecord]:
        """Append one record per member operation of a confirmed batch."""
        observed: Dict[str, Decimal] = {}
        if self.amount_resolver:
            try:
                observed = await self.amount_resolver(batch, tx_id)
            except Exception as e:
                logger.warning(
                    f"Could not read settled amounts for batch {batch.index}, "
                    f"using computed amounts: {e}"
                )

        records = []
        for op in batch.member_operations:
            amount = observed.get(op.member)
            if amount is None:
                amount = op.expected_amount if op.expected_amount is not None else Decimal(0)
            record = DistributionRecord(
                member_address=op.member,
                transaction_id=tx_id,
                share_units=op.share_units,
                amount_paid=amount,
                session_index=session.index,
            )
            if self.ledger.record(record):
                records.append(record)
        return records

    def _outcome(self, status: OutcomeStatus, records: List[DistributionRecord]) -> SubmissionOutcome:
        self._stop_requested = False
        return SubmissionOutcome(
            status=status,
            records=list(records),
            sessions=list(self._reports),
            succeeded_members=self._progress.confirmed_members,
            pending_members=self._progress.pending_members,
        )

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def set_on_progress(self, callback: Callable[[ProgressEvent], None]) -> None:
        """Set callback invoked after each confirmed batch."""
        self._on_progress = callback

    def set_on_session_failed(self, callback: Callable[[SessionReport], None]) -> None:
        """Set callback invoked when a session fails."""
        self._on_session_failed = callback

    def set_on_retry(self, callback: Callable[[int, int], None]) -> None:
        """Set callback invoked with (session_index, batch_index) before each resubmission."""
        self._on_retry = callback
