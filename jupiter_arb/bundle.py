"""
Bundle submission and confirmation.

Submission is a small state machine:

    BUILDING -> SIGNED -> SUBMITTED -> CONFIRMING -> CONFIRMED
                                                  -> TIMED_OUT
                       -> SUBMISSION_FAILED

Each attempt submits once and polls until it lands or times out; the
bundle itself is never resubmitted.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .errors import ConfirmationTimeout, SigningFailed, SimulationFailed, SubmissionFailed
from .jito_client import BlockEngineClient, BundleState, BundleStatus
from .solana_client import SolanaClient
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

PollFn = Callable[[str], Awaitable[BundleStatus]]


class SubmissionState(Enum):
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    SUBMISSION_FAILED = "submission_failed"


async def wait_for_bundle_confirmation(
    poll: PollFn,
    bundle_id: str,
    poll_interval: float,
    timeout: float
) -> List[str]:
    """
    Poll until the bundle lands, fails, or `timeout` seconds pass.

    Poll errors are logged and treated as "not yet resolved". Each poll is
    cut off at the remaining time, so a hung request still ends in a timeout.

    Returns:
        Transaction ids of the landed bundle

    Raises:
        SubmissionFailed: relay reported the bundle as failed
        ConfirmationTimeout: no landed status before the timeout
    """
    start_time = time.monotonic()
    while True:
        remaining = max(timeout - (time.monotonic() - start_time), 0.0)
        try:
            # A single status request may not outlive the confirmation deadline
            status = await asyncio.wait_for(poll(bundle_id), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(f"Bundle status request for {bundle_id} timed out")
            status = None
        except Exception as e:
            logger.warning(f"Error fetching bundle status: {e}")
            status = None

        if status is not None:
            if status.state == BundleState.LANDED and status.transaction_ids:
                return status.transaction_ids
            if status.state == BundleState.FAILED:
                raise SubmissionFailed(f"Bundle {bundle_id} failed: {status.err}")

        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise ConfirmationTimeout(bundle_id, timeout)
        logger.debug(f"Bundle {bundle_id} pending ({elapsed:.1f}s)")
        await asyncio.sleep(min(poll_interval, timeout - elapsed))


class BundleSubmitter:
    """Signs, submits and confirms bundles through the block engine."""

    def __init__(
        self,
        relay: BlockEngineClient,
        solana_client: Optional[SolanaClient] = None,
        simulate: bool = False
    ):
        self.relay = relay
        self.solana = solana_client
        self.simulate = simulate

    def _sign(self, transactions: List[VersionedTransaction], payer: Keypair) -> List[VersionedTransaction]:
        try:
            return [VersionedTransaction(tx.message, [payer]) for tx in transactions]
        except Exception as e:
            raise SigningFailed(f"Failed to sign bundle transaction: {e}") from e

    async def _simulate(self, transaction: VersionedTransaction) -> List[str]:
        if self.solana is None:
            raise SimulationFailed("Simulate mode requires an RPC client")
        try:
            result = await self.solana.simulate_versioned_transaction(transaction)
        except Exception as e:
            raise SimulationFailed(f"Simulation request failed: {e}") from e
        for line in result["logs"]:
            logger.info(line)
        if result["err"]:
            raise SimulationFailed(str(result["err"]), logs=result["logs"])
        return []

    async def submit_and_confirm(
        self,
        transactions: List[VersionedTransaction],
        payer: Keypair,
        wait_for_confirmation: bool = False,
        poll_interval: float = 1.0,
        timeout: float = 5.0,
        poll: Optional[PollFn] = None
    ) -> List[str]:
        """
        Sign and submit `transactions` as one bundle.

        Args:
            transactions: Compiled bundle transactions (re-signed here)
            payer: Signing keypair
            wait_for_confirmation: Poll for landing; when False return [] right
                after submission
            poll_interval: Seconds between status polls
            timeout: Seconds before ConfirmationTimeout
            poll: Status function, defaults to the relay's get_bundle_status

        Returns:
            Landed transaction ids, or [] (fire-and-forget / simulate mode)

        Raises:
            SigningFailed, SubmissionFailed, SimulationFailed, ConfirmationTimeout
        """
        state = SubmissionState.BUILDING
        start_time = time.monotonic()

        def enter(new_state: SubmissionState):
            nonlocal state
            logger.debug(f"bundle state {state.value} -> {new_state.value}")
            state = new_state

        signed = self._sign(transactions, payer)
        enter(SubmissionState.SIGNED)

        if self.simulate:
            return await self._simulate(signed[0])

        try:
            bundle_id = await self.relay.send_bundle(signed)
        except SubmissionFailed:
            enter(SubmissionState.SUBMISSION_FAILED)
            raise
        enter(SubmissionState.SUBMITTED)
        logger.info(f"bundle_id: {colors['CYAN']}{bundle_id}{colors['RESET']}")

        if not wait_for_confirmation:
            return []

        enter(SubmissionState.CONFIRMING)
        try:
            txs = await wait_for_bundle_confirmation(
                poll or self.relay.get_bundle_status,
                bundle_id,
                poll_interval,
                timeout
            )
        except ConfirmationTimeout:
            enter(SubmissionState.TIMED_OUT)
            raise
        except SubmissionFailed:
            enter(SubmissionState.SUBMISSION_FAILED)
            raise
        enter(SubmissionState.CONFIRMED)

        logger.info(f"tx elapsed: {time.monotonic() - start_time:.2f}s, txs: {txs}")
        return txs
