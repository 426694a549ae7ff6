"""
Trading module: runs arbitrage attempts and the periodic orchestrator loop.
"""
import asyncio
import base64
import logging
import time
import uuid
from enum import Enum
from typing import Callable, List, Optional, Set

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .arbitrage import ArbitrageAttempt, ProfitCalculator, merge_quotes
from .bundle import BundleSubmitter
from .config import BotConfig
from .dex import Venue, VenueSet
from .errors import (
    ArbitrageError,
    CompilationFailed,
    ConfirmationTimeout,
    QuoteUnavailable,
    SigningFailed,
    SubmissionFailed,
)
from .instructions import build_instructions, get_tip_instruction
from .jito_client import BlockEngineClient
from .jupiter_client import JupiterClient
from .risk_manager import RiskManager
from .solana_client import SolanaClient
from .transaction import TransactionCompiler
from .utils import (
    NATIVE_DECIMALS,
    NATIVE_MINT,
    execution_id_var,
    get_terminal_colors,
    lamports_to_sol,
    ui_amount_to_amount,
)

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

# One-shot swap defaults
SWAP_SLIPPAGE_BPS = 500
SWAP_COMPUTE_UNIT_PRICE = 50_000
SWAP_VENUES = VenueSet([Venue.RAYDIUM, Venue.METEORA_DLMM, Venue.WHIRLPOOL])


class SwapDirection(Enum):
    BUY = "buy"    # native -> mint
    SELL = "sell"  # mint -> native


class Trader:
    """Executes arbitrage attempts and one-shot swaps for a single wallet."""

    def __init__(
        self,
        config: BotConfig,
        wallet: Keypair,
        jupiter_client: JupiterClient,
        relay: BlockEngineClient,
        risk_manager: RiskManager,
        calculator: ProfitCalculator,
        dexes: VenueSet = VenueSet.ALL,
        solana_factory: Callable[[str, Keypair, Optional[str]], SolanaClient] = SolanaClient
    ):
        self.config = config
        self.wallet = wallet
        self.jupiter = jupiter_client
        self.relay = relay
        self.risk = risk_manager
        self.calculator = calculator
        self.dexes = dexes
        self.solana_factory = solana_factory

    def _new_solana_client(self) -> SolanaClient:
        primary, fallback = self.config.pick_rpc_pair()
        return self.solana_factory(primary, self.wallet, fallback)

    async def run_attempt(
        self,
        target_mint: str,
        amount_in: int,
        partner_fee: float = 0.0,
        wait_for_confirmation: bool = False
    ) -> ArbitrageAttempt:
        """
        Evaluate one native -> target -> native round trip and, if profitable,
        submit it as a tipped bundle.

        Returns:
            The ArbitrageAttempt with its final status

        Raises:
            ArbitrageError: any pipeline stage failed
        """
        execution_id = execution_id_var.get() or str(uuid.uuid4())
        attempt = ArbitrageAttempt(
            execution_id=execution_id,
            target_mint=target_mint,
            amount_in=amount_in,
            min_profit=self.risk.config.min_profit_lamports,
            partner_fee=partner_fee
        )

        solana = self._new_solana_client()
        try:
            profit, buy_quote, sell_quote = await self.calculator.evaluate(
                amount_in, NATIVE_MINT, target_mint, dexes=self.dexes, partner_fee=partner_fee
            )
            attempt.buy_quote, attempt.sell_quote, attempt.profit = buy_quote, sell_quote, profit

            profit_color = colors['GREEN'] if profit > 0 else colors['RED']
            logger.info(
                f"profit: {profit_color}{lamports_to_sol(profit)}{colors['RESET']} SOL "
                f"(min {lamports_to_sol(attempt.min_profit)})"
            )

            execute, reason = self.risk.should_execute(profit)
            if not execute:
                attempt.status = "skipped"
                logger.debug(f"{colors['DIM']}Skipping: {reason}{colors['RESET']}")
                return attempt

            tip = self.risk.tip_for_profit(profit)
            if tip <= 0:
                attempt.status = "skipped"
                logger.debug(f"{colors['DIM']}Skipping: no tip left from profit {profit}{colors['RESET']}")
                return attempt

            merged = merge_quotes(buy_quote, sell_quote, amount_in, tip)
            swap_instructions = await self.jupiter.get_swap_instructions(
                merged,
                str(self.wallet.pubkey()),
                extra_params=self.config.quote_extra_params
            )
            if swap_instructions is None:
                raise QuoteUnavailable("No swap instructions for merged quote")

            tip_account = await self.relay.get_tip_account()
            tip_instruction = get_tip_instruction(self.wallet.pubkey(), tip_account, tip)
            try:
                instructions = build_instructions(swap_instructions, tip_instruction)
            except ValueError as e:
                raise CompilationFailed(f"Invalid swap instruction: {e}") from e

            compiler = TransactionCompiler(solana)
            transaction = await compiler.compile(
                instructions,
                swap_instructions.address_lookup_table_addresses,
                self.wallet
            )

            submitter = BundleSubmitter(self.relay, solana, simulate=self.config.tx_simulate)
            attempt.transaction_ids = await submitter.submit_and_confirm(
                [transaction],
                self.wallet,
                wait_for_confirmation=wait_for_confirmation,
                poll_interval=self.config.bundle_poll_interval,
                timeout=self.config.bundle_timeout
            )
            attempt.status = "submitted"
            if attempt.transaction_ids:
                logger.info(f"{colors['GREEN']}Bundle landed:{colors['RESET']} {attempt.transaction_ids}")
            return attempt
        except ArbitrageError:
            attempt.status = "failed"
            raise
        finally:
            await solana.close()

    async def swap(self, mint: str, direction: SwapDirection, ui_amount_in: float) -> Optional[str]:
        """
        One-shot swap between the native mint and `mint` using Jupiter's
        ready-built transaction.

        Args:
            mint: Non-native token mint
            direction: BUY spends native, SELL spends `mint`
            ui_amount_in: Input amount in UI units of the input mint

        Returns:
            Transaction signature, or None in simulate mode

        Raises:
            ArbitrageError: quote, signing or send failure
        """
        if direction == SwapDirection.BUY:
            input_mint, output_mint = NATIVE_MINT, mint
        else:
            input_mint, output_mint = mint, NATIVE_MINT

        solana = self._new_solana_client()
        try:
            if input_mint == NATIVE_MINT:
                decimals = NATIVE_DECIMALS
            else:
                decimals = await solana.get_mint_decimals(Pubkey.from_string(input_mint))
            amount_in = ui_amount_to_amount(ui_amount_in, decimals)

            quote = await self.jupiter.get_quote(
                input_mint,
                output_mint,
                amount_in,
                slippage_bps=SWAP_SLIPPAGE_BPS,
                dexes=SWAP_VENUES,
                extra_params=self.config.quote_extra_params
            )
            if quote is None:
                raise QuoteUnavailable(f"No quote for {input_mint[:8]}... -> {output_mint[:8]}...")
            logger.info(
                f"Quote: in={colors['GREEN']}{quote.in_amount}{colors['RESET']} "
                f"out={colors['GREEN']}{quote.out_amount}{colors['RESET']} "
                f"impact={quote.price_impact_pct:.4f}%"
            )

            swap_response = await self.jupiter.get_swap_transaction(
                quote,
                str(self.wallet.pubkey()),
                compute_unit_price_micro_lamports=SWAP_COMPUTE_UNIT_PRICE,
                extra_params=self.config.quote_extra_params
            )
            if swap_response is None:
                raise QuoteUnavailable("No swap transaction returned")

            try:
                unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_response.swap_transaction))
                signed = VersionedTransaction(unsigned.message, [self.wallet])
            except Exception as e:
                raise SigningFailed(f"Failed to sign swap transaction: {e}") from e

            if self.config.tx_simulate:
                await BundleSubmitter(self.relay, solana, simulate=True).submit_and_confirm([signed], self.wallet)
                return None

            start_time = time.monotonic()
            signature = await solana.send_versioned_transaction(signed)
            if signature is None:
                raise SubmissionFailed("Swap transaction was not accepted by RPC")
            logger.info(f"Sent: {colors['CYAN']}{signature}{colors['RESET']}")

            if await solana.confirm_transaction(signature):
                logger.info(f"Confirmed in {time.monotonic() - start_time:.2f}s")
            else:
                logger.warning(f"{colors['RED']}Transaction not confirmed:{colors['RESET']} {signature}")
            return signature
        finally:
            await solana.close()


class OpportunityOrchestrator:
    """
    Periodic loop dispatching one independent arbitrage attempt per tick.

    Ticks never wait on earlier attempts; each attempt runs in its own task
    with its own execution id. stop() ends the loop, wait_in_flight() lets
    running attempts finish on their own.
    """

    def __init__(
        self,
        trader: Trader,
        target_mint: str,
        amount_in: int,
        interval: float = 1.0,
        partner_fee: float = 0.0,
        wait_for_confirmation: bool = False
    ):
        self.trader = trader
        self.target_mint = target_mint
        self.amount_in = amount_in
        self.interval = interval
        self.partner_fee = partner_fee
        self.wait_for_confirmation = wait_for_confirmation
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _run_attempt(self, execution_id: str):
        execution_id_var.set(execution_id)
        try:
            await self.trader.run_attempt(
                self.target_mint,
                self.amount_in,
                partner_fee=self.partner_fee,
                wait_for_confirmation=self.wait_for_confirmation
            )
        except ConfirmationTimeout as e:
            logger.warning(f"{colors['YELLOW']}{e}{colors['RESET']}")
        except ArbitrageError as e:
            logger.warning(f"{colors['RED']}{type(e).__name__}:{colors['RESET']} {e}")
        except Exception as e:
            logger.error(f"Unexpected error in arbitrage attempt: {e}", exc_info=True)

    def dispatch(self) -> asyncio.Task:
        """Start one attempt in the background and return its task."""
        execution_id = str(uuid.uuid4())
        task = asyncio.create_task(self._run_attempt(execution_id), name=f"arb-{execution_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def stop(self):
        self._stop_event.set()

    async def run(self, max_ticks: Optional[int] = None):
        """Dispatch an attempt every `interval` seconds until stop() (or max_ticks)."""
        logger.info(
            f"Starting arbitrage loop: mint={colors['CYAN']}{self.target_mint}{colors['RESET']} "
            f"amount_in={colors['GREEN']}{self.amount_in}{colors['RESET']} interval={self.interval}s"
        )
        ticks = 0
        while not self._stop_event.is_set():
            self.dispatch()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def wait_in_flight(self) -> List[asyncio.Task]:
        """Wait for every running attempt to finish on its own."""
        tasks = list(self._tasks)
        if tasks:
            logger.info(f"Waiting for {len(tasks)} in-flight attempt(s)")
            await asyncio.gather(*tasks, return_exceptions=True)
        return tasks
