"""
Tests for trader.py (attempt pipeline, one-shot swap, orchestrator loop)
"""
import asyncio
import base64

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from solders.hash import Hash
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from jupiter_arb.errors import CompilationFailed, ConfirmationTimeout, QuoteUnavailable, SubmissionFailed
from jupiter_arb.jupiter_client import JupiterSwapResponse
from jupiter_arb.risk_manager import RiskConfig, RiskManager
from jupiter_arb.trader import OpportunityOrchestrator, SwapDirection, Trader
from jupiter_arb.utils import execution_id_var


@pytest.fixture
def risk_manager():
    return RiskManager(RiskConfig(min_profit_lamports=100_000, max_tip_lamports=100_000_000))


@pytest.fixture
def calculator():
    return AsyncMock()


@pytest.fixture
def trader(bot_config, mock_keypair, mock_jupiter_client, mock_relay, risk_manager, calculator, mock_solana_client):
    """Trader wired to mocks; every attempt gets mock_solana_client."""
    return Trader(
        bot_config,
        mock_keypair,
        mock_jupiter_client,
        mock_relay,
        risk_manager,
        calculator,
        solana_factory=MagicMock(return_value=mock_solana_client)
    )


@pytest.fixture
def legs(make_quote, sol_mint, usdc_mint):
    buy = make_quote(sol_mint, usdc_mint, 1_000_000_000, 2_000_000, route_plan=[{"hop": 1}])
    sell = make_quote(usdc_mint, sol_mint, 2_000_000, 1_004_000_000, route_plan=[{"hop": 2}])
    return buy, sell


class TestRunAttempt:
    """Tests for Trader.run_attempt."""

    @pytest.mark.asyncio
    async def test_unprofitable_attempt_is_skipped(
        self, trader, calculator, legs, mock_jupiter_client, mock_relay, mock_solana_client, usdc_mint
    ):
        """Test profit below the threshold stops before any instruction or relay call."""
        calculator.evaluate.return_value = (50_000, *legs)

        attempt = await trader.run_attempt(usdc_mint, 1_000_000_000)

        assert attempt.status == "skipped"
        assert attempt.profit == 50_000
        mock_jupiter_client.get_swap_instructions.assert_not_awaited()
        mock_relay.send_bundle.assert_not_awaited()
        mock_solana_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_profitable_attempt_submits_bundle(
        self, trader, calculator, legs, mock_jupiter_client, mock_relay, mock_keypair,
        make_swap_instructions, sol_mint, usdc_mint
    ):
        """Test a profitable attempt merges, assembles, compiles and submits."""
        calculator.evaluate.return_value = (4_000_000, *legs)
        mock_jupiter_client.get_swap_instructions.return_value = make_swap_instructions(alts=["alt1"])

        with patch("jupiter_arb.trader.TransactionCompiler") as compiler_cls, \
                patch("jupiter_arb.trader.BundleSubmitter") as submitter_cls:
            compiler_cls.return_value.compile = AsyncMock(return_value="compiled-tx")
            submitter_cls.return_value.submit_and_confirm = AsyncMock(return_value=["sig-1"])

            attempt = await trader.run_attempt(usdc_mint, 1_000_000_000, wait_for_confirmation=True)

        assert attempt.status == "submitted"
        assert attempt.transaction_ids == ["sig-1"]

        merged = mock_jupiter_client.get_swap_instructions.await_args.args[0]
        assert merged.input_mint == sol_mint
        assert merged.output_mint == sol_mint
        assert merged.out_amount == 1_000_000_000 + 2_000_000

        instructions, alts, payer = compiler_cls.return_value.compile.await_args.args
        assert alts == ["alt1"]
        assert payer == mock_keypair
        # compute budget, setup, swap, tip, cleanup
        assert len(instructions) == 5

        submit_args = submitter_cls.return_value.submit_and_confirm.await_args
        assert submit_args.args == (["compiled-tx"], mock_keypair)
        assert submit_args.kwargs["wait_for_confirmation"] is True

    @pytest.mark.asyncio
    async def test_missing_swap_instructions(self, trader, calculator, legs, mock_jupiter_client, mock_solana_client, usdc_mint):
        """Test a failed swap-instructions call aborts with QuoteUnavailable."""
        calculator.evaluate.return_value = (4_000_000, *legs)
        mock_jupiter_client.get_swap_instructions.return_value = None

        with pytest.raises(QuoteUnavailable):
            await trader.run_attempt(usdc_mint, 1_000_000_000)

        mock_solana_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tip_account_failure_aborts(
        self, trader, calculator, legs, mock_jupiter_client, mock_relay, mock_solana_client, make_swap_instructions, usdc_mint
    ):
        """Test a relay outage during tip account lookup aborts before compilation."""
        calculator.evaluate.return_value = (4_000_000, *legs)
        mock_jupiter_client.get_swap_instructions.return_value = make_swap_instructions()
        mock_relay.get_tip_account.side_effect = SubmissionFailed("Tip accounts unavailable: connection refused")

        with patch("jupiter_arb.trader.TransactionCompiler") as compiler_cls:
            with pytest.raises(SubmissionFailed):
                await trader.run_attempt(usdc_mint, 1_000_000_000)

        compiler_cls.assert_not_called()
        mock_relay.send_bundle.assert_not_awaited()
        mock_solana_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_compilation_failure_propagates(
        self, trader, calculator, legs, mock_jupiter_client, mock_relay, make_swap_instructions, usdc_mint
    ):
        """Test compile errors abort the attempt without submission."""
        calculator.evaluate.return_value = (4_000_000, *legs)
        mock_jupiter_client.get_swap_instructions.return_value = make_swap_instructions()

        with patch("jupiter_arb.trader.TransactionCompiler") as compiler_cls:
            compiler_cls.return_value.compile = AsyncMock(side_effect=CompilationFailed("Transaction too large"))
            with pytest.raises(CompilationFailed):
                await trader.run_attempt(usdc_mint, 1_000_000_000)

        mock_relay.send_bundle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fresh_rpc_client_per_attempt(self, trader, calculator, legs, bot_config, mock_keypair, usdc_mint):
        """Test each attempt opens its own RPC client on a configured endpoint."""
        calculator.evaluate.return_value = (0, *legs)

        await trader.run_attempt(usdc_mint, 1_000_000_000)
        await trader.run_attempt(usdc_mint, 1_000_000_000)

        assert trader.solana_factory.call_count == 2
        trader.solana_factory.assert_called_with(bot_config.rpc_endpoints[0], mock_keypair, None)


class TestSwap:
    """Tests for Trader.swap."""

    @pytest.fixture
    def unsigned_swap_tx(self, mock_keypair):
        message = MessageV0.try_compile(
            payer=mock_keypair.pubkey(),
            instructions=[transfer(TransferParams(from_pubkey=mock_keypair.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))],
            address_lookup_table_accounts=[],
            recent_blockhash=Hash.default()
        )
        tx = VersionedTransaction(message, [mock_keypair])
        return base64.b64encode(bytes(tx)).decode()

    @pytest.mark.asyncio
    async def test_buy_sends_signed_transaction(
        self, trader, mock_jupiter_client, mock_solana_client, make_quote, unsigned_swap_tx, sol_mint, usdc_mint
    ):
        """Test buy swaps native -> mint with UI amount converted to lamports."""
        mock_jupiter_client.get_quote.return_value = make_quote(sol_mint, usdc_mint, 500_000_000, 80_000_000)
        mock_jupiter_client.get_swap_transaction.return_value = JupiterSwapResponse(
            swap_transaction=unsigned_swap_tx, last_valid_block_height=100
        )
        mock_solana_client.send_versioned_transaction.return_value = "sig-swap"
        mock_solana_client.confirm_transaction.return_value = True

        signature = await trader.swap(usdc_mint, SwapDirection.BUY, 0.5)

        assert signature == "sig-swap"
        args = mock_jupiter_client.get_quote.await_args
        assert args.args == (sol_mint, usdc_mint, 500_000_000)
        assert args.kwargs["slippage_bps"] == 500
        assert args.kwargs["dexes"].to_param() == "Raydium,Meteora DLMM,Whirlpool"
        assert mock_jupiter_client.get_swap_transaction.await_args.kwargs["compute_unit_price_micro_lamports"] == 50_000
        mock_solana_client.get_mint_decimals.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_reads_mint_decimals(self, trader, mock_jupiter_client, mock_solana_client, sol_mint, usdc_mint):
        """Test sell uses the token mint's decimals for the input amount."""
        mock_solana_client.get_mint_decimals.return_value = 6
        mock_jupiter_client.get_quote.return_value = None

        with pytest.raises(QuoteUnavailable):
            await trader.swap(usdc_mint, SwapDirection.SELL, 12.5)

        assert mock_jupiter_client.get_quote.await_args.args == (usdc_mint, sol_mint, 12_500_000)
        mock_solana_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_failure(
        self, trader, mock_jupiter_client, mock_solana_client, make_quote, unsigned_swap_tx, sol_mint, usdc_mint
    ):
        """Test an RPC send returning no signature raises SubmissionFailed."""
        mock_jupiter_client.get_quote.return_value = make_quote(sol_mint, usdc_mint, 1, 1)
        mock_jupiter_client.get_swap_transaction.return_value = JupiterSwapResponse(
            swap_transaction=unsigned_swap_tx, last_valid_block_height=100
        )
        mock_solana_client.send_versioned_transaction.return_value = None

        with pytest.raises(SubmissionFailed):
            await trader.swap(usdc_mint, SwapDirection.BUY, 0.1)


class TestOpportunityOrchestrator:
    """Tests for the periodic dispatch loop."""

    @pytest.mark.asyncio
    async def test_ticks_do_not_wait_for_attempts(self, usdc_mint):
        """Test new attempts are dispatched while earlier ones are still running."""
        release = asyncio.Event()
        started = []

        async def slow_attempt(*args, **kwargs):
            started.append(execution_id_var.get())
            await release.wait()

        trader = MagicMock()
        trader.run_attempt = AsyncMock(side_effect=slow_attempt)
        orchestrator = OpportunityOrchestrator(trader, usdc_mint, 1_000, interval=0.01)

        await orchestrator.run(max_ticks=3)
        await asyncio.sleep(0.01)

        assert orchestrator.in_flight == 3
        assert len(started) == 3
        assert len(set(started)) == 3

        release.set()
        await orchestrator.wait_in_flight()
        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_attempt_failures_are_isolated(self, usdc_mint):
        """Test failing attempts are logged and never escape their task."""
        trader = MagicMock()
        trader.run_attempt = AsyncMock(side_effect=[
            QuoteUnavailable("no route"),
            ConfirmationTimeout("bundle-1", 5.0),
            RuntimeError("boom"),
            None,
        ])
        orchestrator = OpportunityOrchestrator(trader, usdc_mint, 1_000, interval=0.0)

        tasks = [orchestrator.dispatch() for _ in range(4)]
        await orchestrator.wait_in_flight()

        assert all(task.done() and task.exception() is None for task in tasks)
        assert trader.run_attempt.await_count == 4

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, usdc_mint):
        """Test stop() ends run() without waiting for the interval."""
        trader = MagicMock()
        trader.run_attempt = AsyncMock(return_value=None)
        orchestrator = OpportunityOrchestrator(trader, usdc_mint, 1_000, interval=60.0)

        loop_task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        orchestrator.stop()
        await asyncio.wait_for(loop_task, timeout=1.0)
        await orchestrator.wait_in_flight()

        assert trader.run_attempt.await_count == 1

    @pytest.mark.asyncio
    async def test_attempt_arguments(self, usdc_mint):
        """Test attempts receive the configured target, amount and options."""
        trader = MagicMock()
        trader.run_attempt = AsyncMock(return_value=None)
        orchestrator = OpportunityOrchestrator(
            trader, usdc_mint, 2_000, partner_fee=0.001, wait_for_confirmation=True
        )

        await orchestrator.dispatch()

        trader.run_attempt.assert_awaited_once_with(
            usdc_mint, 2_000, partner_fee=0.001, wait_for_confirmation=True
        )
