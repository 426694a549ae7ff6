"""
Pytest configuration and fixtures for Jupiter arbitrage bot tests.
"""
import base64

import pytest
from unittest.mock import AsyncMock
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from jupiter_arb.config import BotConfig
from jupiter_arb.jupiter_client import (
    JupiterQuote,
    JupiterSwapInstructionsResponse,
    SwapAccountMeta,
    SwapInstruction,
)


@pytest.fixture
def mock_keypair():
    """Create a keypair for testing."""
    return Keypair()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    client = AsyncMock()
    return client


@pytest.fixture
def mock_solana_client():
    """Create a mock SolanaClient for testing."""
    client = AsyncMock()
    return client


@pytest.fixture
def mock_relay():
    """Create a mock BlockEngineClient for testing."""
    relay = AsyncMock()
    relay.send_bundle.return_value = "bundle-1"
    relay.get_tip_account.return_value = Pubkey.new_unique()
    return relay


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def jup_mint():
    """JUP mint address."""
    return "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


@pytest.fixture
def bonk_mint():
    """BONK mint address."""
    return "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
def bot_config():
    """Minimal BotConfig with a single local RPC endpoint."""
    return BotConfig(rpc_endpoints=["http://localhost:8899"], bundle_poll_interval=0.01, bundle_timeout=0.1)


@pytest.fixture
def make_quote():
    """Factory for JupiterQuote objects."""
    def _make(input_mint, output_mint, in_amount, out_amount, route_plan=None, threshold=None):
        return JupiterQuote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=in_amount,
            out_amount=out_amount,
            other_amount_threshold=out_amount if threshold is None else threshold,
            price_impact_pct=0.01,
            route_plan=route_plan or [],
            raw={"inputMint": input_mint, "outputMint": output_mint, "routePlan": route_plan or []}
        )
    return _make


def make_swap_instruction(data: bytes = b"\x01") -> SwapInstruction:
    """SwapInstruction with a unique program id and one writable account."""
    return SwapInstruction(
        program_id=str(Pubkey.new_unique()),
        accounts=[SwapAccountMeta(pubkey=str(Pubkey.new_unique()), is_signer=False, is_writable=True)],
        data=base64.b64encode(data).decode()
    )


@pytest.fixture
def make_swap_instructions():
    """Factory for JupiterSwapInstructionsResponse with optional stages."""
    def _make(compute_budget=1, setup=1, cleanup=True, other=0, alts=None):
        return JupiterSwapInstructionsResponse(
            compute_budget_instructions=[make_swap_instruction(b"\x02cb") for _ in range(compute_budget)],
            setup_instructions=[make_swap_instruction(b"\x03setup") for _ in range(setup)],
            swap_instruction=make_swap_instruction(b"\x04swap"),
            cleanup_instruction=make_swap_instruction(b"\x05cleanup") if cleanup else None,
            other_instructions=[make_swap_instruction(b"\x06other") for _ in range(other)],
            address_lookup_table_addresses=alts or []
        )
    return _make
