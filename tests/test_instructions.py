"""
Tests for instructions.py
"""
import base64

import pytest
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from jupiter_arb.instructions import build_instructions, get_tip_instruction, to_solana_instruction
from jupiter_arb.jupiter_client import SwapAccountMeta, SwapInstruction


@pytest.fixture
def tip_instruction():
    return get_tip_instruction(Pubkey.new_unique(), Pubkey.new_unique(), 5_000)


class TestToSolanaInstruction:
    """Tests for SwapInstruction -> solders Instruction conversion."""

    def test_converts_accounts_and_data(self):
        """Test program id, account flags and decoded data are carried over."""
        program_id = Pubkey.new_unique()
        signer = Pubkey.new_unique()
        swap_instr = SwapInstruction(
            program_id=str(program_id),
            accounts=[SwapAccountMeta(pubkey=str(signer), is_signer=True, is_writable=False)],
            data=base64.b64encode(b"hello").decode()
        )

        instruction = to_solana_instruction(swap_instr)

        assert instruction.program_id == program_id
        assert instruction.accounts[0].pubkey == signer
        assert instruction.accounts[0].is_signer is True
        assert instruction.accounts[0].is_writable is False
        assert bytes(instruction.data) == b"hello"

    def test_invalid_base64_raises(self):
        """Test malformed instruction data raises ValueError."""
        swap_instr = SwapInstruction(program_id=str(Pubkey.new_unique()), accounts=[], data="not base64!!")
        with pytest.raises(ValueError, match="base64"):
            to_solana_instruction(swap_instr)


class TestTipInstruction:
    """Tests for get_tip_instruction."""

    def test_is_system_transfer_to_tip_account(self):
        """Test the tip is a system-program transfer from payer to tip account."""
        payer, tip_account = Pubkey.new_unique(), Pubkey.new_unique()
        instruction = get_tip_instruction(payer, tip_account, 12_345)

        assert instruction.program_id == SYSTEM_PROGRAM_ID
        assert instruction.accounts[0].pubkey == payer
        assert instruction.accounts[1].pubkey == tip_account
        # Transfer data: u32 instruction index (2) + u64 lamports
        assert bytes(instruction.data)[4:] == (12_345).to_bytes(8, "little")


class TestBuildInstructions:
    """Tests for instruction stage ordering."""

    @pytest.mark.parametrize("compute_budget", [0, 2])
    @pytest.mark.parametrize("setup", [0, 1, 3])
    @pytest.mark.parametrize("cleanup", [True, False])
    @pytest.mark.parametrize("other", [0, 2])
    def test_stage_order(self, make_swap_instructions, tip_instruction, compute_budget, setup, cleanup, other):
        """Test tip sits right after swap and before cleanup for every stage combination."""
        response = make_swap_instructions(compute_budget=compute_budget, setup=setup, cleanup=cleanup, other=other)

        instructions = build_instructions(response, tip_instruction)

        expected = (
            [to_solana_instruction(i) for i in response.compute_budget_instructions]
            + [to_solana_instruction(i) for i in response.setup_instructions]
            + [to_solana_instruction(response.swap_instruction), tip_instruction]
            + ([to_solana_instruction(response.cleanup_instruction)] if cleanup else [])
            + [to_solana_instruction(i) for i in response.other_instructions]
        )
        assert instructions == expected

        swap_index = compute_budget + setup
        assert instructions[swap_index + 1] == tip_instruction
        if cleanup:
            assert instructions[swap_index + 2] == to_solana_instruction(response.cleanup_instruction)

    def test_idempotent(self, make_swap_instructions, tip_instruction):
        """Test identical inputs produce identical ordered output."""
        response = make_swap_instructions(compute_budget=2, setup=2, cleanup=True, other=1)
        assert build_instructions(response, tip_instruction) == build_instructions(response, tip_instruction)
