"""
Instruction assembly for a round-trip swap transaction.
"""
import base64
import logging
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from .jupiter_client import JupiterSwapInstructionsResponse, SwapInstruction
from .utils import get_terminal_colors, lamports_to_sol

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


def to_solana_instruction(swap_instr: SwapInstruction) -> Instruction:
    """
    Convert a SwapInstruction from Jupiter API to a solders Instruction.

    Raises:
        ValueError: data is not valid base64, or a pubkey is malformed
    """
    program_id = Pubkey.from_string(swap_instr.program_id)

    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(account_meta.pubkey),
            is_signer=account_meta.is_signer,
            is_writable=account_meta.is_writable
        )
        for account_meta in swap_instr.accounts
    ]

    try:
        data = base64.b64decode(swap_instr.data, validate=True)
    except Exception as e:
        raise ValueError(f"Failed to decode instruction data from base64: {e}") from e

    return Instruction(program_id=program_id, accounts=accounts, data=data)


def get_tip_instruction(from_pubkey: Pubkey, tip_account: Pubkey, tip_lamports: int) -> Instruction:
    """System transfer paying the relay tip."""
    logger.info(
        f"tip account: {colors['CYAN']}{tip_account}{colors['RESET']}, "
        f"tip(sol): {colors['YELLOW']}{lamports_to_sol(tip_lamports)}{colors['RESET']}, "
        f"lamports: {tip_lamports}"
    )
    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=tip_account, lamports=tip_lamports))


def build_instructions(
    swap_instructions: JupiterSwapInstructionsResponse,
    tip_instruction: Instruction
) -> List[Instruction]:
    """
    Assemble the instruction plan in its fixed stage order:

        compute budget, setup, swap, tip, cleanup (if any), other

    The tip always sits after the swap and before cleanup.
    """
    instructions: List[Instruction] = []
    instructions.extend(to_solana_instruction(i) for i in swap_instructions.compute_budget_instructions)
    instructions.extend(to_solana_instruction(i) for i in swap_instructions.setup_instructions)
    instructions.append(to_solana_instruction(swap_instructions.swap_instruction))
    instructions.append(tip_instruction)
    if swap_instructions.cleanup_instruction is not None:
        instructions.append(to_solana_instruction(swap_instructions.cleanup_instruction))
    instructions.extend(to_solana_instruction(i) for i in swap_instructions.other_instructions)

    logger.debug(
        f"Instruction plan: {len(swap_instructions.compute_budget_instructions)} compute-budget, "
        f"{len(swap_instructions.setup_instructions)} setup, 1 swap, 1 tip, "
        f"{1 if swap_instructions.cleanup_instruction else 0} cleanup, "
        f"{len(swap_instructions.other_instructions)} other"
    )
    return instructions
