"""
Utility functions for the Jupiter arbitrage bot.
"""
import logging
import sys
from contextvars import ContextVar
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

NATIVE_MINT = "So11111111111111111111111111111111111111112"
NATIVE_DECIMALS = 9


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.
    
    Returns empty strings if output is not a TTY (e.g., redirected to file).
    This ensures log files remain clean without ANSI escape codes.
    
    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts, counts
        'CYAN': '\033[96m' if use_color else '',    # Mints, bundle ids, signatures
        'YELLOW': '\033[93m' if use_color else '',  # Profit, tip, thresholds
        'RED': '\033[91m' if use_color else '',     # Failures, negative profit
        'DIM': '\033[90m' if use_color else '',     # Skips and other low-importance lines
        'RESET': '\033[0m' if use_color else ''
    }


def ui_amount_to_amount(ui_amount: float, decimals: int) -> int:
    """Convert a UI amount (e.g. 0.5 SOL) to smallest units, rounding to nearest."""
    scaled = Decimal(str(ui_amount)) * (Decimal(10) ** decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def amount_to_ui_amount(amount: int, decimals: int) -> float:
    """Convert smallest units to a UI amount. Sign is preserved."""
    return amount / (10 ** decimals)


def lamports_to_sol(lamports: int) -> float:
    return amount_to_ui_amount(lamports, NATIVE_DECIMALS)


# Execution id of the arbitrage attempt running in the current task
execution_id_var: ContextVar[Optional[str]] = ContextVar("execution_id", default=None)


class ExecutionIdFilter(logging.Filter):
    """Prefix records emitted inside an attempt with `[<execution_id>]`."""

    def filter(self, record: logging.LogRecord) -> bool:
        execution_id = execution_id_var.get()
        if execution_id and not getattr(record, "execution_id", None):
            record.execution_id = execution_id
            record.msg = f"[{execution_id}] {record.msg}"
        return True
