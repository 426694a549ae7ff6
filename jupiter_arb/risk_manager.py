"""
Risk & tip management.
Decides whether an evaluated round trip is worth executing and how much of
the profit goes to the relay as a tip.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .utils import get_terminal_colors, lamports_to_sol, ui_amount_to_amount, NATIVE_DECIMALS

colors = get_terminal_colors()
logger = logging.getLogger(__name__)


@dataclass
class RiskConfig:
    """Risk management configuration.

    All amounts are in lamports.
    """
    min_profit_lamports: int
    max_tip_lamports: int  # upper bound for a single tip
    tip_ratio: float = 0.5  # share of profit paid as tip

    @classmethod
    def from_sol(cls, min_profit_sol: float, max_tip_sol: float, tip_ratio: float = 0.5) -> "RiskConfig":
        return cls(
            min_profit_lamports=ui_amount_to_amount(min_profit_sol, NATIVE_DECIMALS),
            max_tip_lamports=ui_amount_to_amount(max_tip_sol, NATIVE_DECIMALS),
            tip_ratio=tip_ratio
        )


class RiskManager:
    """Profit gating and tip sizing for arbitrage attempts."""

    def __init__(self, config: RiskConfig):
        self.config = config

    def should_execute(self, profit: int) -> Tuple[bool, Optional[str]]:
        """
        Check if an evaluated profit clears the threshold.

        Returns:
            (execute: bool, reason: Optional[str])
        """
        if profit < self.config.min_profit_lamports:
            return False, (f"Profit too low: {lamports_to_sol(profit)} SOL < "
                           f"{lamports_to_sol(self.config.min_profit_lamports)} SOL")
        return True, None

    def tip_for_profit(self, profit: int) -> int:
        """
        Tip in lamports for a given profit.

        Half the profit by default (truncated), capped at
        max_tip_lamports. Returns 0 when there is nothing to tip.
        """
        if profit <= 0:
            return 0
        tip = int(profit * self.config.tip_ratio)
        if tip > self.config.max_tip_lamports:
            logger.debug(
                f"{colors['DIM']}Tip {tip} capped at {self.config.max_tip_lamports} lamports{colors['RESET']}"
            )
            tip = self.config.max_tip_lamports
        return max(tip, 0)
