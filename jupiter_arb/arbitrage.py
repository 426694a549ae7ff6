"""
Round-trip arbitrage evaluation: native -> target -> native.

ProfitCalculator quotes both legs sequentially, discounts each leg's output
by a decay factor and nets out swap and partner fees. merge_quotes folds the
two legs into one synthetic quote the swap-instructions endpoint can turn
into a single instruction plan.
"""
import dataclasses
import logging
import math
from decimal import Decimal, ROUND_DOWN
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .dex import VenueSet
from .errors import QuoteUnavailable, UnsupportedDirection
from .jupiter_client import JupiterClient, JupiterQuote
from .utils import NATIVE_MINT

logger = logging.getLogger(__name__)


def clamp_decay(value: float) -> float:
    """Decay must lie in (0, 1]; anything else means 'no decay' (1.0)."""
    if not (0.0 < value <= 1.0):
        return 1.0
    return value


def apply_decay(quote: JupiterQuote, decay: float) -> JupiterQuote:
    """
    Scale out_amount and other_amount_threshold by the clamped decay,
    truncating toward zero. Returns a new quote.
    """
    decay = clamp_decay(decay)
    if decay == 1.0:
        return quote
    factor = Decimal(str(decay))

    def scale(amount: int) -> int:
        return int((Decimal(amount) * factor).to_integral_value(rounding=ROUND_DOWN))

    return dataclasses.replace(
        quote,
        out_amount=scale(quote.out_amount),
        other_amount_threshold=scale(quote.other_amount_threshold),
    )


@dataclass
class ArbitrageAttempt:
    """One evaluation cycle, created per orchestrator tick and never persisted."""
    execution_id: str
    target_mint: str
    amount_in: int
    min_profit: int
    partner_fee: float
    buy_quote: Optional[JupiterQuote] = None
    sell_quote: Optional[JupiterQuote] = None
    profit: Optional[int] = None
    status: str = "evaluating"  # evaluating, skipped, submitted, failed
    transaction_ids: List[str] = field(default_factory=list)


class ProfitCalculator:
    """Quotes a round trip and estimates its signed profit in native units."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        buy_decay: float = 1.0,
        sell_decay: float = 1.0,
        slippage_bps: int = 0,
        only_direct_routes: bool = True,
        extra_params: Optional[Dict[str, str]] = None
    ):
        self.jupiter = jupiter_client
        self.buy_decay = clamp_decay(buy_decay)
        self.sell_decay = clamp_decay(sell_decay)
        self.slippage_bps = slippage_bps
        self.only_direct_routes = only_direct_routes
        self.extra_params = extra_params

    async def _quote(self, input_mint: str, output_mint: str, amount: int, dexes: VenueSet, leg: str) -> JupiterQuote:
        quote = await self.jupiter.get_quote(
            input_mint,
            output_mint,
            amount,
            slippage_bps=self.slippage_bps,
            dexes=dexes,
            only_direct_routes=self.only_direct_routes,
            extra_params=self.extra_params
        )
        if quote is None:
            raise QuoteUnavailable(f"No {leg} quote for {input_mint[:8]}... -> {output_mint[:8]}... amount={amount}")
        return quote

    async def evaluate(
        self,
        amount_in: int,
        token_in: str,
        token_out: str,
        dexes: VenueSet = VenueSet.ALL,
        partner_fee: float = 0.0
    ) -> Tuple[int, JupiterQuote, JupiterQuote]:
        """
        Quote native -> token_out -> native and compute the profit.

        profit = sell.out_amount - amount_in - buy-leg native fees
                 - floor(amount_in * partner_fee)

        Only buy-leg fees are netted; sell-leg fees are left out on purpose
        (known approximation).

        Returns:
            (profit, buy_quote, sell_quote) with both quotes already decayed

        Raises:
            UnsupportedDirection: token_in is not the native mint
            QuoteUnavailable: either leg could not be quoted
        """
        if token_in != NATIVE_MINT:
            raise UnsupportedDirection("Only support swap from native mint")

        buy_quote = await self._quote(token_in, token_out, amount_in, dexes, "buy")
        buy_quote = apply_decay(buy_quote, self.buy_decay)
        logger.debug(
            f"buy quote: out={buy_quote.out_amount} threshold={buy_quote.other_amount_threshold} "
            f"(decay {self.buy_decay})"
        )

        sell_quote = await self._quote(token_out, token_in, buy_quote.out_amount, dexes, "sell")
        sell_quote = apply_decay(sell_quote, self.sell_decay)
        logger.debug(
            f"sell quote: out={sell_quote.out_amount} threshold={sell_quote.other_amount_threshold} "
            f"(decay {self.sell_decay})"
        )

        fee_amount = buy_quote.fee_total(NATIVE_MINT)
        logger.debug(f"swap fee amount (native only, buy leg): {fee_amount}")

        partner_fee_amount = math.floor(Decimal(amount_in) * Decimal(str(partner_fee)))
        profit = sell_quote.out_amount - amount_in - fee_amount - partner_fee_amount
        return profit, buy_quote, sell_quote


def merge_quotes(
    buy_quote: JupiterQuote,
    sell_quote: JupiterQuote,
    amount_in: int,
    tip_lamports: int
) -> JupiterQuote:
    """
    Fold two leg quotes into one round-trip quote.

    The merged quote demands principal + tip back by construction: out_amount
    and other_amount_threshold are both amount_in + tip_lamports, regardless
    of what the legs quoted. Price impact is zeroed and the route plan is the
    buy hops followed by the sell hops.
    """
    return dataclasses.replace(
        buy_quote,
        output_mint=sell_quote.output_mint,
        out_amount=amount_in + tip_lamports,
        other_amount_threshold=amount_in + tip_lamports,
        price_impact_pct=0.0,
        route_plan=list(buy_quote.route_plan) + list(sell_quote.route_plan),
        raw={k: v for k, v in buy_quote.raw.items() if k not in ("routePlan", "outputMint")},
    )
