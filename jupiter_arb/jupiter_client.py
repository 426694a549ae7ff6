"""
Jupiter API client for quotes, swap instructions and swap transactions.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .dex import VenueSet

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for Jupiter API requests.

    A rate of 0 disables limiting entirely (default for arbitrage, where a
    stale sell-leg quote is worse than a 429).
    """

    def __init__(self, requests_per_second: float = 0.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made (respecting rate limit)."""
        if self.min_interval <= 0:
            return
        async with self._lock:
            current_time = time.monotonic()
            time_since_last = current_time - self._last_request_time

            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)

            self._last_request_time = time.monotonic()


@dataclass(frozen=True)
class JupiterQuote:
    """
    Quote response from Jupiter API.

    Frozen: amounts change only through dataclasses.replace() in the decay
    and merge steps, which produce new quotes.
    """
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int
    price_impact_pct: float
    route_plan: List[Dict[str, Any]]
    slippage_bps: int = 0
    swap_mode: str = "ExactIn"
    dexes: Optional[str] = None
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def fee_total(self, fee_mint: str) -> int:
        """Sum of route-hop fee amounts charged in `fee_mint`."""
        total = 0
        for hop in self.route_plan:
            swap_info = hop.get('swapInfo', {}) if isinstance(hop, dict) else {}
            if swap_info.get('feeMint') == fee_mint:
                total += int(swap_info.get('feeAmount', 0))
        return total

    def to_quote_response(self) -> Dict[str, Any]:
        """Serialize back to the API's quoteResponse shape."""
        payload = dict(self.raw)
        payload.update({
            "inputMint": self.input_mint,
            "inAmount": str(self.in_amount),
            "outputMint": self.output_mint,
            "outAmount": str(self.out_amount),
            "otherAmountThreshold": str(self.other_amount_threshold),
            "swapMode": self.swap_mode,
            "slippageBps": self.slippage_bps,
            "priceImpactPct": str(self.price_impact_pct),
            "routePlan": self.route_plan,
        })
        if self.context_slot is not None:
            payload["contextSlot"] = self.context_slot
        return payload

    @classmethod
    def from_api(cls, data: Dict[str, Any], params: Dict[str, Any], time_taken: Optional[float] = None) -> "JupiterQuote":
        out_amount = int(data.get("outAmount", 0))
        return cls(
            input_mint=data.get("inputMint", params["inputMint"]),
            output_mint=data.get("outputMint", params["outputMint"]),
            in_amount=int(data.get("inAmount", params["amount"])),
            out_amount=out_amount,
            other_amount_threshold=int(data.get("otherAmountThreshold", out_amount)),
            price_impact_pct=float(data.get("priceImpactPct", 0) or 0),
            route_plan=data.get("routePlan", []),
            slippage_bps=int(data.get("slippageBps", params.get("slippageBps", 0))),
            swap_mode=data.get("swapMode", "ExactIn"),
            dexes=params.get("dexes"),
            context_slot=data.get("contextSlot"),
            time_taken=time_taken,
            raw=data
        )


@dataclass
class JupiterSwapResponse:
    """Swap transaction response from Jupiter API."""
    swap_transaction: str  # base64 serialized VersionedTransaction
    last_valid_block_height: int
    prioritization_fee_lamports: Optional[int] = None


@dataclass
class SwapAccountMeta:
    """Account metadata for swap instruction."""
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class SwapInstruction:
    """Single instruction from Jupiter API (data is base64)."""
    program_id: str
    accounts: List[SwapAccountMeta]
    data: str


@dataclass
class JupiterSwapInstructionsResponse:
    """Swap instructions response from Jupiter API."""
    compute_budget_instructions: List[SwapInstruction]
    setup_instructions: List[SwapInstruction]
    swap_instruction: SwapInstruction
    cleanup_instruction: Optional[SwapInstruction]
    other_instructions: List[SwapInstruction]
    address_lookup_table_addresses: List[str]
    last_valid_block_height: int = 0


def _parse_accounts(accounts_data: List[Any]) -> List[SwapAccountMeta]:
    """
    Parse accounts from Jupiter API response.

    Only the object form ({"pubkey", "isSigner", "isWritable"}) carries enough
    information to build an instruction; bare pubkey strings are rejected.
    """
    parsed_accounts = []
    for account_data in accounts_data or []:
        if not isinstance(account_data, dict):
            raise ValueError(f"Unexpected account format: {type(account_data).__name__}")
        parsed_accounts.append(SwapAccountMeta(
            pubkey=account_data.get("pubkey", ""),
            is_signer=bool(account_data.get("isSigner", False)),
            is_writable=bool(account_data.get("isWritable", False))
        ))
    return parsed_accounts


def _parse_instruction(instr_data: Dict[str, Any]) -> SwapInstruction:
    return SwapInstruction(
        program_id=instr_data.get("programId", ""),
        accounts=_parse_accounts(instr_data.get("accounts", [])),
        data=instr_data.get("data", "")
    )


def parse_swap_instructions(data: Dict[str, Any]) -> JupiterSwapInstructionsResponse:
    """Build a JupiterSwapInstructionsResponse from the /swap-instructions JSON body."""
    if "swapInstruction" not in data:
        raise ValueError("Response is missing swapInstruction")

    cleanup_data = data.get("cleanupInstruction")

    # Address lookup tables: accept both key spellings, dedupe preserving order
    raw_alts = data.get("addressLookupTableAddresses") or data.get("addressLookupTables") or []
    seen = set()
    alt_addresses = [a for a in raw_alts if isinstance(a, str) and not (a in seen or seen.add(a))]

    return JupiterSwapInstructionsResponse(
        compute_budget_instructions=[_parse_instruction(i) for i in data.get("computeBudgetInstructions") or []],
        setup_instructions=[_parse_instruction(i) for i in data.get("setupInstructions") or []],
        swap_instruction=_parse_instruction(data["swapInstruction"]),
        cleanup_instruction=_parse_instruction(cleanup_data) if cleanup_data else None,
        other_instructions=[_parse_instruction(i) for i in data.get("otherInstructions") or []],
        address_lookup_table_addresses=alt_addresses,
        last_valid_block_height=int(data.get("lastValidBlockHeight", 0) or 0)
    )


class JupiterClient:
    """Client for the Jupiter swap API (quote, swap-instructions, swap)."""

    def __init__(
        self,
        api_url: str = "https://quote-api.jup.ag/v6",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 0.0,
        max_retries_on_429: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Base URL; /quote, /swap-instructions and /swap are appended.
            api_key: Optional key sent in the x-api-key header.
            timeout: Request timeout in seconds.
            requests_per_second: Rate limit (0 disables limiting).
            max_retries_on_429: Maximum retries on 429 rate limit error.
            backoff_base_seconds: Base backoff time for 429 retries.
            backoff_max_seconds: Maximum backoff time for 429 retries.
        """
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)
        self.max_retries_on_429 = max_retries_on_429
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

        headers = {}
        if api_key:
            headers["x-api-key"] = api_key
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    def _backoff_seconds(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return min(self.backoff_base_seconds * (2 ** attempt), self.backoff_max_seconds)

    async def _request(self, method: str, url: str, **kwargs) -> Optional[Dict[str, Any]]:
        """
        Perform a request, retrying 429 responses with backoff.

        Returns:
            Decoded JSON body, or None on any failure (already logged).
        """
        for attempt in range(self.max_retries_on_429 + 1):
            await self.rate_limiter.acquire()
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 429 and attempt < self.max_retries_on_429:
                    wait_time = self._backoff_seconds(e.response, attempt)
                    logger.warning(
                        f"Rate limit exceeded (429) from {url}, "
                        f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries_on_429})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                if status_code == 404:
                    logger.debug(f"No route from {url} (404)")
                else:
                    logger.warning(f"Jupiter request failed: {url} {status_code} - {e.response.text}")
                return None
            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.NetworkError) as e:
                logger.warning(f"Connection error for {url}: {e}")
                return None
            except Exception as e:
                logger.error(f"Unexpected error calling {url}: {e}")
                return None
        return None

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 0,
        dexes: Optional[VenueSet] = None,
        only_direct_routes: bool = False,
        extra_params: Optional[Dict[str, str]] = None
    ) -> Optional[JupiterQuote]:
        """
        Get a quote for swapping tokens.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest unit (lamports for SOL)
            slippage_bps: Slippage in basis points (1 bps = 0.01%)
            dexes: Restrict routing to these venues
            only_direct_routes: Only return single-hop routes
            extra_params: Additional query args (e.g. api_key)

        Returns:
            JupiterQuote or None if the request failed or found no route
        """
        params: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "onlyDirectRoutes": str(only_direct_routes).lower(),
        }
        if dexes is not None and len(dexes) > 0:
            params["dexes"] = dexes.to_param()
        if extra_params:
            params.update(extra_params)

        start_time = time.monotonic()
        data = await self._request("GET", f"{self.api_url}/quote", params=params)
        if data is None:
            return None

        try:
            quote = JupiterQuote.from_api(data, params, time_taken=time.monotonic() - start_time)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed quote response: {e}")
            return None

        logger.debug(
            f"Quote: {input_mint[:8]}... -> {output_mint[:8]}... "
            f"in={quote.in_amount} out={quote.out_amount} "
            f"threshold={quote.other_amount_threshold} impact={quote.price_impact_pct:.4f}"
        )
        return quote

    async def get_swap_instructions(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        dynamic_compute_unit_limit: bool = True,
        use_shared_accounts: bool = False,
        wrap_and_unwrap_sol: bool = True,
        extra_params: Optional[Dict[str, str]] = None
    ) -> Optional[JupiterSwapInstructionsResponse]:
        """
        Get swap instructions (not a built transaction) for a quote.

        Args:
            quote: JupiterQuote (may be a merged round-trip quote)
            user_public_key: Signer's public key (base58)
            dynamic_compute_unit_limit: Let Jupiter size the compute-unit limit
            use_shared_accounts: Shared intermediate accounts (off for round trips)
            wrap_and_unwrap_sol: Auto wrap/unwrap SOL
            extra_params: Additional query args (e.g. api_key)

        Returns:
            JupiterSwapInstructionsResponse or None if failed
        """
        payload = {
            "quoteResponse": quote.to_quote_response(),
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
            "dynamicComputeUnitLimit": dynamic_compute_unit_limit,
            "useSharedAccounts": use_shared_accounts,
        }

        data = await self._request(
            "POST", f"{self.api_url}/swap-instructions", json=payload, params=extra_params or None
        )
        if data is None:
            return None

        try:
            response = parse_swap_instructions(data)
        except ValueError as e:
            logger.error(f"Malformed swap-instructions response: {e}")
            return None

        logger.debug(
            f"Swap instructions: {len(response.compute_budget_instructions)} compute-budget, "
            f"{len(response.setup_instructions)} setup, 1 swap, "
            f"{1 if response.cleanup_instruction else 0} cleanup, "
            f"{len(response.other_instructions)} other, "
            f"{len(response.address_lookup_table_addresses)} ALTs"
        )
        return response

    async def get_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        compute_unit_price_micro_lamports: Optional[int] = None,
        wrap_and_unwrap_sol: bool = True,
        extra_params: Optional[Dict[str, str]] = None
    ) -> Optional[JupiterSwapResponse]:
        """
        Get a ready-built (unsigned) swap transaction from Jupiter API.

        Returns:
            JupiterSwapResponse or None if swap transaction build fails
        """
        payload: Dict[str, Any] = {
            "quoteResponse": quote.to_quote_response(),
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
        }
        if compute_unit_price_micro_lamports is not None:
            payload["computeUnitPriceMicroLamports"] = compute_unit_price_micro_lamports

        data = await self._request("POST", f"{self.api_url}/swap", json=payload, params=extra_params or None)
        if data is None:
            return None

        swap_transaction = data.get("swapTransaction")
        if not swap_transaction:
            logger.error("Swap response is missing swapTransaction")
            return None

        return JupiterSwapResponse(
            swap_transaction=swap_transaction,
            last_valid_block_height=int(data.get("lastValidBlockHeight", 0) or 0),
            prioritization_fee_lamports=data.get("prioritizationFeeLamports")
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
