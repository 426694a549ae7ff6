"""
Jito block-engine client: tip accounts, bundle submission and bundle status.
"""
import base64
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import SubmissionFailed

logger = logging.getLogger(__name__)

# Commitment levels at which a bundle counts as landed
LANDED_COMMITMENTS = ("confirmed", "finalized")


class BundleState(Enum):
    PENDING = "pending"
    LANDED = "landed"
    FAILED = "failed"


@dataclass
class BundleStatus:
    """Relay-reported status for one bundle."""
    bundle_id: str
    state: BundleState
    transaction_ids: List[str] = field(default_factory=list)
    slot: Optional[int] = None
    err: Any = None


def parse_bundle_status(bundle_id: str, entry: Optional[Dict[str, Any]]) -> BundleStatus:
    """
    Interpret one getBundleStatuses entry.

    A missing entry means the relay has not seen the bundle land yet. An
    entry with a non-Ok err is a failure; an Ok entry at confirmed or
    finalized commitment with transaction ids has landed.
    """
    if not entry:
        return BundleStatus(bundle_id=bundle_id, state=BundleState.PENDING)

    err = entry.get("err")
    transaction_ids = list(entry.get("transactions") or [])
    slot = entry.get("slot")

    if err is not None and err != {"Ok": None}:
        return BundleStatus(bundle_id, BundleState.FAILED, transaction_ids, slot, err)

    if entry.get("confirmation_status") in LANDED_COMMITMENTS and transaction_ids:
        return BundleStatus(bundle_id, BundleState.LANDED, transaction_ids, slot)

    return BundleStatus(bundle_id, BundleState.PENDING, transaction_ids, slot)


class BlockEngineClient:
    """JSON-RPC client for the Jito block engine bundles API."""

    def __init__(self, block_engine_url: str = "https://mainnet.block-engine.jito.wtf", timeout: float = 10.0):
        self.bundles_url = f"{block_engine_url.rstrip('/')}/api/v1/bundles"
        self.client = httpx.AsyncClient(timeout=timeout)
        self._tip_accounts: List[str] = []

    async def _rpc_call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Perform one JSON-RPC call.

        Raises:
            httpx.HTTPError: transport or HTTP status failure
            RuntimeError: the relay returned a JSON-RPC error object
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []}
        response = await self.client.post(self.bundles_url, json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise RuntimeError(f"{method} error: {data['error']}")
        return data.get("result")

    async def init_tip_accounts(self) -> List[str]:
        """Fetch and cache the relay's tip accounts."""
        accounts = await self._rpc_call("getTipAccounts")
        if not accounts:
            raise RuntimeError("Relay returned no tip accounts")
        self._tip_accounts = list(accounts)
        logger.info(f"Cached {len(self._tip_accounts)} tip accounts")
        return self._tip_accounts

    async def get_tip_account(self) -> Pubkey:
        """
        Random tip account, fetching the list on first use.

        Raises:
            SubmissionFailed: the tip accounts could not be fetched
        """
        if not self._tip_accounts:
            try:
                await self.init_tip_accounts()
            except (httpx.HTTPError, RuntimeError) as e:
                raise SubmissionFailed(f"Tip accounts unavailable: {e}") from e
        return Pubkey.from_string(random.choice(self._tip_accounts))

    async def send_bundle(self, transactions: List[VersionedTransaction]) -> str:
        """
        Submit signed transactions as one atomic bundle.

        Returns:
            Bundle id

        Raises:
            SubmissionFailed: transport error or relay rejection
        """
        encoded = [base64.b64encode(bytes(tx)).decode('ascii') for tx in transactions]
        try:
            bundle_id = await self._rpc_call("sendBundle", [encoded, {"encoding": "base64"}])
        except (httpx.HTTPError, RuntimeError) as e:
            raise SubmissionFailed(f"Bundle rejected: {e}") from e
        if not bundle_id:
            raise SubmissionFailed("Relay returned no bundle id")
        return bundle_id

    async def get_bundle_status(self, bundle_id: str) -> BundleStatus:
        """
        Poll the relay for one bundle.

        Raises:
            httpx.HTTPError, RuntimeError: transport or relay error
        """
        result = await self._rpc_call("getBundleStatuses", [[bundle_id]])
        values = (result or {}).get("value") or []
        entry = next((v for v in values if v and v.get("bundle_id", bundle_id) == bundle_id), None)
        return parse_bundle_status(bundle_id, entry)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
