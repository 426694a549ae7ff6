"""
Solana RPC client for account lookups, blockhashes, simulation and sending.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

logger = logging.getLogger(__name__)

# SPL token Mint layout: mint_authority (36) + supply (8), then decimals (1)
MINT_DECIMALS_OFFSET = 44


class SolanaClient:
    """RPC wrapper bound to one endpoint, with a single switch to a fallback endpoint."""

    # Exception type names treated as transport failures
    TRANSPORT_ERRORS = frozenset({'ConnectError', 'ConnectTimeout', 'NetworkError', 'TimeoutError', 'ReadTimeout'})
    TRANSPORT_MARKERS = ('429', 'rate limit', 'quota', 'timed out', 'timeout', 'connection', 'network')

    def __init__(self, rpc_url: str, wallet_keypair: Optional[Keypair] = None, fallback_rpc_url: Optional[str] = None):
        self.rpc_url = rpc_url
        self.fallback_rpc_url = fallback_rpc_url
        self.client = AsyncClient(rpc_url)
        self.wallet = wallet_keypair
        self.on_fallback = False

    @staticmethod
    def _host(url: str) -> str:
        # Endpoint URLs may embed API keys; only the host is logged
        return url.split('//')[-1].split('/')[0]

    @classmethod
    def is_transport_error(cls, error: Exception) -> bool:
        if type(error).__name__ in cls.TRANSPORT_ERRORS:
            return True
        message = str(error).lower()
        return any(marker in message for marker in cls.TRANSPORT_MARKERS)

    async def _use_fallback(self, reason: str) -> bool:
        """Swap the underlying client to the fallback endpoint. False when there is none left."""
        if self.on_fallback or not self.fallback_rpc_url:
            return False
        logger.warning(
            f"RPC {self._host(self.rpc_url)} unavailable ({reason}), "
            f"switching to {self._host(self.fallback_rpc_url)}"
        )
        try:
            await self.client.close()
        except Exception as e:
            logger.debug(f"Error closing RPC client: {e}")
        self.client = AsyncClient(self.fallback_rpc_url)
        self.on_fallback = True
        return True

    async def _call(self, fetch):
        """Run `fetch()`; on a transport error retry it once against the fallback endpoint."""
        try:
            return await fetch()
        except Exception as e:
            if not (self.is_transport_error(e) and await self._use_fallback(str(e))):
                raise
            logger.debug("Retrying RPC call on fallback endpoint")
            return await fetch()

    async def get_latest_blockhash(self) -> Hash:
        """
        Get the latest blockhash for transaction building.

        Raises:
            Exception: RPC failure (after failover), or an empty response
        """
        async def _fetch():
            result = await self.client.get_latest_blockhash(commitment=Confirmed)
            if not result.value:
                raise ValueError("get_latest_blockhash returned no value")
            return result.value.blockhash

        return await self._call(_fetch)

    async def get_multiple_accounts(self, addresses: List[Pubkey]) -> List[Optional[bytes]]:
        """
        Batch-fetch raw account data.

        Returns:
            One entry per address, in order: account data bytes, or None if
            the account does not exist

        Raises:
            Exception: RPC failure (after failover)
        """
        if not addresses:
            return []

        async def _fetch():
            result = await self.client.get_multiple_accounts(addresses, commitment=Confirmed, encoding="base64")
            accounts = list(result.value or [])
            if len(accounts) != len(addresses):
                raise ValueError(f"Expected {len(addresses)} accounts, RPC returned {len(accounts)}")
            return [bytes(account.data) if account is not None else None for account in accounts]

        return await self._call(_fetch)

    async def get_mint_decimals(self, mint: Pubkey) -> int:
        """
        Read decimals from an SPL token mint account.

        Raises:
            ValueError: mint account missing or too short
        """
        accounts = await self.get_multiple_accounts([mint])
        data = accounts[0]
        if data is None or len(data) <= MINT_DECIMALS_OFFSET:
            raise ValueError(f"Mint account {mint} not found or invalid")
        return data[MINT_DECIMALS_OFFSET]

    async def simulate_versioned_transaction(
        self,
        tx: VersionedTransaction,
        commitment: str = "confirmed"
    ) -> Dict[str, Any]:
        """
        Simulate a signed VersionedTransaction with failover support.

        Returns:
            Dict with err, logs, units_consumed (err is None on success)

        Raises:
            Exception: RPC failure (after failover)
        """
        async def _simulate():
            result = await self.client.simulate_transaction(tx, commitment=commitment)

            # Logs are returned even on error so the caller can print them
            sim_result = {
                "err": result.value.err,
                "logs": result.value.logs or [],
                "units_consumed": result.value.units_consumed,
            }
            if result.value.err:
                logger.warning(f"Simulation error: {result.value.err}")
            return sim_result

        return await self._call(_simulate)

    async def send_versioned_transaction(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = False,
        max_retries: int = 3
    ) -> Optional[str]:
        """
        Send a signed VersionedTransaction with failover support.

        Returns:
            Transaction signature (base58 string) if successful, None otherwise
        """
        async def _send():
            for attempt in range(max_retries):
                try:
                    opts = TxOpts(skip_preflight=skip_preflight, max_retries=0)
                    result = await self.client.send_transaction(tx, opts=opts)

                    if result.value:
                        sig = str(result.value)
                        logger.debug(f"Transaction sent: {sig}")
                        return sig
                    logger.warning(f"Transaction send returned no signature (attempt {attempt + 1})")

                except Exception as e:
                    logger.warning(f"Transaction send attempt {attempt + 1} failed: {e}")
                    if attempt < max_retries - 1:
                        await asyncio.sleep(0.5)
                    else:
                        raise
            return None

        try:
            return await self._call(_send)
        except Exception as e:
            logger.error(f"Error sending VersionedTransaction: {e}")
            return None

    async def confirm_transaction(
        self,
        signature: str,
        commitment: str = "confirmed",
        timeout: float = 30.0
    ) -> bool:
        """
        Wait for transaction confirmation.

        Returns:
            True if confirmed within timeout, False otherwise
        """
        try:
            result = await asyncio.wait_for(
                self.client.confirm_transaction(Signature.from_string(signature), commitment=commitment),
                timeout=timeout
            )
            return result.value[0] is not None and result.value[0].confirmation_status is not None
        except Exception as e:
            logger.error(f"Error confirming transaction {signature}: {e}")
            return False

    async def close(self):
        """Close RPC client."""
        await self.client.close()
