"""
Compile an instruction plan into a signed v0 VersionedTransaction using
address lookup tables.
"""
import logging
from typing import List, Optional, Sequence

from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .errors import CompilationFailed
from .solana_client import SolanaClient
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

# Solana packet limit for a serialized transaction
MAX_TRANSACTION_SIZE = 1232


async def load_lookup_tables(
    solana_client: SolanaClient,
    addresses: Sequence[str]
) -> List[AddressLookupTableAccount]:
    """
    Resolve lookup-table addresses into AddressLookupTableAccount objects.

    Tables whose account is missing or cannot be decoded are skipped with a
    warning: losing one only costs compaction, the message still compiles
    with those accounts inlined.

    Raises:
        Exception: the batch account fetch itself failed
    """
    keys: List[Pubkey] = []
    for address in addresses:
        try:
            keys.append(Pubkey.from_string(address))
        except ValueError as e:
            logger.warning(f"Skipping malformed ALT address {address}: {e}")

    raw_accounts = await solana_client.get_multiple_accounts(keys)

    tables = []
    for key, data in zip(keys, raw_accounts):
        if data is None:
            logger.warning(f"ALT account {key} not found, skipping")
            continue
        try:
            table = AddressLookupTable.deserialize(data)
        except Exception as e:
            logger.warning(f"ALT account {key} could not be decoded, skipping: {e}")
            continue
        tables.append(AddressLookupTableAccount(key=key, addresses=list(table.addresses)))
        logger.debug(f"Loaded ALT {key} with {len(table.addresses)} addresses")
    return tables


class TransactionCompiler:
    """Builds signed, size-checked v0 transactions for one payer."""

    def __init__(self, solana_client: SolanaClient, max_size: int = MAX_TRANSACTION_SIZE):
        self.solana = solana_client
        self.max_size = max_size

    async def compile(
        self,
        instructions: List[Instruction],
        lookup_table_addresses: Sequence[str],
        payer: Keypair,
        recent_blockhash: Optional[Hash] = None
    ) -> VersionedTransaction:
        """
        Compile and sign a v0 transaction.

        Args:
            instructions: Ordered instruction plan
            lookup_table_addresses: ALT addresses to resolve for compaction
            payer: Fee payer and sole signer
            recent_blockhash: Freshness anchor; fetched when not given

        Raises:
            CompilationFailed: RPC failure, compile/sign failure or oversize transaction
        """
        if not instructions:
            raise CompilationFailed("No instructions to compile")

        try:
            alt_accounts = await load_lookup_tables(self.solana, lookup_table_addresses)
        except Exception as e:
            raise CompilationFailed(f"Failed to load ALT accounts: {e}") from e

        if recent_blockhash is None:
            try:
                recent_blockhash = await self.solana.get_latest_blockhash()
            except Exception as e:
                raise CompilationFailed(f"Failed to get recent blockhash: {e}") from e

        try:
            message = MessageV0.try_compile(
                payer=payer.pubkey(),
                instructions=instructions,
                address_lookup_table_accounts=alt_accounts,
                recent_blockhash=recent_blockhash
            )
            versioned_tx = VersionedTransaction(message, [payer])
        except Exception as e:
            raise CompilationFailed(f"Failed to build VersionedTransaction (v0): {e}") from e

        raw_len = len(bytes(versioned_tx))
        if raw_len > self.max_size:
            raise CompilationFailed(
                f"Transaction too large: {raw_len} bytes (max {self.max_size}), "
                f"{len(instructions)} instructions, {len(alt_accounts)} ALTs"
            )

        logger.debug(
            f"VersionedTransaction built (v0): {colors['GREEN']}{len(instructions)}{colors['RESET']} instructions, "
            f"{colors['GREEN']}{len(alt_accounts)}{colors['RESET']}/{len(lookup_table_addresses)} ALTs, "
            f"size={colors['GREEN']}{raw_len}{colors['RESET']}/{self.max_size} bytes"
        )
        return versioned_tx
