"""
Configuration loading from .env and process environment.
"""
import logging
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import base58
import dotenv
from solders.keypair import Keypair

from .arbitrage import clamp_decay
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_API = "https://quote-api.jup.ag/v6"
DEFAULT_BLOCK_ENGINE_URL = "https://mainnet.block-engine.jito.wtf"


@dataclass
class BotConfig:
    """Settings shared by every command. Amounts are in SOL / seconds."""
    rpc_endpoints: List[str]
    quote_api_url: str = DEFAULT_QUOTE_API
    quote_api_key: Optional[str] = None
    quote_requests_per_second: float = 0.0  # 0 disables client-side limiting
    buy_decay: float = 1.0
    sell_decay: float = 1.0
    tx_simulate: bool = False
    block_engine_url: str = DEFAULT_BLOCK_ENGINE_URL
    max_tip_sol: float = 0.1
    bundle_poll_interval: float = 1.0
    bundle_timeout: float = 5.0
    private_key: Optional[str] = field(default=None, repr=False)

    @property
    def quote_extra_params(self) -> Optional[Dict[str, str]]:
        """Extra query args for the quoting service (api_key when configured)."""
        if not self.quote_api_key:
            return None
        return {"api_key": self.quote_api_key}

    def pick_rpc_url(self) -> str:
        """Choose one RPC endpoint at random."""
        if not self.rpc_endpoints:
            raise ConfigError("No RPC endpoints configured")
        url = random.choice(self.rpc_endpoints)
        logger.debug(f"Choose rpc: {url}")
        return url

    def pick_rpc_pair(self) -> Tuple[str, Optional[str]]:
        """Choose a primary endpoint and, when more than one is configured, a different fallback."""
        primary = self.pick_rpc_url()
        others = [url for url in self.rpc_endpoints if url != primary]
        return primary, (random.choice(others) if others else None)


def _read_decay(name: str) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return 1.0
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using 1.0")
        return 1.0
    clamped = clamp_decay(value)
    if clamped != value:
        logger.warning(f"{name}={value} outside (0, 1], using 1.0")
    return clamped


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_config(env_path: Optional[Path] = None) -> BotConfig:
    """Load configuration from .env (if present) and the environment."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.debug(f".env file not found at {env_path}")

    rpc_endpoints = [
        url.strip() for url in os.getenv('RPC_ENDPOINTS', '').split(',') if url.strip()
    ]
    if not rpc_endpoints:
        raise ConfigError("RPC_ENDPOINTS is not set")

    return BotConfig(
        rpc_endpoints=rpc_endpoints,
        quote_api_url=os.getenv('JUP_QUOTE_API') or DEFAULT_QUOTE_API,
        quote_api_key=os.getenv('JUP_QUOTE_API_KEY') or None,
        quote_requests_per_second=_read_float('JUP_REQUESTS_PER_SECOND', 0.0),
        buy_decay=_read_decay('JUP_BUY_DECAY'),
        sell_decay=_read_decay('JUP_SELL_DECAY'),
        tx_simulate=os.getenv('TX_SIMULATE', 'false').lower() == 'true',
        block_engine_url=os.getenv('BLOCK_ENGINE_URL') or DEFAULT_BLOCK_ENGINE_URL,
        max_tip_sol=_read_float('MAX_TIP_SOL', 0.1),
        bundle_poll_interval=_read_float('BUNDLE_POLL_INTERVAL', 1.0),
        bundle_timeout=_read_float('BUNDLE_TIMEOUT', 5.0),
        private_key=os.getenv('PRIVATE_KEY') or None,
    )


def load_wallet(private_key_str: Optional[str]) -> Keypair:
    """Decode a base58 secret key into a Keypair."""
    if not private_key_str:
        raise ConfigError("PRIVATE_KEY is not set")
    try:
        key_bytes = base58.b58decode(private_key_str)
        return Keypair.from_bytes(key_bytes)
    except Exception as e:
        raise ConfigError(f"Error loading wallet: {e}") from e
