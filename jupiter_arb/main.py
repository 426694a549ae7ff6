"""
Main entry point for the Jupiter round-trip arbitrage bot.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import List, Optional

from .arbitrage import ProfitCalculator
from .bundle import wait_for_bundle_confirmation
from .config import BotConfig, load_config, load_wallet
from .jito_client import BlockEngineClient
from .jupiter_client import JupiterClient
from .risk_manager import RiskConfig, RiskManager
from .trader import OpportunityOrchestrator, SwapDirection, Trader
from .utils import NATIVE_DECIMALS, ExecutionIdFilter, get_terminal_colors, ui_amount_to_amount

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(enable_console: bool = True, log_dir: Path = Path('logs')):
    """Configure root logging: daily-rotated logs/app.log plus optional stdout."""
    log_dir.mkdir(parents=True, exist_ok=True)
    level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers: List[logging.Handler] = [
        TimedRotatingFileHandler(log_dir / 'app.log', when='midnight', encoding='utf-8')
    ]
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    execution_filter = ExecutionIdFilter()
    for handler in handlers:
        handler.addFilter(execution_filter)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # Quiet per-request noise from HTTP clients
    logging.getLogger('httpx').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Jupiter round-trip arbitrage bot')
    subparsers = parser.add_subparsers(dest='command', required=True)

    swap = subparsers.add_parser('swap', help='One-shot swap between SOL and a token')
    swap.add_argument('mint', help='Token mint address')
    swap.add_argument('direction', choices=[d.value for d in SwapDirection], help='buy: SOL -> token, sell: token -> SOL')
    swap.add_argument('amount_in', type=float, help='Input amount in UI units of the input mint')

    arb = subparsers.add_parser('arb', help='Run the SOL -> token -> SOL arbitrage loop')
    arb.add_argument('mint', help='Target token mint address')
    arb.add_argument('amount_in', type=float, help='SOL amount per attempt')
    arb.add_argument('--interval', type=float, default=1.0, help='Seconds between attempts (default: 1)')
    arb.add_argument('--min-profit', type=float, default=0.0001, help='Minimum profit in SOL (default: 0.0001)')
    arb.add_argument('--partner-fee', type=float, default=0.0, help='Partner fee fraction of amount_in (default: 0)')
    arb.add_argument('--wait-for-confirmation', action='store_true', help='Poll the relay until the bundle lands')

    status = subparsers.add_parser('bundle-status', help='Poll the relay for a submitted bundle')
    status.add_argument('bundle_id', help='Bundle id returned by sendBundle')
    status.add_argument('--poll-interval', type=float, default=30.0, help='Seconds between polls (default: 30)')
    status.add_argument('--timeout', type=float, default=30.0, help='Seconds before giving up (default: 30)')

    return parser


def _new_jupiter_client(config: BotConfig) -> JupiterClient:
    return JupiterClient(
        config.quote_api_url,
        api_key=config.quote_api_key,
        requests_per_second=config.quote_requests_per_second
    )


def _build_trader(
    config: BotConfig,
    jupiter: JupiterClient,
    relay: BlockEngineClient,
    min_profit_sol: float = 0.0
) -> Trader:
    wallet = load_wallet(config.private_key)
    logger.info(f"Wallet: {colors['CYAN']}{wallet.pubkey()}{colors['RESET']}")
    risk_manager = RiskManager(RiskConfig.from_sol(min_profit_sol, config.max_tip_sol))
    calculator = ProfitCalculator(
        jupiter,
        buy_decay=config.buy_decay,
        sell_decay=config.sell_decay,
        extra_params=config.quote_extra_params
    )
    return Trader(config, wallet, jupiter, relay, risk_manager, calculator)


async def run_swap(config: BotConfig, args: argparse.Namespace):
    jupiter = _new_jupiter_client(config)
    relay = BlockEngineClient(config.block_engine_url)
    try:
        trader = _build_trader(config, jupiter, relay)
        await trader.swap(args.mint, SwapDirection(args.direction), args.amount_in)
    finally:
        await jupiter.close()
        await relay.close()


async def run_arb(config: BotConfig, args: argparse.Namespace):
    jupiter = _new_jupiter_client(config)
    relay = BlockEngineClient(config.block_engine_url)
    orchestrator: Optional[OpportunityOrchestrator] = None
    try:
        trader = _build_trader(config, jupiter, relay, min_profit_sol=args.min_profit)
        await relay.init_tip_accounts()

        orchestrator = OpportunityOrchestrator(
            trader,
            args.mint,
            ui_amount_to_amount(args.amount_in, NATIVE_DECIMALS),
            interval=args.interval,
            partner_fee=args.partner_fee,
            wait_for_confirmation=args.wait_for_confirmation
        )
        if config.tx_simulate:
            logger.warning(f"{colors['YELLOW']}TX_SIMULATE enabled: bundles are simulated, not sent{colors['RESET']}")

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
        except NotImplementedError:
            logger.debug("Signal handlers not supported on this platform")

        await orchestrator.run()
        logger.info("Stopping arbitrage loop...")
    finally:
        if orchestrator is not None:
            await orchestrator.wait_in_flight()
        await jupiter.close()
        await relay.close()
        logger.info("Bot stopped")


async def run_bundle_status(config: BotConfig, args: argparse.Namespace):
    relay = BlockEngineClient(config.block_engine_url)
    try:
        txs = await wait_for_bundle_confirmation(
            relay.get_bundle_status,
            args.bundle_id,
            args.poll_interval,
            args.timeout
        )
        logger.info(f"Bundle {args.bundle_id} landed: {txs}")
        for tx in txs:
            print(tx)
    finally:
        await relay.close()


COMMANDS = {
    'swap': run_swap,
    'arb': run_arb,
    'bundle-status': run_bundle_status,
}


async def main(argv: Optional[List[str]] = None):
    """Parse arguments, load configuration and run the selected command."""
    args = build_parser().parse_args(argv)
    config = load_config()
    setup_logging()
    logger.info(f"Starting command: {args.command}")
    await COMMANDS[args.command](config, args)


if __name__ == '__main__':
    asyncio.run(main())
