"""
Command-line interface for the relay bundler.

Provides commands for running a launch bundle and managing wallets.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import pydantic
import structlog
from web3 import Web3

from bundler import __version__
from bundler.chain.web3_adapter import Web3ChainAdapter
from bundler.config import BundlerConfig, set_config
from bundler.core.account import AccountIdentity
from bundler.core.errors import BundlerError, ValidationError
from bundler.engine.builder import ExecutorSettings, build_executor
from bundler.launch.calls import build_launch_entries
from bundler.launch.plan import load_plan

logger = structlog.get_logger(__name__)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stdout,
    )


def _add_network_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rpc-url", help="HTTP JSON-RPC endpoint (env: BUNDLER_RPC_URL)")
    parser.add_argument("--chain-id", type=int, help="Chain id (read from the node if unset)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=None,
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="relay-bundler",
        description="Atomic transaction bundles for private block-builder relays",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Launch command
    launch_parser = subparsers.add_parser("launch", help="Submit the launch bundle until it lands")
    launch_parser.add_argument(
        "--plan",
        required=True,
        help="Path to the launch plan JSON",
    )
    _add_network_arguments(launch_parser)
    launch_parser.add_argument("--ws-url", help="WebSocket endpoint for newHeads (polling if unset)")
    launch_parser.add_argument("--relay-url", help="Relay endpoint (Flashbots relay of the chain by default)")
    launch_parser.add_argument(
        "--interval",
        type=int,
        dest="interval_to_future_block",
        help="Blocks ahead of the head each submission targets (default: 2)",
    )
    launch_parser.add_argument(
        "--priority-fee-gwei",
        type=int,
        help="Priority fee in gwei (default: 31)",
    )
    launch_parser.add_argument(
        "--fee-model",
        choices=["eip1559", "legacy"],
        help="Fee fields for bundle transactions (default: eip1559)",
    )
    launch_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate the bundle once and exit without submitting",
    )

    # Keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate wallet keys")
    keygen_parser.add_argument(
        "--count", "-n",
        type=int,
        default=1,
        help="Number of wallets to generate (default: 1)",
    )
    keygen_parser.add_argument(
        "--output", "-o",
        help="Write keys to this JSON file instead of stdout",
    )

    # Balance command
    balance_parser = subparsers.add_parser("balance", help="Show balances of the configured wallets")
    balance_parser.add_argument("--plan", help="Launch plan whose sniper wallets to include")
    _add_network_arguments(balance_parser)

    return parser


def load_config(args: argparse.Namespace) -> BundlerConfig:
    """Build the configuration from the environment, overridden by flags."""
    overrides = {}
    for name in (
        "rpc_url",
        "ws_url",
        "chain_id",
        "relay_url",
        "interval_to_future_block",
        "priority_fee_gwei",
        "fee_model",
        "log_level",
        "log_json",
    ):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value

    config = BundlerConfig(**overrides)
    set_config(config)
    return config


async def _connect_chain(config: BundlerConfig) -> Optional[Web3ChainAdapter]:
    if not config.rpc_url:
        return None
    chain = Web3ChainAdapter(config.rpc_url, timeout_seconds=config.rpc_timeout_seconds)
    await chain.connect()
    return chain


async def run_launch(args: argparse.Namespace, config: BundlerConfig) -> int:
    """Build the launch bundle and drive it to a terminal state."""
    plan = load_plan(args.plan)
    chain = await _connect_chain(config)

    try:
        settings = ExecutorSettings.from_config(config, chain)
        if settings.network_id is None and chain is not None:
            settings.network_id = await chain.get_chain_id()

        executor = build_executor(settings)
        snipers = plan.sniper_identities(os.environ)
        executor.add_entries(await build_launch_entries(plan, executor, snipers))

        print(f"Relay Bundler v{__version__}")
        print(f"Chain id: {settings.network_id}")
        print(f"Executor: {executor.executor.address}")
        print(f"Sponsor: {executor.sponsor.address}")
        print(f"Snipers: {len(snipers)}")
        print()

        if args.dry_run:
            result = await executor.simulate_once()
            if result.ok:
                print(f"Simulation OK: gas used {result.total_gas_used}, "
                      f"effective gas price {result.effective_gas_price}")
                return 0
            print(f"Simulation error: {result.error_message}")
            return 1

        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, executor.stop)
        except NotImplementedError:
            pass  # Signals not available on Windows

        report = await executor.execute()

        if executor.auth_generated:
            print(f"Please keep the following relay auth key: {executor.auth.private_key}")
        print(json.dumps(report.to_dict(), indent=2))
        return report.exit_code

    finally:
        if chain is not None:
            await chain.disconnect()


def run_keygen(args: argparse.Namespace) -> int:
    """Generate wallet keys."""
    wallets = []
    for _ in range(args.count):
        identity = AccountIdentity.generate()
        wallets.append({"address": identity.address, "private_key": identity.private_key})

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as f:
            json.dump(wallets, f, indent=2)
        os.chmod(output_path, 0o600)
        print(f"Wrote {len(wallets)} wallet(s) to {output_path}")
        for wallet in wallets:
            print(f"  {wallet['address']}")
    else:
        print(json.dumps(wallets, indent=2))
    return 0


async def run_balance(args: argparse.Namespace, config: BundlerConfig) -> int:
    """Print balances of the sponsor, executor and sniper wallets."""
    chain = await _connect_chain(config)
    if chain is None:
        raise ValidationError({"rpc_url": "Not provided"})

    try:
        wallets = []
        if config.sponsor_private_key:
            wallets.append(AccountIdentity.from_key(config.sponsor_private_key, label="sponsor"))
        if config.executor_private_key:
            wallets.append(AccountIdentity.from_key(config.executor_private_key, label="executor"))
        if args.plan:
            wallets.extend(load_plan(args.plan).sniper_identities(os.environ))

        if not wallets:
            print("No wallets configured.")
            return 1

        balances = await asyncio.gather(*(chain.get_balance(w.address) for w in wallets))
        for wallet, balance in zip(wallets, balances):
            print(f"  {wallet.label:<10} {wallet.address}  {Web3.from_wei(balance, 'ether')} ETH")
        return 0
    finally:
        await chain.disconnect()


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "keygen":
        sys.exit(run_keygen(args))

    try:
        config = load_config(args)
    except pydantic.ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_json)

    try:
        if args.command == "launch":
            code = asyncio.run(run_launch(args, config))
        else:
            code = asyncio.run(run_balance(args, config))
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    except (BundlerError, FileNotFoundError, ValueError) as e:
        logger.error("run_failed", error=str(e))
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
