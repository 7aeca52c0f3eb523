"""Command-line interface for the Stayer keeper and tooling."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys

from .chains.casper import CasperClient, CsprCloudClient
from .config import AppConfig, load_config
from .deployment import deploy
from .feeds import PythFeedClient
from .fixed_point import PRICE_PRECISION
from .interfaces import Notifier
from .logging_setup import configure_logging
from .notifications import TelegramNotifier
from .services import Keeper, LocalStakingBackend


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="stayer",
        description="Stayer liquid staking and CDP keeper",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    price_parser = sub.add_parser("price", help="Fetch feed prices once")
    price_parser.add_argument(
        "feed",
        nargs="?",
        default=None,
        help="Feed name to fetch (default: all configured feeds)",
    )

    sub.add_parser("params", help="Print effective protocol parameters")

    keeper_parser = sub.add_parser("keeper", help="Run the keeper loop")
    keeper_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Loop interval in minutes (overrides config)",
    )

    return parser


def format_params(config: AppConfig) -> str:
    sections = {
        "oracle": config.oracle,
        "registry": config.registry,
        "staking": config.staking,
        "vault": config.vault,
        "keeper": config.keeper,
    }
    lines = [f"owner: {config.owner}", f"initial_price: {config.initial_price}"]
    for name, section in sections.items():
        lines.append(f"{name}:")
        for key, value in dataclasses.asdict(section).items():
            lines.append(f"  {key}: {value}")
    return "\n".join(lines)


async def _print_prices(config: AppConfig, feed: str | None) -> None:
    client = PythFeedClient(config.pyth)
    prices = await client.fetch_prices([feed] if feed else None)
    if not prices:
        print("No prices fetched", file=sys.stderr)
        sys.exit(1)
    for name, price in sorted(prices.items()):
        print(f"{name}: {price / PRICE_PRECISION:.6f} ({price})")


def build_keeper(config: AppConfig) -> Keeper:
    """Keeper over an in-process deployment, reading validators and eras from the chain."""
    if not config.chain.rpc_endpoints:
        raise ValueError("keeper requires chain.rpc_endpoints")

    deployment = deploy(config)
    client = CasperClient(config.chain)
    backend = LocalStakingBackend(deployment.cspr, config.keeper.address, era_source=client)

    notifiers: list[Notifier] = []
    if config.telegram.enabled:
        notifiers.append(TelegramNotifier(config.telegram))

    cloud = CsprCloudClient(config.cloud)
    return Keeper(
        deployment,
        backend=backend,
        validator_source=client,
        price_client=PythFeedClient(config.pyth),
        performance=cloud if cloud.configured else None,
        notifiers=notifiers,
    )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "price":
        await _print_prices(config, args.feed)
    elif args.command == "params":
        print(format_params(config))
    elif args.command == "keeper":
        keeper = build_keeper(config)
        await keeper.run_continuous(args.interval)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
