"""Command-line interface for the LendHub engine."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import AppConfig, load_config
from .engine.interest_rate import InterestRateModel, to_apy
from .fixed_point import from_wad
from .logging_setup import configure_logging
from .protocol import LendingProtocol, build_notifiers, build_protocol
from .services import KeeperRunner


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lendhub",
        description="Isolated-pool lending engine and liquidation keeper",
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

    rates_parser = sub.add_parser("rates", help="Print each pool token's rate curve")
    rates_parser.add_argument(
        "--points", type=int, default=11, help="Utilization samples per curve (default: 11)"
    )

    sub.add_parser("check", help="Single upkeep scan, prints liquidation candidates")

    keeper_parser = sub.add_parser("keeper", help="Continuous keeper loop")
    keeper_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Run interval in seconds (overrides config)",
    )

    return parser


def _pct(value: int) -> str:
    return f"{from_wad(value) * 100:.2f}%"


def print_rates(config: AppConfig, protocol: LendingProtocol, points: int) -> None:
    for pool_id, pool_cfg in config.pools.items():
        print(f"━━ {pool_id} ━━")
        for symbol in pool_cfg.tokens:
            token = protocol.tokens.by_symbol(symbol).address
            model = InterestRateModel(
                protocol.risk_params.get(pool_id, token), pool_cfg.reserve_factor
            )
            print(f"{symbol}")
            print(f"  {'util':>8} {'borrow':>9} {'supply':>9} {'borrow APY':>11}")
            for snap in model.rate_curve(points):
                print(
                    f"  {_pct(snap.utilization):>8} {_pct(snap.borrow_rate):>9} "
                    f"{_pct(snap.supply_rate):>9} {to_apy(snap.borrow_rate) * 100:>10.2f}%"
                )
        print()


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    protocol = build_protocol(config)

    if args.command == "rates":
        print_rates(config, protocol, args.points)
    elif args.command == "check":
        refresh = getattr(protocol.oracle, "refresh", None)
        if refresh is not None:
            await refresh()
        check = protocol.keeper.check_upkeep()
        if not check.candidates:
            print("No liquidatable positions.")
        for c in check.candidates:
            print(f"{c.pool_id}  {c.user}  HF {from_wad(c.health_factor):.4f}")
    elif args.command == "keeper":
        runner = KeeperRunner(
            protocol.keeper,
            operator=config.keeper.operator,
            oracle=protocol.oracle,
            notifiers=build_notifiers(config),
            tokens=protocol.tokens,
            retry_base=config.keeper.retry_base_seconds,
            retry_cap=config.keeper.retry_cap_seconds,
        )
        await runner.run_continuous(args.interval)
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
