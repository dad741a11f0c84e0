"""digitbot CLI entry point."""

from __future__ import annotations

import argparse
import os
import sys

TOKEN_ENV_VAR = "DIGITBOT_API_TOKEN"


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="digitbot",
        description="Digit contract trading bot for Deriv-style tick markets",
    )
    parser.add_argument(
        "--strategy",
        type=str,
        default=None,
        help="Strategy name (default: bot.strategy from config)",
    )
    parser.add_argument(
        "--symbol",
        type=str,
        default=None,
        help="Tick symbol, e.g. 1HZ10V (default: trading.symbol from config)",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Config directory path (default: config)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Environment name (default: from DIGITBOT_ENV)",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help=f"Venue API token (default: from {TOKEN_ENV_VAR})",
    )
    parser.add_argument(
        "--list-strategies",
        action="store_true",
        default=False,
        help="List registered strategies and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_strategies:
        from digitbot.strategies import registry

        registry.load_builtin()
        for name in registry.list_strategies():
            print(name)
        return 0

    token = args.token or os.environ.get(TOKEN_ENV_VAR, "")
    if not token:
        print(f"An API token is required (--token or {TOKEN_ENV_VAR}).", file=sys.stderr)
        return 2

    from digitbot.bot import run_bot
    from digitbot.config.loader import ConfigError

    try:
        return run_bot(
            token=token,
            strategy=args.strategy,
            symbol=args.symbol,
            config_dir=args.config_dir,
            env=args.env,
        )
    except (ConfigError, KeyError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
