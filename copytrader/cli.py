"""
Copy Trader CLI.

Command-line interface for running the sync loop, previewing a cycle and
inspecting configuration.
"""

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from copytrader.adapters import HyperliquidInfoAPI, PaperAccount
from copytrader.config import AppConfig, ConfigLoader
from copytrader.core import get_logger, set_level
from copytrader.sync.controller import SyncController
from copytrader.sync.core.diff_engine import format_actions
from copytrader.sync.models import CycleResult
from copytrader.sync.roster import TraderRoster

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"


class CopyTraderCLI:
    """
    Command-line interface for the copy trader.

    Example:
        >>> cli = CopyTraderCLI()
        >>> await cli.run(["status", "--config", "config/config.yaml"])
        >>> await cli.run(["plan"])
    """

    def __init__(self, loader: Optional[ConfigLoader] = None):
        self._loader = loader or ConfigLoader()
        self._parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog="copytrader",
            description="Copy positions from followed traders into a follower account",
        )
        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        # run command
        run_parser = subparsers.add_parser("run", help="Run the sync loop until interrupted")
        self._add_config_args(run_parser)

        # plan command
        plan_parser = subparsers.add_parser(
            "plan",
            help="Run one cycle without executing and print the planned actions",
        )
        self._add_config_args(plan_parser)

        # status command
        status_parser = subparsers.add_parser("status", help="Show configuration summary")
        self._add_config_args(status_parser)

        return parser

    def _add_config_args(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--config", "-c",
            type=str,
            default=DEFAULT_CONFIG_PATH,
            help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
        )
        parser.add_argument(
            "--env", "-e",
            type=str,
            default=None,
            help="Environment overlay to apply (loads config.<env>.yaml)",
        )

    async def run(self, args: List[str]) -> int:
        """
        Run CLI command.

        Args:
            args: Command-line arguments

        Returns:
            Exit code (0 for success)
        """
        if not args:
            self._parser.print_help()
            return 0

        parsed = self._parser.parse_args(args)

        if not parsed.command:
            self._parser.print_help()
            return 0

        try:
            handler = getattr(self, f"_cmd_{parsed.command.replace('-', '_')}", None)
            if handler:
                return await handler(parsed)
            else:
                print(f"Unknown command: {parsed.command}")
                return 1
        except Exception as e:
            print(f"Error: {e}")
            logger.error(f"CLI error: {e}")
            return 1

    def _load(self, args: argparse.Namespace) -> AppConfig:
        config = self._loader.load(args.config, env=args.env)
        set_level(config.log_level)
        return config

    def _build_controller(self, config: AppConfig) -> SyncController:
        roster = TraderRoster.from_config(config)
        follower = PaperAccount(
            balance=config.follower.paper_balance,
            address=config.follower.address,
        )
        return SyncController(
            roster,
            HyperliquidInfoAPI(),
            follower,
            config=config.sync,
            follower_address=config.follower.address,
        )

    # =========================================================================
    # Command Handlers
    # =========================================================================

    async def _cmd_run(self, args: argparse.Namespace) -> int:
        """Handle run command."""
        config = self._load(args)
        if not config.active_traders:
            print("Error: No active traders configured")
            return 1

        controller = self._build_controller(config)

        print(f"Starting {config.app_name}... (Ctrl+C to stop)")
        await controller.start()
        try:
            while controller.is_running:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass
        finally:
            await controller.stop()

        self._print_status(controller.get_status())
        return 0

    async def _cmd_plan(self, args: argparse.Namespace) -> int:
        """Handle plan command."""
        config = self._load(args)
        controller = self._build_controller(config)

        await controller.start_session()
        try:
            result = await controller.run_cycle(execute=False)
        finally:
            await controller.end_session()

        self._print_plan(controller, result)
        return 0 if not result.fetch_errors else 1

    async def _cmd_status(self, args: argparse.Namespace) -> int:
        """Handle status command."""
        config = self._load(args)
        print("\n=== Copy Trader Configuration ===")
        for line in config.summary():
            print(line)
        return 0

    # =========================================================================
    # Output Formatting
    # =========================================================================

    def _print_plan(self, controller: SyncController, result: CycleResult) -> None:
        """Print the planned actions of a dry cycle."""
        print("\n=== Sync Plan ===")

        if result.skipped:
            print("Cycle skipped (no active traders)")
            return

        calculation = controller.last_calculation
        if calculation:
            print(f"Scaling factor:    {calculation.scaling_factor:.4f}")
            print(f"Trader margin:     {calculation.trader_margin:.2f} USD")
            print(f"Follower capital:  {calculation.allocated_capital:.2f} USD")
            print(f"Target margin:     {calculation.target_margin_total:.2f} USD")
            for scaling in calculation.traders:
                print(
                    f"  {scaling.trader_address}: {scaling.allocation_percent:.2f}% -> "
                    f"{scaling.allocated_capital:.2f} USD, factor {scaling.scaling_factor:.4f}"
                )
            for skipped in calculation.skipped:
                print(
                    f"  skipped {skipped.symbol} {skipped.side}: "
                    f"{skipped.reason} ({skipped.target_margin:.2f} USD)"
                )

        if result.fetch_errors:
            print("\n--- Fetch Errors ---")
            for error in result.fetch_errors:
                print(f"  - {error}")

        if controller.last_diff is not None:
            print("\n--- Actions ---")
            for line in format_actions(controller.last_diff):
                print(f"  {line}")

    def _print_status(self, status: Dict[str, Any]) -> None:
        """Print controller status."""
        stats = status["stats"]
        print("\n=== Copy Trader Status ===")
        print(f"State:             {status['state']}")
        print(f"Conflict strategy: {status['conflict_strategy']}")
        print(f"Cycles run:        {stats['cycles_run']}")
        print(f"Cycles skipped:    {stats['cycles_skipped']}")
        print(f"Positions opened:  {stats['positions_opened']}")
        print(f"Positions closed:  {stats['positions_closed']}")
        print(f"Errors:            {stats['errors']}")

        roster = status["roster"]
        print(f"\n--- Traders ({roster['active_count']}/{roster['trader_count']} active) ---")
        for trader in roster["traders"]:
            state = "active" if trader["is_active"] else "paused"
            print(f"  {trader['name']:<20} {trader['allocation_percent']:>8}% [{state}]")


async def async_main(args: Optional[List[str]] = None) -> int:
    """
    Async entry point for CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    if args is None:
        args = sys.argv[1:]

    cli = CopyTraderCLI()
    return await cli.run(args)


def main(args: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
