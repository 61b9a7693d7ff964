"""Bakehouse CLI entry point."""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path.cwd() / ".env"
load_dotenv(env_file)

from bakehouse import __version__
from bakehouse.config import Settings, get_settings
from bakehouse.services.simulation import (
    SimulationAPIError,
    StartParams,
    create_simulation_client,
)
from bakehouse.services.simulation.models import Simulation
from bakehouse.sync import LiveSession
from bakehouse.timeline import MoveCommand, resolve_rack
from bakehouse.timeutils import parse_time_to_minutes

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# Bakehouse Configuration
# Operational parameters for the live simulation client.
# Secrets (LOGFIRE_TOKEN) belong in .env, not here.

api:
  base_url: http://localhost:3001
  timeout_seconds: 30.0
  max_retries: 3

business:
  start: "06:00"
  end: "17:00"

ovens:
  oven_count: 2
  racks_per_oven: 6

timeline:
  snap_minutes: 20
  minutes_per_pixel: 0.3

sync:
  guard_timeout_seconds: 1.0
  poll_interval_seconds: 0.5
  items_refresh_seconds: 2.0
  reconnection_attempts: 3

suggestions:
  sample_interval_seconds: 0.25
  threshold_minutes: 10
  mode: predictive
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from bakehouse.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _client(settings: Settings):
    return create_simulation_client(base_url=settings.api.base_url)


def _print_simulation(simulation: Simulation) -> None:
    print(f"\n=== Simulation {simulation.id} ===\n")
    print(f"  Status: {simulation.status}")
    print(f"  Mode: {simulation.mode or '-'}")
    print(f"  Date: {simulation.schedule_date or '-'}")
    print(f"  Clock: {simulation.current_time or '--:--'} ({simulation.speed_multiplier}x)")
    print(f"  Scheduled batches: {len(simulation.batches)}")
    print(f"  Completed batches: {len(simulation.completed_batches)}")
    total = simulation.stats.get("totalInventory")
    if total is not None:
        print(f"  Inventory: {total}")
    print()


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory and configuration file."""
    data_dir = Path("data").resolve()

    try:
        data_dir.mkdir(exist_ok=True)
        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Point api.base_url in data/config.yaml at the simulation server")
        print("2. Run 'python -m bakehouse config' to verify configuration")
        print("3. Run 'python -m bakehouse start --date YYYY-MM-DD --watch 60'\n")
        return 0

    except OSError as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== Bakehouse Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}\n")

        print("API:")
        print(f"  Base URL: {settings.api.base_url}")
        print(f"  Push URL: {settings.api.push_url}")
        print(f"  Timeout: {settings.api.timeout_seconds}s")
        print(f"  Max Retries: {settings.api.max_retries}\n")

        print("Bakery:")
        print(f"  Business Hours: {settings.business.start}-{settings.business.end}")
        print(f"  Ovens: {settings.ovens.oven_count} x {settings.ovens.racks_per_oven} racks\n")

        print("Timeline:")
        print(f"  Snap: {settings.timeline.snap_minutes} min")
        print(f"  Minutes per Pixel: {settings.timeline.minutes_per_pixel}\n")

        print("Sync:")
        print(f"  Guard Timeout: {settings.sync.guard_timeout_seconds}s")
        print(f"  Poll Interval: {settings.sync.poll_interval_seconds}s")
        print(f"  Reconnection Attempts: {settings.sync.reconnection_attempts}\n")

        print("Suggestions:")
        print(f"  Mode: {settings.suggestions.mode}")
        print(f"  Threshold: {settings.suggestions.threshold_minutes} simulated min\n")

        print(f"Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")
        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1


def cmd_dates(args: argparse.Namespace) -> int:
    """List dates that have sales data to simulate."""

    async def run() -> list:
        async with _client(get_settings()) as client:
            return await client.get_available_dates()

    try:
        dates = asyncio.run(run())
    except SimulationAPIError as e:
        logger.error(f"Failed to fetch dates: {e}")
        return 1

    print(f"\nAvailable dates: {len(dates)}")
    for entry in dates:
        if isinstance(entry, dict):
            print(f"  {entry.get('date', entry)}")
        else:
            print(f"  {entry}")
    print()
    return 0


async def _watch(session: LiveSession, seconds: float, suggestions: bool, auto_add: bool) -> None:
    last_clock = None

    def on_change(simulation: Simulation) -> None:
        nonlocal last_clock
        if simulation.current_time != last_clock:
            last_clock = simulation.current_time
            logger.info(
                f"{simulation.current_time} [{simulation.status}] "
                f"{len(simulation.batches)} scheduled, {len(simulation.completed_batches)} done"
            )

    session.on_change = on_change
    if suggestions:
        offered = await session.enable_suggestions(auto_add=auto_add)
        logger.info(f"{len(offered)} suggestion(s) offered")

    await asyncio.sleep(seconds)

    if session.suggestions is not None and not auto_add:
        for suggestion in session.suggestions.visible_suggestions():
            print(f"  suggest {suggestion.display_name or suggestion.item_guid} at {suggestion.start_time}")
    conflicts = session.engine.find_conflicts(session.state.batches if session.state else [])
    for a, b in conflicts:
        print(f"  conflict on rack {a.rack_position}: {a.batch_id} / {b.batch_id}")


def cmd_start(args: argparse.Namespace) -> int:
    """Start a simulation, optionally watching it."""
    _init_logfire()
    settings = get_settings()
    params = StartParams(
        schedule_date=args.date,
        speed_multiplier=args.speed,
        mode=args.mode,
    )

    async def run() -> None:
        async with _client(settings) as client:
            async with LiveSession(client, settings=settings) as session:
                simulation = await session.start(params)
                _print_simulation(simulation)
                if args.watch:
                    await _watch(session, args.watch, args.suggestions, args.auto_add)

    try:
        asyncio.run(run())
        return 0
    except KeyboardInterrupt:
        return 0
    except SimulationAPIError as e:
        logger.error(f"Failed to start simulation: {e}")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show the current state of a simulation."""

    async def run() -> Simulation | None:
        settings = get_settings()
        async with _client(settings) as client:
            async with LiveSession(client, settings=settings) as session:
                return await session.attach(args.simulation_id, live=False)

    try:
        simulation = asyncio.run(run())
    except SimulationAPIError as e:
        logger.error(f"Failed to read status: {e}")
        return 1

    if simulation is None:
        print(f"\n❌ No state for simulation {args.simulation_id}\n")
        return 1
    _print_simulation(simulation)
    return 0


def cmd_results(args: argparse.Namespace) -> int:
    """Show end-of-day results."""

    async def run() -> dict:
        async with _client(get_settings()) as client:
            return await client.get_results(args.simulation_id)

    try:
        results = asyncio.run(run())
    except SimulationAPIError as e:
        logger.error(f"Failed to fetch results: {e}")
        return 1

    print(f"\n=== Results for {args.simulation_id} ===\n")
    for key, value in results.items():
        if not isinstance(value, (dict, list)):
            print(f"  {key}: {value}")
    print()
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Attach to a running simulation and follow it."""
    _init_logfire()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    settings = get_settings()

    async def run() -> None:
        async with _client(settings) as client:
            async with LiveSession(client, settings=settings) as session:
                await session.attach(args.simulation_id)
                await _watch(session, args.seconds, args.suggestions, args.auto_add)

    try:
        asyncio.run(run())
        return 0
    except KeyboardInterrupt:
        return 0
    except SimulationAPIError as e:
        logger.error(f"Watch failed: {e}")
        return 1


def cmd_move(args: argparse.Namespace) -> int:
    """Move a batch to a new start time and rack."""
    settings = get_settings()
    requested = parse_time_to_minutes(args.start_time)
    if requested is None:
        print(f"\n❌ Invalid time: {args.start_time}\n")
        return 1
    if resolve_rack(args.rack, settings.ovens.total_racks) is None:
        print(f"\n❌ Unknown rack: {args.rack} (1-{settings.ovens.total_racks})\n")
        return 1

    async def run() -> MoveCommand | None:
        async with _client(settings) as client:
            async with LiveSession(client, settings=settings) as session:
                await session.attach(args.simulation_id, live=False)
                batch = session.state.find_batch(args.batch_id) if session.state else None
                if batch is None:
                    print(f"\n❌ Batch not in schedule: {args.batch_id}\n")
                    return None
                move = session.engine.plan_move_at(batch, requested, args.rack)
                if move is None:
                    print(
                        f"\n❌ Cannot place {batch.batch_id} at {args.start_time}: "
                        f"needs a known bake time and must fit "
                        f"{settings.business.start}-{settings.business.end}\n"
                    )
                    return None
                if not await session.move_batch(move.batch_id, move.new_start_time, move.new_rack):
                    print(f"\n❌ {session.last_error}\n")
                    return None
                return move

    try:
        move = asyncio.run(run())
    except SimulationAPIError as e:
        logger.error(f"Move failed: {e}")
        return 1

    if move is None:
        return 1
    print(f"\n✓ {move.batch_id} moved to {move.new_start_time} on rack {move.new_rack}\n")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Bakehouse: live client for the bakery batch-scheduling simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Bakehouse {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration file",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_dates = subparsers.add_parser(
        "dates",
        help="List dates available for simulation",
    )
    parser_dates.set_defaults(func=cmd_dates)

    parser_start = subparsers.add_parser(
        "start",
        help="Start a new simulation",
    )
    parser_start.add_argument(
        "--date",
        default=date.today().isoformat(),
        help="Schedule date (YYYY-MM-DD)",
    )
    parser_start.add_argument(
        "--speed",
        type=int,
        default=60,
        help="Speed multiplier (simulated seconds per wall second)",
    )
    parser_start.add_argument(
        "--mode",
        choices=["manual", "preset"],
        default="manual",
        help="Manual POS or preset sales replay",
    )
    parser_start.add_argument(
        "--watch",
        type=float,
        default=0,
        metavar="SECONDS",
        help="Follow the simulation for this many seconds after starting",
    )
    parser_start.add_argument("--suggestions", action="store_true", help="Fetch suggested batches")
    parser_start.add_argument("--auto-add", action="store_true", help="Auto-add suggested batches")
    parser_start.set_defaults(func=cmd_start)

    parser_status = subparsers.add_parser(
        "status",
        help="Show simulation status",
    )
    parser_status.add_argument("simulation_id", help="Simulation ID")
    parser_status.set_defaults(func=cmd_status)

    parser_results = subparsers.add_parser(
        "results",
        help="Show simulation results",
    )
    parser_results.add_argument("simulation_id", help="Simulation ID")
    parser_results.set_defaults(func=cmd_results)

    parser_watch = subparsers.add_parser(
        "watch",
        help="Follow a running simulation",
    )
    parser_watch.add_argument("simulation_id", help="Simulation ID")
    parser_watch.add_argument("--seconds", type=float, default=60, help="How long to follow")
    parser_watch.add_argument("--suggestions", action="store_true", help="Fetch suggested batches")
    parser_watch.add_argument("--auto-add", action="store_true", help="Auto-add suggested batches")
    parser_watch.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser_watch.set_defaults(func=cmd_watch)

    parser_move = subparsers.add_parser(
        "move",
        help="Move a batch (time is snapped to the configured increment)",
    )
    parser_move.add_argument("simulation_id", help="Simulation ID")
    parser_move.add_argument("batch_id", help="Batch ID")
    parser_move.add_argument("start_time", help="New start time (HH:MM)")
    parser_move.add_argument("rack", help="Target rack (1-12 or rack-N)")
    parser_move.set_defaults(func=cmd_move)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
