"""
Command-line front end for the NextBus client.

Runs one feed command and prints the decoded result:
    python run.py agencies
    python run.py routes --agency mit
    python run.py route-config --agency mit --route saferidecampshut
    python run.py predictions --agency mit --route saferidecampshut --stop mass84_d
    python run.py multi-predictions --agency mit --stop "saferidecampshut|mass84_d" --stop "saferidecampshut|kres"
    python run.py schedule --agency mit --route saferidecampshut
    python run.py messages --agency mit --route saferidecampshut
    python run.py vehicles --agency mit --route saferidecampshut --time 0

Add --url-only to print the validated request URL without fetching.
Set NEXTBUS_TEST_MODE=1 to answer from canned documents instead of the network.
"""
import argparse
import sys
from datetime import datetime
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from nextbus import ClientConfig, Command, NextBusError
from nextbus.mock_client import get_nextbus_client


SUBCOMMANDS = {
    'agencies': Command.AGENCY_LIST,
    'routes': Command.ROUTE_LIST,
    'route-config': Command.ROUTE_CONFIG,
    'predictions': Command.PREDICTIONS,
    'multi-predictions': Command.PREDICTIONS_FOR_MULTI_STOPS,
    'schedule': Command.SCHEDULE,
    'messages': Command.MESSAGES,
    'vehicles': Command.VEHICLE_LOCATIONS,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Query the NextBus public XML feed')
    parser.add_argument('--config', help='Path to JSON client config')
    parser.add_argument('--url-only', action='store_true', help='Print the request URL and exit')

    subparsers = parser.add_subparsers(dest='subcommand', required=True)
    for name, command in SUBCOMMANDS.items():
        sub = subparsers.add_parser(name, help=f"Run the {command.value} command")
        sub.add_argument('--agency', '-a', help='Agency tag')
        sub.add_argument('--route', '-r', action='append', dest='routes', help='Route tag (repeatable)')
        sub.add_argument('--stop', '-s', action='append', dest='stops', help='Stop tag (repeatable)')
        sub.add_argument('--time', '-t', type=int, help='Epoch milliseconds (vehicles only)')
    return parser


def load_config(path) -> ClientConfig:
    base = ClientConfig.load(path) if path else None
    return ClientConfig.from_env(base)


def _fmt_time(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime('%H:%M:%S')


def print_result(command: Command, result) -> None:
    """Human-readable dump of a decoded aggregate."""
    if command is Command.AGENCY_LIST:
        for agency in result:
            short = f" ({agency.short_title})" if agency.short_title else ""
            print(f"{agency.tag:<24} {agency.title}{short} - {agency.region_title}")

    elif command is Command.ROUTE_LIST:
        for route in result:
            print(f"{route.tag:<24} {route.title}")

    elif command is Command.ROUTE_CONFIG:
        for route in result:
            print(f"{route.tag}: {route.title} (#{route.color})")
            print(f"  {len(route.stops)} stops, {len(route.directions)} directions, {len(route.paths)} paths")
            for direction in route.directions:
                names = ', '.join(stop.title for stop in route.stops_for(direction))
                print(f"  [{direction.tag}] {direction.title}: {names}")

    elif command in (Command.PREDICTIONS, Command.PREDICTIONS_FOR_MULTI_STOPS):
        blocks = [result] if command is Command.PREDICTIONS else list(result)
        for block in blocks:
            print(f"{block.route_title} @ {block.stop_title}")
            if block.dir_title_because_no_predictions:
                print(f"  No predictions ({block.dir_title_because_no_predictions})")
            for direction in block.directions:
                for p in direction.predictions:
                    print(f"  {direction.title:<30} {p.minutes:>3} min  ({_fmt_time(p.epoch_time)})")
            for message in block.messages:
                print(f"  ! {message.text}")

    elif command is Command.SCHEDULE:
        for route in result:
            print(f"{route.title} - {route.service_class} / {route.direction}")
            print("  " + " | ".join(stop.title for stop in route.header_stops))
            for block in route.blocks:
                print("  " + " | ".join(stop.time_text for stop in block.stops))

    elif command is Command.MESSAGES:
        for route in result:
            for message in route.messages:
                print(f"[{route.route_tag}] {message.text}")

    elif command is Command.VEHICLE_LOCATIONS:
        for vehicle in result:
            print(f"{vehicle.id:<8} {vehicle.route_tag:<16} {vehicle.lat:.5f},{vehicle.lon:.5f} "
                  f"{vehicle.secs_since_report}s ago")
        if result.last_time is not None:
            print(f"lastTime={result.last_time}")


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    command = SUBCOMMANDS[args.subcommand]

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not load config: {e}")
        return 1

    client = get_nextbus_client(config)
    try:
        query = client.query(command)
        if args.agency is not None:
            query.agency(args.agency)
        if args.routes:
            query.routes(args.routes)
        if args.stops:
            query.stops(args.stops)
        if args.time is not None:
            query.time(args.time)

        if args.url_only:
            print(query.url())
            return 0

        print_result(command, query.get())
        return 0
    except NextBusError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        client.close()


if __name__ == '__main__':
    sys.exit(main())
