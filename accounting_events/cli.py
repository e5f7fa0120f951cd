"""
Accounting Events - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for fetching and exporting events.

- Lists sources with their mode and capabilities
- Fetches one source or a batch of sources for an account
- Writes CSV or JSON only when validation reports no errors
- Logs to stderr; exported data goes to stdout or --output

============================================================
USAGE
============================================================
python -m accounting_events sources
python -m accounting_events fetch hyperliquid 0xabc... --format csv
python -m accounting_events batch cosmos1... --sources cosmos-hub-staking,osmosis-staking
python -m accounting_events fetch aevo 0xabc... --api-key ... --api-secret ...

Exit codes:
  0   exported
  1   fetch failed
  2   export refused (validation errors)
  130 interrupted

============================================================
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from accounting_events.config import load_config
from accounting_events.exceptions import AccountingEventsError, ExportRefusedError
from accounting_events.logging_utils import setup_logging
from accounting_events.models import Credentials, Event, SourceStatus, ValidationError
from accounting_events.service import EventService


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REFUSED = 2
EXIT_INTERRUPTED = 130


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="accounting-events",
        description="Fetch per-account accounting events and export them for tax tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  strict    - exported as-is after validation
  assisted  - must be reviewed by a human before use
  partial   - only a fixed subset of event categories is exported
  blocked   - refused with an explanation

Examples:
  %(prog)s sources
  %(prog)s fetch hyperliquid 0x... --output events.csv
  %(prog)s batch osmo1... --sources osmosis-staking,levana-osmosis --format json
        """
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sources", help="List registered sources")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch and export one source")
    fetch_parser.add_argument("source_id", help="Source id (see 'sources')")
    fetch_parser.add_argument("account", help="Account address")

    batch_parser = subparsers.add_parser("batch", help="Fetch several sources and export the merge")
    batch_parser.add_argument("account", help="Account address")
    batch_parser.add_argument(
        "--sources",
        required=True,
        metavar="IDS",
        help="Comma separated source ids",
    )

    for sub in (fetch_parser, batch_parser):
        # --------------------------------------------------------
        # Output Options
        # --------------------------------------------------------
        output_group = sub.add_argument_group("Output Options")
        output_group.add_argument(
            "--format", "-f",
            choices=["csv", "json"],
            default="csv",
            help="Export format (default: csv)",
        )
        output_group.add_argument(
            "--output", "-o",
            metavar="PATH",
            help="Write to a file instead of stdout",
        )

        # --------------------------------------------------------
        # Credential Options
        # --------------------------------------------------------
        credential_group = sub.add_argument_group("Credential Options")
        credential_group.add_argument(
            "--api-key",
            default=os.getenv("AE_API_KEY"),
            help="API key for sources that need one (default: $AE_API_KEY)",
        )
        credential_group.add_argument(
            "--api-secret",
            default=os.getenv("AE_API_SECRET"),
            help="API secret (default: $AE_API_SECRET)",
        )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    # --------------------------------------------------------
    # System Options
    # --------------------------------------------------------
    parser.add_argument(
        "--config", "-c",
        metavar="PATH",
        help="YAML config file (default: environment variables)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# OUTPUT
# ============================================================

def _credentials(args: argparse.Namespace) -> Optional[Credentials]:
    if not args.api_key and not args.api_secret:
        return None
    return Credentials(api_key=args.api_key, api_secret=args.api_secret)


def _write_export(
    service: EventService,
    args: argparse.Namespace,
    events: Sequence[Event],
    errors: Sequence[ValidationError],
) -> int:
    """Export through the gate and write the result."""
    try:
        if args.format == "json":
            content = service.export_json(events, errors)
        else:
            content = service.export_csv(events, errors)
    except ExportRefusedError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_REFUSED

    if args.output:
        newline = "" if args.format == "csv" else None
        with open(Path(args.output), "w", encoding="utf-8", newline=newline) as f:
            f.write(content)
        print(f"Wrote {len(events)} events to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(content)
        if args.format == "json":
            sys.stdout.write("\n")
    return EXIT_OK


def print_sources(service: EventService) -> None:
    """Print the source table."""
    print(f"{'ID':24s} {'MODE':9s} {'AUTH':5s} CAPABILITIES")
    print("=" * 78)
    for d in service.list_sources():
        capabilities = ", ".join(sorted(c.value for c in d.capabilities)) or "-"
        auth = "yes" if d.requires_credentials else "no"
        print(f"{d.id:24s} {d.mode.value:9s} {auth:5s} {capabilities}")


def _print_status(source_id: str, status: SourceStatus) -> None:
    print(f"  [{status.value:9s}] {source_id}", file=sys.stderr)


# ============================================================
# COMMANDS
# ============================================================

async def run_fetch(service: EventService, args: argparse.Namespace) -> int:
    result = await service.events(args.source_id, args.account, _credentials(args))

    print(
        f"{result.source_name}: {result.count} events, mode={result.mode.value}",
        file=sys.stderr,
    )
    if result.review_required:
        print("  Review required before these events are trusted.", file=sys.stderr)
    if result.partial_coverage:
        print("  Partial coverage: only a subset of events is exported.", file=sys.stderr)
    if result.truncated:
        print("  Results truncated at the page limit.", file=sys.stderr)

    return _write_export(service, args, result.events, result.validation_errors)


async def run_batch(service: EventService, args: argparse.Namespace) -> int:
    source_ids = [s.strip() for s in args.sources.split(",") if s.strip()]
    result = await service.batch_events(
        source_ids,
        args.account,
        _credentials(args),
        on_status=_print_status,
    )

    print(
        f"Merged {result.count} events from {len(result.outcomes) - len(result.failed_sources)} "
        f"of {len(result.outcomes)} sources",
        file=sys.stderr,
    )
    for source_id in result.failed_sources:
        error = result.outcomes[source_id].error or {}
        print(f"  {source_id}: {error.get('message', 'failed')}", file=sys.stderr)
    if result.dropped_duplicates:
        print(f"  Dropped {len(result.dropped_duplicates)} duplicate events", file=sys.stderr)

    return _write_export(service, args, result.merged_events, result.validation_errors)


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    config = load_config(args.config)
    service = EventService.from_config(config)

    if args.command == "sources":
        print_sources(service)
        return EXIT_OK

    try:
        if args.command == "fetch":
            return await run_fetch(service, args)
        return await run_batch(service, args)
    except AccountingEventsError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.user_action:
            print(f"  {e.user_action}", file=sys.stderr)
        logger.debug(f"Failure details: {e.to_dict()}")
        return EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_format=args.log_format)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return EXIT_INTERRUPTED


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
