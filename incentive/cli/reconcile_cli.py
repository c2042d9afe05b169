"""
Command-line interface for benchmark reconciliation.

Usage:
    incentive-reconcile compare --request <request.json> [options]
"""

import argparse
import sys

from incentive import service
from incentive.observability.logger import get_logger
from incentive.reconciliation import ReconciliationSettings

from incentive.cli.common import (
    add_db_arguments,
    add_request_argument,
    exit_code,
    open_store,
    print_response,
    read_request,
)

logger = get_logger(__name__)


def _print_report(response: dict) -> None:
    summary = response["summary"]
    print(f"\n{'=' * 80}")
    print("RECONCILIATION REPORT")
    print(f"{'=' * 80}\n")
    print(f"Entities:     {summary['total_entities']} "
          f"(matched {summary['matched']}, file only {summary['file_only']}, calculated only {summary['vl_only']})")
    print(f"Flags:        exact {summary['exact_matches']}, tolerance {summary['tolerance_matches']}, "
          f"amber {summary['amber_flags']}, red {summary['red_flags']}")
    print(f"Totals:       file {summary['file_total_amount']:.2f}, calculated {summary['vl_total_amount']:.2f}, "
          f"delta {summary['total_delta']:.2f}")
    print(f"False greens: {response['falseGreenCount']}")
    print(f"Depth:        {response['depthAchieved']}")

    if response["findings"]:
        print(f"\n{'-' * 80}")
        for finding in response["findings"]:
            print(f"[P{finding['priority']}] {finding['type']:<12} {finding['entity_id']:<16} "
                  f"delta={finding['delta']:.2f}  {finding['reason']}")

    depth = response.get("depth") or {}
    if depth.get("recommendations"):
        print(f"\n{'-' * 80}")
        print("Recommendations:")
        for recommendation in depth["recommendations"]:
            print(f"  - {recommendation}")


def compare_command(args) -> int:
    """
    Compare a benchmark file against the results of one batch.

    Args:
        args: Command-line arguments
    """
    request = read_request(args.request)
    settings = None
    if args.tolerance is not None or args.amber is not None:
        defaults = ReconciliationSettings.from_env()
        settings = ReconciliationSettings(
            tolerance=args.tolerance if args.tolerance is not None else defaults.tolerance,
            amber=args.amber if args.amber is not None else defaults.amber,
        )

    with open_store(args) as store:
        response = service.compare(request, store, settings=settings)

    if args.report and response.get("success"):
        _print_report(response)
    else:
        print_response(response)
    return exit_code(response)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Reconcile calculated results against a benchmark payout file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # JSON output
  incentive-reconcile compare --request compare.json

  # Human readable report with a 2% tolerance band
  incentive-reconcile compare --request compare.json --report --tolerance 0.02
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    compare_parser = subparsers.add_parser("compare", help="Compare a benchmark file with a batch")
    add_request_argument(compare_parser)
    compare_parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Relative delta still flagged green (default: $RECON_TOLERANCE or 0.05)",
    )
    compare_parser.add_argument(
        "--amber",
        type=float,
        default=None,
        help="Relative delta flagged amber (default: $RECON_AMBER or 0.15)",
    )
    compare_parser.add_argument(
        "--report",
        action="store_true",
        help="Print a readable report instead of JSON",
    )
    add_db_arguments(compare_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(compare_command(args))
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
