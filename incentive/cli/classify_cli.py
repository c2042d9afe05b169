"""
Command-line interface for content classification and period detection.

Usage:
    incentive-classify analyze --request <request.json>
    incentive-classify execute --request <request.json> [options]
    incentive-classify detect-periods --request <request.json>
"""

import argparse
import sys

from incentive import service
from incentive.observability.logger import get_logger

from incentive.cli.common import (
    add_db_arguments,
    add_request_argument,
    exit_code,
    open_store,
    print_response,
    read_request,
)

logger = get_logger(__name__)


def analyze_command(args) -> int:
    response = service.analyze(read_request(args.request))
    print_response(response)
    if response.get("requiresHumanReview"):
        logger.warning("Proposal requires human review before execution")
    return exit_code(response)


def execute_command(args) -> int:
    """
    Import the confirmed content units of a proposal.

    Args:
        args: Command-line arguments
    """
    request = read_request(args.request)
    with open_store(args) as store:
        response = service.execute(request, store)
    print_response(response)
    return exit_code(response)


def detect_periods_command(args) -> int:
    response = service.detect_periods(read_request(args.request))
    print_response(response)
    return exit_code(response)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Classify uploaded workbooks and import confirmed content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Propose a classification for every tab (no database needed)
  incentive-classify analyze --request upload.json

  # Import the confirmed units
  incentive-classify execute --request confirmed.json

  # List the periods present in mapped sheets
  incentive-classify detect-periods --request sheets.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser("analyze", help="Classify the tabs of uploaded files")
    add_request_argument(analyze_parser)

    execute_parser = subparsers.add_parser("execute", help="Import confirmed content units")
    add_request_argument(execute_parser)
    add_db_arguments(execute_parser)

    detect_parser = subparsers.add_parser("detect-periods", help="Detect periods in field-mapped sheets")
    add_request_argument(detect_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "analyze": analyze_command,
        "execute": execute_command,
        "detect-periods": detect_periods_command,
    }

    try:
        sys.exit(commands[args.command](args))
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
