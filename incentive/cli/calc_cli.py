"""
Command-line interface for calculation runs and the batch lifecycle.

Usage:
    incentive-calc run --request <request.json> [options]
    incentive-calc transition --request <request.json> [options]
    incentive-calc load-plan --tenant <tenant_id> --plan <plan.yaml> [options]
    incentive-calc batches --tenant <tenant_id> [--period <period_id>] [options]
    incentive-calc plans --tenant <tenant_id> [--status <status>] [options]
"""

import argparse
import sys

from incentive import service
from incentive.core.errors import StructuralError
from incentive.core.rules import PlanConfigLoader, PlanEngine
from incentive.observability.logger import get_logger
from incentive.observability.metrics import generate_metrics

from incentive.cli.common import (
    add_db_arguments,
    add_request_argument,
    exit_code,
    open_store,
    print_response,
    read_request,
)

logger = get_logger(__name__)


def run_command(args) -> int:
    """
    Calculate one period under one rule set.

    Args:
        args: Command-line arguments
    """
    request = read_request(args.request)
    logger.info(f"Running calculation for period {request.get('periodId')} rule set {request.get('ruleSetId')}")

    with open_store(args) as store:
        response = service.run_calculation(request, store, max_workers=args.workers)

    if args.metrics_file:
        with open(args.metrics_file, "wb") as f:
            f.write(generate_metrics())
        logger.info(f"Wrote run metrics to {args.metrics_file}")

    if args.summary:
        response = {k: v for k, v in response.items() if k != "results"}
    print_response(response)
    return exit_code(response)


def transition_command(args) -> int:
    request = read_request(args.request)
    with open_store(args) as store:
        response = service.transition_batch(request, store)
    print_response(response)
    return exit_code(response)


def load_plan_command(args) -> int:
    """
    Validate a YAML plan and store it as a rule set.

    Args:
        args: Command-line arguments
    """
    rule_set = PlanConfigLoader(args.plan).load_rule_set(tenant_id=args.tenant)
    if args.status:
        rule_set = rule_set.model_copy(update={"status": args.status})

    with open_store(args) as store:
        store.save_rule_set(rule_set)

    logger.info(f"Stored rule set {rule_set.id} ({rule_set.name})")
    print_response({
        "success": True,
        "ruleSetId": rule_set.id,
        "name": rule_set.name,
        "status": rule_set.status,
        "variants": [v.variant_name for v in rule_set.variants],
        "componentCount": rule_set.component_count(),
    })
    return 0


def batches_command(args) -> int:
    with open_store(args) as store:
        batches = store.list_batches(args.tenant, period_id=args.period, rule_set_id=args.rule_set)

    print(f"\n{'=' * 80}")
    print(f"CALCULATION BATCHES FOR TENANT: {args.tenant}")
    print(f"{'=' * 80}\n")
    if not batches:
        print("No batches found.")
        return 0

    for batch in batches:
        total = batch.summary.get("total_payout", 0.0)
        print(
            f"{batch.id}  {batch.lifecycle_state.value:<17} period={batch.period_id} "
            f"rule_set={batch.rule_set_id} entities={batch.entity_count} total={total:.2f}"
        )
    print(f"\nTotal: {len(batches)} batch(es)")
    return 0


def plans_command(args) -> int:
    with open_store(args) as store:
        rule_sets = store.list_rule_sets(args.tenant, status=args.status)

    print(f"\n{'=' * 80}")
    print(f"RULE SETS FOR TENANT: {args.tenant}")
    print(f"{'=' * 80}\n")
    if not rule_sets:
        print("No rule sets found.")
        return 0

    for rule_set in rule_sets:
        try:
            summary = PlanEngine(rule_set).get_plan_summary()
        except StructuralError as e:
            print(f"{rule_set.id}  {rule_set.status:<8} {rule_set.name}  INVALID: {e}")
            continue
        by_type = ", ".join(f"{t}={n}" for t, n in sorted(summary["components_by_type"].items()))
        print(
            f"{summary['rule_set_id']}  {rule_set.status:<8} {summary['rule_set_name']}  "
            f"variants={len(summary['variants'])} components={summary['component_count']} ({by_type})"
        )
    print(f"\nTotal: {len(rule_sets)} rule set(s)")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Incentive calculation runs and batch lifecycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store a plan
  incentive-calc load-plan --tenant acme --plan config/plans/retail_plan.yaml

  # Calculate (request: {"tenantId": "acme", "periodId": "...", "ruleSetId": "retail-2024"})
  incentive-calc run --request run.json --workers 4

  # Lock results (request: {"tenantId": "acme", "batchId": "...", "targetState": "OFFICIAL"})
  incentive-calc transition --request transition.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a calculation")
    add_request_argument(run_parser)
    run_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Evaluate entities on a thread pool of this size",
    )
    run_parser.add_argument(
        "--summary",
        action="store_true",
        help="Omit per-entity results from the output",
    )
    run_parser.add_argument(
        "--metrics-file",
        default=None,
        help="Write Prometheus metrics of the run to this file (textfile collector format)",
    )
    add_db_arguments(run_parser)

    # Transition command
    transition_parser = subparsers.add_parser("transition", help="Move a batch to another lifecycle state")
    add_request_argument(transition_parser)
    add_db_arguments(transition_parser)

    # Load plan command
    plan_parser = subparsers.add_parser("load-plan", help="Validate and store a YAML plan")
    plan_parser.add_argument("--tenant", required=True, help="Tenant ID")
    plan_parser.add_argument("--plan", required=True, help="Path to plan YAML file")
    plan_parser.add_argument(
        "--status",
        choices=["draft", "active", "archived"],
        default=None,
        help="Override the plan status",
    )
    add_db_arguments(plan_parser)

    # Batches command
    batches_parser = subparsers.add_parser("batches", help="List calculation batches")
    batches_parser.add_argument("--tenant", required=True, help="Tenant ID")
    batches_parser.add_argument("--period", default=None, help="Filter by period ID")
    batches_parser.add_argument("--rule-set", default=None, help="Filter by rule set ID")
    add_db_arguments(batches_parser)

    # Plans command
    plans_parser = subparsers.add_parser("plans", help="List stored rule sets")
    plans_parser.add_argument("--tenant", required=True, help="Tenant ID")
    plans_parser.add_argument(
        "--status",
        choices=["draft", "active", "archived"],
        default=None,
        help="Filter by plan status",
    )
    add_db_arguments(plans_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "run": run_command,
        "transition": transition_command,
        "load-plan": load_plan_command,
        "batches": batches_command,
        "plans": plans_command,
    }

    try:
        sys.exit(commands[args.command](args))
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
