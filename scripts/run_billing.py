#!/usr/bin/env python3
"""Run billing operations against a generated subscriber portfolio.

Seeds an in-memory store with synthetic customers and subscriptions,
then runs one of:

- daily: the scheduled tasks for a given moment (default now)
- generate: invoice generation for one business unit and month
- recalculate: balance recalculation for every subscription
"""

import argparse
import sys
from datetime import date, datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from isp_billing.config import BillingConfig
from isp_billing.engine import BillingScheduler, InvoiceService
from isp_billing.exceptions import BillingError
from isp_billing.generators import SubscriberPortfolioScenario
from isp_billing.logging import get_logger, setup_logging
from isp_billing.sinks import ConsoleSink, create_gateway

logger = get_logger(__name__)


def build_gateway(config: BillingConfig, sink: str | None):
    """Delivery backend for this run; console unless told otherwise."""
    if sink is None:
        return ConsoleSink()
    config.notifications.sink = sink
    return create_gateway(config)


def cmd_daily(args: argparse.Namespace, scheduler: BillingScheduler) -> int:
    now = datetime.fromisoformat(args.now) if args.now else None
    report = scheduler.run_scheduled_tasks(now)

    for line in report.tasks_executed:
        logger.info("  %s", line)
    for outcome in report.invoice_generation:
        logger.info(
            "  %s: generated=%d skipped=%d sent=%d",
            outcome.business_unit,
            outcome.generated,
            outcome.skipped,
            outcome.sent,
        )
    for error in report.errors:
        logger.error("  %s", error)
    return 0 if report.success else 1


def cmd_generate(args: argparse.Namespace, invoices: InvoiceService) -> int:
    matches = [
        bu
        for bu in invoices.store.list_business_units()
        if bu.name.lower() == args.business_unit.lower()
    ]
    if not matches:
        logger.error("Unknown business unit: %s", args.business_unit)
        return 1

    today = date.today()
    result = invoices.generate_invoices_for_business_unit(
        matches[0].business_unit_id,
        args.year or today.year,
        args.month or today.month,
        send_notifications=not args.no_notify,
    )
    logger.info(
        "Generated %d invoices, skipped %d, sent %d notifications",
        result.generated,
        result.skipped,
        result.notifications_sent,
    )
    for error in result.errors:
        logger.error("  %s", error)
    return 0 if result.success else 1


def cmd_recalculate(args: argparse.Namespace, invoices: InvoiceService) -> int:
    failures = 0
    changed = 0
    for subscription in invoices.store.list_subscriptions():
        result = invoices.recalculate_balance(subscription.subscription_id)
        if not result.success:
            failures += 1
            logger.error("%s: %s", subscription.subscription_id, "; ".join(result.errors))
        elif result.previous_balance != result.new_balance:
            changed += 1
    logger.info("Recalculated balances: %d changed, %d failed", changed, failures)
    return 0 if failures == 0 else 1


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run ISP billing operations on a generated portfolio"
    )
    parser.add_argument(
        "--customers",
        type=int,
        default=50,
        help="Number of customers to generate (default: 50)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducibility",
    )
    parser.add_argument(
        "--sink",
        choices=["console", "sms", "kafka"],
        default=None,
        help="Notification backend (default: console)",
    )
    parser.add_argument(
        "--log-format",
        choices=["standard", "json"],
        default="standard",
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    daily = subparsers.add_parser("daily", help="Run today's scheduled tasks")
    daily.add_argument("--now", help="ISO timestamp to run as (default: now)")

    generate = subparsers.add_parser("generate", help="Generate invoices for a business unit")
    generate.add_argument("business_unit", help="Business unit name, e.g. Bulihan")
    generate.add_argument("--year", type=int, default=None)
    generate.add_argument("--month", type=int, default=None)
    generate.add_argument("--no-notify", action="store_true", help="Skip notifications")

    subparsers.add_parser("recalculate", help="Recalculate every subscription balance")

    args = parser.parse_args()

    config = BillingConfig.from_env()
    setup_logging(config.log_level, args.log_format)

    scenario = SubscriberPortfolioScenario(num_customers=args.customers, seed=args.seed)
    store = scenario.generate()

    try:
        gateway = build_gateway(config, args.sink)
    except BillingError as exc:
        logger.error("Cannot start: %s", exc)
        sys.exit(2)

    invoices = InvoiceService(store, config, gateway)
    try:
        if args.command == "daily":
            scheduler = BillingScheduler(store, config, gateway, invoices=invoices)
            code = cmd_daily(args, scheduler)
        elif args.command == "generate":
            code = cmd_generate(args, invoices)
        else:
            code = cmd_recalculate(args, invoices)
    finally:
        gateway.close()

    logger.info("Store after run: %s", store.summary())
    sys.exit(code)


if __name__ == "__main__":
    main()
