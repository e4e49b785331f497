"""Management CLI for the billing maintenance passes.

Usage:
    python -m app.cli sweep-overdue       # Mark past-due sent invoices overdue
    python -m app.cli audit               # Repair inconsistent invoice money fields
    python -m app.cli recompute-clients   # Recompute every client's rollups
    python -m app.cli maintenance         # All three, as the daily scheduler does
"""

import argparse
import asyncio
import sys

from app.main import configure_logging
from app.services.scheduler import run_pass, run_daily_maintenance


def sweep_overdue():
    from app.services.overdue import run_overdue_sweep

    summary = asyncio.run(run_pass("overdue_sweep", run_overdue_sweep))
    if summary is None:
        print("Overdue sweep FAILED (see log)")
        return 1
    print(
        f"  Marked {summary['updated_count']} invoice(s) overdue "
        f"of {summary['total_overdue']} past due ({summary['failed']} failed)"
    )
    return 0


def audit():
    from app.services.audit import run_consistency_audit

    summary = asyncio.run(run_pass("consistency_audit", run_consistency_audit))
    if summary is None:
        print("Consistency audit FAILED (see log)")
        return 1
    print(
        f"  Fixed {summary['fixed_invoices']} out of {summary['total_invoices']} invoices "
        f"({summary['failed']} failed)"
    )
    for rule, count in summary["by_rule"].items():
        print(f"    {rule}: {count}")
    return 0


def recompute_clients():
    from app.services.aggregates import recompute_all_client_stats

    summary = asyncio.run(run_pass("recompute_clients", recompute_all_client_stats))
    if summary is None:
        print("Client recompute FAILED (see log)")
        return 1
    print(f"  Updated {summary['updated']}/{summary['total']} client(s) ({summary['failed']} failed)")
    return 0


def maintenance():
    results = asyncio.run(run_daily_maintenance())
    for name, summary in results.items():
        print(f"  {name}: {'FAILED' if summary is None else summary}")
    return 1 if any(summary is None for summary in results.values()) else 0


COMMANDS = {
    "sweep-overdue": sweep_overdue,
    "audit": audit,
    "recompute-clients": recompute_clients,
    "maintenance": maintenance,
}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run billing maintenance passes")
    parser.add_argument("command", choices=list(COMMANDS), help="Pass to run")
    args = parser.parse_args(argv)

    configure_logging()
    return COMMANDS[args.command]()


if __name__ == "__main__":
    sys.exit(main())
