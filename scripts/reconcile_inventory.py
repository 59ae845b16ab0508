"""Rewrite product and tier counters from the draw ledger.

Usage: ``python scripts/reconcile_inventory.py [--dry-run] [--product ID]``.
Exits 1 when a ledger defect that counters cannot fix is found.
"""

from __future__ import annotations

import argparse

from kujibox.config import configure_logging
from kujibox.db.engine import get_sessionmaker, make_engine
from kujibox.draw.reconciliation import reconcile_all


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="report only, write nothing")
    parser.add_argument("--product", type=int, default=None, help="only this product id")
    args = parser.parse_args()

    configure_logging()
    Session = get_sessionmaker(make_engine())
    with Session.begin() as session:
        reports = reconcile_all(session, repair=not args.dry_run, product_id=args.product)

    defects = 0
    for report in reports:
        if report.is_consistent:
            status = "OK"
        elif report.repaired and report.ledger_consistent:
            status = "REPAIRED"
        else:
            status = "DRIFT" if report.ledger_consistent else "LEDGER DEFECT"
        print(f"product {report.product_id}: {status}")
        for finding in report.findings:
            print(f"  - {finding}")
        if not report.ledger_consistent:
            defects += 1
    print(f"Checked {len(reports)} product(s), {defects} with ledger defects.")
    return 1 if defects else 0


if __name__ == "__main__":
    raise SystemExit(main())
