"""Inventory reconciliation against the draw ledger.

The ``remaining`` columns on products and prize tiers are caches. The
ledger (``draw_records``) is the source of truth, so reconciliation
recomputes every counter from it and, when asked, rewrites drifted
counters. Ledger defects (a ticket consumed twice, several Last One
records, a ticket recorded against the wrong tier) cannot be fixed by
touching counters; they are reported and left for an operator.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from kujibox.errors import ConsistencyViolation
from kujibox.models import DrawRecord, PoolTicket, Product

logger = logging.getLogger(__name__)


@dataclass
class TierCount:
    tier_id: int
    level: str
    total: int
    actual: int
    expected: int

    @property
    def drifted(self) -> bool:
        return self.actual != self.expected


@dataclass
class ReconciliationReport:
    """Result of auditing one product against its ledger."""

    product_id: int
    total_count: int
    actual_remaining: int
    expected_remaining: int
    tiers: list[TierCount] = field(default_factory=list)
    duplicate_tickets: list[int] = field(default_factory=list)
    out_of_range_tickets: list[int] = field(default_factory=list)
    misassigned_tickets: list[int] = field(default_factory=list)
    last_one_records: int = 0
    repaired: bool = False

    @property
    def counters_consistent(self) -> bool:
        return self.actual_remaining == self.expected_remaining and not any(
            t.drifted for t in self.tiers
        )

    @property
    def ledger_consistent(self) -> bool:
        return not (
            self.duplicate_tickets
            or self.out_of_range_tickets
            or self.misassigned_tickets
            or self.last_one_records > 1
            or self.expected_remaining < 0
            or any(t.expected < 0 for t in self.tiers)
        )

    @property
    def is_consistent(self) -> bool:
        return self.counters_consistent and self.ledger_consistent

    @property
    def findings(self) -> list[str]:
        """Human readable description of every problem found."""
        out: list[str] = []
        if self.actual_remaining != self.expected_remaining:
            out.append(
                f"product {self.product_id} remaining is {self.actual_remaining}, "
                f"ledger implies {self.expected_remaining}"
            )
        for tier in self.tiers:
            if tier.drifted:
                out.append(
                    f"tier {tier.tier_id} ({tier.level}) remaining is {tier.actual}, "
                    f"ledger implies {tier.expected}"
                )
            if tier.expected < 0:
                out.append(
                    f"tier {tier.tier_id} ({tier.level}) was drawn "
                    f"{tier.total - tier.expected} times but only holds {tier.total}"
                )
        if self.duplicate_tickets:
            out.append(f"tickets consumed more than once: {self.duplicate_tickets}")
        if self.out_of_range_tickets:
            out.append(
                f"tickets outside 1..{self.total_count}: {self.out_of_range_tickets}"
            )
        if self.misassigned_tickets:
            out.append(
                f"tickets recorded against the wrong tier: {self.misassigned_tickets}"
            )
        if self.last_one_records > 1:
            out.append(f"{self.last_one_records} Last One records, expected at most 1")
        return out

    def to_json(self) -> dict:
        return {
            "productId": self.product_id,
            "consistent": self.is_consistent,
            "repaired": self.repaired,
            "findings": self.findings,
        }


def audit_product(session: Session, product: Product) -> ReconciliationReport:
    """Recompute every counter of ``product`` from its ledger without writing."""
    records = DrawRecord.for_product(session, product.id)
    assignment = dict(
        session.execute(
            select(PoolTicket.number, PoolTicket.prize_tier_id).where(
                PoolTicket.product_id == product.id
            )
        ).all()
    )

    numbered = [r for r in records if not r.is_last_one]
    ticket_uses = Counter(r.ticket_number for r in numbered)
    per_tier = Counter(r.product_prize_id for r in records)

    report = ReconciliationReport(
        product_id=product.id,
        total_count=product.total_count,
        actual_remaining=product.remaining,
        expected_remaining=product.total_count - len(ticket_uses),
        duplicate_tickets=sorted(n for n, uses in ticket_uses.items() if uses > 1),
        out_of_range_tickets=sorted(
            n for n in ticket_uses if n < 1 or n > product.total_count
        ),
        misassigned_tickets=sorted(
            {
                r.ticket_number
                for r in numbered
                if r.ticket_number in assignment
                and assignment[r.ticket_number] != r.product_prize_id
            }
        ),
        last_one_records=len(records) - len(numbered),
    )
    for tier in sorted(product.tiers, key=lambda t: t.tier_level):
        report.tiers.append(
            TierCount(
                tier_id=tier.id,
                level=tier.level,
                total=tier.total,
                actual=tier.remaining,
                expected=tier.total - per_tier.get(tier.id, 0),
            )
        )
    return report


def check_invariants(session: Session, product: Product) -> ReconciliationReport:
    """Raise :class:`ConsistencyViolation` unless ``product`` matches its ledger."""
    report = audit_product(session, product)
    if not report.is_consistent:
        raise ConsistencyViolation(
            f"Product {product.id} is inconsistent with its draw ledger",
            findings=report.findings,
        )
    return report


def reconcile_product(
    session: Session, product: Product, *, repair: bool = True
) -> ReconciliationReport:
    """Audit ``product`` and rewrite drifted counters from the ledger.

    Counters are only rewritten when the ledger itself is sound and the
    recomputed value fits the column range. A defective ledger is reported
    and left untouched.
    """
    report = audit_product(session, product)
    if report.is_consistent:
        logger.debug("Product %s is consistent with its ledger", product.id)
        return report

    for finding in report.findings:
        logger.warning("Reconciliation of product %s: %s", product.id, finding)
    if not report.ledger_consistent:
        logger.error(
            "Product %s has ledger defects that counters cannot repair", product.id
        )

    if not repair or report.counters_consistent or not report.ledger_consistent:
        return report

    tiers = {tier.id: tier for tier in product.tiers}
    if 0 <= report.expected_remaining <= product.total_count:
        product.remaining = report.expected_remaining
    for count in report.tiers:
        if count.drifted and 0 <= count.expected <= count.total:
            tiers[count.tier_id].remaining = count.expected
    session.flush()
    report.repaired = True
    logger.info(
        "Rewrote counters of product %s from its ledger (remaining=%d)",
        product.id,
        product.remaining,
    )
    return report


def reconcile_all(
    session: Session, *, repair: bool = True, product_id: Optional[int] = None
) -> list[ReconciliationReport]:
    """Reconcile every product, or only ``product_id`` when given."""
    stmt = select(Product).order_by(Product.id)
    if product_id is not None:
        stmt = stmt.where(Product.id == product_id)
    return [
        reconcile_product(session, product, repair=repair)
        for product in session.scalars(stmt).all()
    ]


__all__ = [
    "ReconciliationReport",
    "TierCount",
    "audit_product",
    "check_invariants",
    "reconcile_all",
    "reconcile_product",
]
