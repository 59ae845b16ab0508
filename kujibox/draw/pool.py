"""Pool lifecycle: publishing a pool with its commitment, revealing, closing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from kujibox import config
from kujibox.errors import InvalidParameter, MissingParameter
from kujibox.fairness.commitment import (
    Commitment,
    assign_tickets,
    generate_commitment,
    seed_commitment,
)
from kujibox.models import PoolTicket, PrizeTier, Product, TierLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierSpec:
    """Operator input describing one prize tier of a new pool."""

    level: str
    name: str
    total: int
    probability: float = 0.0
    image_url: Optional[str] = None


def _validate_tiers(tiers: Sequence[TierSpec]) -> list[tuple[TierLevel, TierSpec]]:
    if not tiers:
        raise MissingParameter("prizes")

    parsed: list[tuple[TierLevel, TierSpec]] = []
    seen: set[TierLevel] = set()
    for spec in tiers:
        if spec.level is None or spec.level == "":
            raise MissingParameter("level")
        level = TierLevel.parse(spec.level)
        if level in seen:
            raise InvalidParameter("level", f"Duplicate prize tier level {level.label!r}")
        seen.add(level)
        if not spec.name or not spec.name.strip():
            raise MissingParameter("name", f"Prize tier {level.label} needs a name")
        if isinstance(spec.total, bool) or not isinstance(spec.total, int) or spec.total <= 0:
            raise InvalidParameter(
                "total", f"Prize tier {level.label} total must be a positive integer"
            )
        if level.is_last_one and spec.total != 1:
            raise InvalidParameter("total", "The Last One tier must have exactly one prize")
        if spec.probability is None or spec.probability < 0:
            raise InvalidParameter(
                "probability", f"Prize tier {level.label} probability must be >= 0"
            )
        parsed.append((level, spec))

    if all(level.is_last_one for level, _ in parsed):
        raise InvalidParameter("prizes", "A pool needs at least one numbered prize tier")
    return sorted(parsed, key=lambda item: item[0])


def create_pool(
    session: Session,
    *,
    name: str,
    tiers: Sequence[TierSpec],
    image_url: Optional[str] = None,
    commitment: Optional[Commitment] = None,
) -> Product:
    """Publish a new draw pool.

    The seed commitment is generated (unless supplied), the product and its
    tiers are stored, and every numbered ticket is assigned to a tier by a
    seed-driven shuffle. ``total_count`` is the sum of the numbered tier
    totals; the Last One tier sits outside the numbered pool.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session used for persistence.
    name : str
        Display name of the pool.
    tiers : Sequence[TierSpec]
        Prize tiers. Levels must be unique; at most one Last One tier with a
        total of exactly one.
    image_url : Optional[str], default: None
        Cover image reference owned by the catalog.
    commitment : Optional[Commitment], default: None
        Pre-generated commitment. Typically omitted so a fresh seed is drawn
        from the OS CSPRNG.

    Returns
    -------
    Product
        The flushed product with ``tiers`` and ``tickets`` populated.
    """
    if not name or not name.strip():
        raise MissingParameter("name")
    parsed = _validate_tiers(tiers)

    if commitment is None:
        commitment = generate_commitment(config.seed_bytes())
    elif seed_commitment(commitment.seed) != commitment.commitment_hash:
        raise InvalidParameter("commitment", "Commitment hash does not match its seed")

    total_count = sum(spec.total for level, spec in parsed if not level.is_last_one)
    product = Product(
        name=name.strip(),
        image_url=image_url,
        status="active",
        total_count=total_count,
        remaining=total_count,
        seed=commitment.seed,
        commitment_hash=commitment.commitment_hash,
    )
    for level, spec in parsed:
        product.tiers.append(
            PrizeTier(
                level=level.label,
                name=spec.name.strip(),
                image_url=spec.image_url,
                total=spec.total,
                remaining=spec.total,
                probability=float(spec.probability),
            )
        )
    session.add(product)
    session.flush()

    slots = [tier for tier in product.numbered_tiers for _ in range(tier.total)]
    for number, tier in enumerate(assign_tickets(commitment.seed, slots), start=1):
        product.tickets.append(PoolTicket(number=number, prize_tier_id=tier.id))
    session.flush()

    logger.info(
        "Published pool %s (%s) with %d tickets across %d tiers, commitment %s",
        product.id,
        product.name,
        total_count,
        len(parsed),
        product.commitment_hash,
    )
    return product


def reveal_seed(session: Session, product: Product, *, force: bool = False) -> Product:
    """Reveal the seed of an exhausted (or, with ``force``, any) pool.

    Revealing is idempotent. A pool that still has tickets, deactivated or
    not, cannot be revealed without ``force`` because the seed would let
    anyone predict the remaining draws.
    """
    if product.is_seed_revealed:
        return product
    if not force and not product.is_exhausted:
        raise InvalidParameter(
            "force",
            f"Product {product.id} still has {product.remaining} tickets; "
            "reveal requires force=True",
        )
    if force and product.status == "active" and not product.is_exhausted:
        # Once the seed is public the remaining draws are predictable.
        product.status = "inactive"
    product.seed_revealed_at = datetime.now(timezone.utc)
    session.flush()
    logger.info("Revealed seed of product %s", product.id)
    return product


def deactivate_pool(session: Session, product: Product) -> Product:
    """Stop further draws. Archived pools stay archived."""
    if product.status == "active":
        product.status = "inactive"
        session.flush()
        logger.info("Deactivated product %s", product.id)
    return product


__all__ = ["TierSpec", "create_pool", "deactivate_pool", "reveal_seed"]
