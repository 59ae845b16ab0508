"""Session-level entry points shared by the HTTP API and the scripts.

Except for :func:`run_draw`, every workflow works inside the caller's
session and leaves committing to the caller. :func:`run_draw` owns its
transactions so it can retry a draw that lost a ticket race.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from . import config
from .db.utils import dt_iso
from .draw import pool as pool_ops
from .draw.engine import DrawEngine, DrawOutcome
from .draw.pool import TierSpec
from .draw.rates import (
    RateProvider,
    default_rate_provider,
    display_probabilities,
    get_rate_setting,
    set_profit_rate,
    set_tier_multiplier,
)
from .errors import DrawConflict, InvalidParameter, MissingParameter, StorageFailure
from .fairness.verification import (
    VerificationResult,
    verify_draw,
    verify_pool_commitment,
)
from .models import DrawRecord, Product
from .models.rate import DEFAULT_UPDATED_BY

logger = logging.getLogger(__name__)


def _tier_spec(prize: Union[TierSpec, Mapping[str, Any]]) -> TierSpec:
    if isinstance(prize, TierSpec):
        return prize
    return TierSpec(
        level=prize.get("level"),
        name=prize.get("name"),
        total=prize.get("total"),
        probability=prize.get("probability", 0.0),
        image_url=prize.get("image_url", prize.get("imageUrl")),
    )


def publish_pool(
    session: Session,
    *,
    name: str,
    prizes: Sequence[Union[TierSpec, Mapping[str, Any]]],
    image_url: Optional[str] = None,
) -> Product:
    """Create a pool from operator input and return it with its public commitment.

    ``prizes`` accepts :class:`TierSpec` objects or mappings with ``level``,
    ``name``, ``total`` and optionally ``probability`` and ``image_url``.
    """
    if prizes is None:
        raise MissingParameter("prizes")
    return pool_ops.create_pool(
        session,
        name=name,
        tiers=[_tier_spec(p) for p in prizes],
        image_url=image_url,
    )


def run_draw(
    session_factory: Callable[[], Session],
    product_id: int,
    user_id: str,
    count: Optional[int] = None,
    *,
    ticket_numbers: Optional[Sequence[int]] = None,
    rate_provider: Optional[RateProvider] = None,
    max_attempts: Optional[int] = None,
) -> list[DrawOutcome]:
    """Run one draw request in its own transaction, retrying lost races.

    Each attempt opens a fresh session and transaction. A
    :class:`~kujibox.errors.DrawConflict` rolls the attempt back entirely
    and the request is retried up to ``max_attempts`` times (default
    ``KUJI_DRAW_MAX_ATTEMPTS``). Storage errors surface as
    :class:`~kujibox.errors.StorageFailure`; nothing is committed in that
    case.

    Parameters
    ----------
    session_factory : Callable[[], Session]
        Usually the sessionmaker from :func:`kujibox.db.engine.get_sessionmaker`.
    product_id : int
        Pool to draw from.
    user_id : str
        Acting user.
    count : Optional[int], default: None
        Tickets to draw; see :meth:`DrawEngine.draw`.
    ticket_numbers : Optional[Sequence[int]], default: None
        Explicitly picked tickets.
    rate_provider : Optional[RateProvider], default: None
        Overlay source; defaults to :func:`default_rate_provider`.
    max_attempts : Optional[int], default: None
        Override for ``KUJI_DRAW_MAX_ATTEMPTS``.

    Returns
    -------
    list[DrawOutcome]
        Committed outcomes in consumption order.
    """
    attempts = max_attempts if max_attempts is not None else config.draw_max_attempts()
    if attempts < 1:
        raise InvalidParameter("maxAttempts", "max_attempts must be >= 1")
    provider = rate_provider if rate_provider is not None else default_rate_provider()

    for attempt in range(1, attempts + 1):
        try:
            with session_factory() as session, session.begin():
                engine = DrawEngine(session, rate_provider=provider)
                return engine.draw(
                    product_id, user_id, count, ticket_numbers=ticket_numbers
                )
        except DrawConflict:
            if attempt >= attempts:
                logger.warning(
                    "Draw on product %s for user %s lost %d ticket races; giving up",
                    product_id,
                    user_id,
                    attempts,
                )
                raise
            logger.info(
                "Draw on product %s conflicted (attempt %d/%d); retrying",
                product_id,
                attempt,
                attempts,
            )
        except DBAPIError as exc:
            logger.error("Storage failure during draw on product %s: %s", product_id, exc)
            raise StorageFailure(
                "Storage unavailable; the draw was not performed"
            ) from exc


def verify(seed: Any, nonce: Any, expected_hash: Any) -> VerificationResult:
    """Recompute a draw from its revealed seed; see :func:`verify_draw`."""
    return verify_draw(seed, nonce, expected_hash)


def reveal_seed(session: Session, product_id: int, *, force: bool = False) -> Product:
    product = Product.require(session, product_id)
    return pool_ops.reveal_seed(session, product, force=force)


def deactivate_pool(session: Session, product_id: int) -> Product:
    product = Product.require(session, product_id)
    return pool_ops.deactivate_pool(session, product)


def get_fairness_info(session: Session, product_id: int) -> dict[str, Any]:
    """Public fairness data of a pool.

    The commitment and counts are always present. The seed, and whether it
    matches the commitment, only appear after the seed has been revealed.
    """
    product = Product.require(session, product_id)
    info: dict[str, Any] = {
        "productId": product.id,
        "status": product.status,
        "txidHash": product.commitment_hash,
        "totalCount": product.total_count,
        "remaining": product.remaining,
        "drawCount": DrawRecord.count_numbered(session, product.id),
        "seed": None,
        "seedRevealedAt": None,
        "commitmentValid": None,
    }
    if product.is_seed_revealed:
        info["seed"] = product.seed
        info["seedRevealedAt"] = dt_iso(product.seed_revealed_at)
        info["commitmentValid"] = verify_pool_commitment(
            product.seed, product.commitment_hash
        )
    return info


def list_draws(
    session: Session, product_id: int, user_id: Optional[str] = None
) -> list[dict[str, Any]]:
    """Ledger rows of a pool in nonce order, optionally for one user.

    Each row carries the nonce and hash a player needs to re-verify the draw
    once the seed is revealed.
    """
    product = Product.require(session, product_id)
    records = DrawRecord.for_product(session, product.id)
    if user_id is not None:
        records = [r for r in records if r.user_id == user_id]
    return [record.to_json() for record in records]


def get_display_probabilities(
    session: Session,
    product_id: int,
    *,
    rate_provider: Optional[RateProvider] = None,
) -> list[dict[str, Any]]:
    """Base and displayed probability of each numbered tier."""
    product = Product.require(session, product_id)
    provider = rate_provider if rate_provider is not None else default_rate_provider()
    snapshot = provider.snapshot(session, product)
    tiers = product.numbered_tiers
    shown = display_probabilities(tiers, snapshot)
    return [
        {
            "prizeTierId": tier.id,
            "level": tier.level,
            "name": tier.name,
            "remaining": tier.remaining,
            "baseProbability": tier.probability,
            "displayProbability": shown[tier.id],
        }
        for tier in tiers
    ]


def get_rates(session: Session, product_id: int) -> dict[str, Any]:
    setting = get_rate_setting(session, product_id)
    return {
        "productId": setting.product_id,
        "currentProfitRate": setting.profit_rate,
        "escalationEnabled": setting.escalation_enabled,
        "updatedAt": dt_iso(setting.updated_at),
        "updatedBy": setting.updated_by,
    }


def update_rates(
    session: Session,
    product_id: int,
    profit_rate: Optional[float],
    *,
    updated_by: Optional[str] = None,
    escalation_enabled: Optional[bool] = None,
    tier_multipliers: Optional[Mapping[int, Optional[float]]] = None,
) -> dict[str, Any]:
    """Change the operator overlay of a pool.

    ``tier_multipliers`` maps tier ids of this product to an override, or to
    ``None`` to clear it. Draw records, commitments and the base probability
    table are never touched.
    """
    operator = updated_by or DEFAULT_UPDATED_BY
    setting = set_profit_rate(
        session,
        product_id,
        profit_rate,
        updated_by=operator,
        escalation_enabled=escalation_enabled,
    )
    if tier_multipliers:
        product = Product.require(session, product_id)
        tier_ids = {tier.id for tier in product.tiers}
        for tier_id, multiplier in tier_multipliers.items():
            if tier_id not in tier_ids:
                raise InvalidParameter(
                    "tierMultipliers",
                    f"Prize tier {tier_id} does not belong to product {product_id}",
                )
            set_tier_multiplier(session, tier_id, multiplier, updated_by=operator)
    return get_rates(session, setting.product_id)


__all__ = [
    "deactivate_pool",
    "get_display_probabilities",
    "get_fairness_info",
    "get_rates",
    "list_draws",
    "publish_pool",
    "reveal_seed",
    "run_draw",
    "update_rates",
    "verify",
]
