"""Operator rate overlay applied on top of the base probability table.

The overlay only changes weights: which unclaimed ticket a draw picks and
which probabilities players are shown. It never rewrites the base table,
the ticket assignment, the commitment, or the draw ledger, and the engine
works unchanged with :class:`NeutralRateProvider`.

Weighting rule: every numbered tier except the lowest grade (the anchor)
gets ``(tier multiplier or product profit rate) * escalation factor``. The
anchor keeps weight ``1.0`` unless a tier multiplier is set for it
explicitly. Escalation raises the factor once the consumed share of the
pool crosses configured thresholds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from kujibox import config
from kujibox.errors import MissingParameter, NotFound
from kujibox.models import (
    PrizeTier,
    Product,
    ProductRateSetting,
    TierRateAdjustment,
)
from kujibox.models.rate import DEFAULT_PROFIT_RATE, DEFAULT_UPDATED_BY, check_rate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationStep:
    threshold: float
    factor: float


class EscalationPolicy:
    """Ordered consumption thresholds and the factor each one applies.

    The factor of the highest threshold reached wins; below every threshold
    the factor is ``1.0``. Steps do not compound.
    """

    def __init__(self, steps: Iterable[tuple[float, float]] = ()) -> None:
        parsed: list[EscalationStep] = []
        for threshold, factor in steps:
            threshold = float(threshold)
            factor = float(factor)
            if not 0.0 < threshold <= 1.0:
                raise ValueError(f"escalation threshold must be in (0, 1], got {threshold}")
            if factor < 0.0:
                raise ValueError(f"escalation factor must be >= 0, got {factor}")
            if parsed and threshold <= parsed[-1].threshold:
                raise ValueError("escalation thresholds must be strictly increasing")
            parsed.append(EscalationStep(threshold, factor))
        self._steps: tuple[EscalationStep, ...] = tuple(parsed)

    @property
    def steps(self) -> tuple[EscalationStep, ...]:
        return self._steps

    @classmethod
    def from_string(cls, spec: str) -> "EscalationPolicy":
        """Parse ``"0.5:1.1,0.8:1.2"``; an empty string disables escalation."""
        pairs: list[tuple[float, float]] = []
        for chunk in spec.split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            threshold, sep, factor = chunk.partition(":")
            if not sep:
                raise ValueError(f"escalation step {chunk!r} must look like 'threshold:factor'")
            pairs.append((float(threshold), float(factor)))
        return cls(pairs)

    @classmethod
    def from_env(cls) -> "EscalationPolicy":
        return cls.from_string(config.escalation_steps())

    def factor_for(self, consumed_ratio: float) -> float:
        factor = 1.0
        for step in self._steps:
            if consumed_ratio >= step.threshold:
                factor = step.factor
        return factor

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        inner = ", ".join(f"{s.threshold}:{s.factor}" for s in self._steps)
        return f"EscalationPolicy({inner})"


@dataclass(frozen=True)
class RateSnapshot:
    """Rates frozen at the start of a draw batch.

    Every ticket of one batch is weighted with the same snapshot, so an
    operator edit mid-batch cannot split a batch across two rate tables.
    """

    product_id: int
    profit_rate: float = DEFAULT_PROFIT_RATE
    tier_multipliers: Mapping[int, float] = field(default_factory=dict)
    escalation_factor: float = 1.0
    anchor_tier_id: Optional[int] = None

    def multiplier_for(self, tier_id: int) -> float:
        if tier_id == self.anchor_tier_id:
            return self.tier_multipliers.get(tier_id, 1.0)
        base = self.tier_multipliers.get(tier_id, self.profit_rate)
        return base * self.escalation_factor

    @property
    def is_neutral(self) -> bool:
        return (
            self.profit_rate == 1.0
            and self.escalation_factor == 1.0
            and all(m == 1.0 for m in self.tier_multipliers.values())
        )


class RateProvider:
    """Source of :class:`RateSnapshot` objects injected into the draw engine."""

    def snapshot(self, session: Session, product: Product) -> RateSnapshot:
        raise NotImplementedError


class NeutralRateProvider(RateProvider):
    """Overlay switched off: every tier weighs ``1.0``."""

    def snapshot(self, session: Session, product: Product) -> RateSnapshot:
        return RateSnapshot(product_id=product.id)


class SettingsRateProvider(RateProvider):
    """Reads ``product_settings`` and ``tier_rate_adjustments`` rows."""

    def __init__(self, policy: Optional[EscalationPolicy] = None) -> None:
        self._policy = policy if policy is not None else EscalationPolicy.from_env()

    def snapshot(self, session: Session, product: Product) -> RateSnapshot:
        setting = session.get(ProductRateSetting, product.id)
        profit_rate = setting.profit_rate if setting is not None else DEFAULT_PROFIT_RATE
        escalate = setting.escalation_enabled if setting is not None else True

        adjustments = session.scalars(
            select(TierRateAdjustment)
            .join(PrizeTier, PrizeTier.id == TierRateAdjustment.prize_tier_id)
            .where(PrizeTier.product_id == product.id)
        ).all()
        multipliers = {adj.prize_tier_id: adj.multiplier for adj in adjustments}

        factor = 1.0
        if escalate and product.total_count > 0:
            consumed = (product.total_count - product.remaining) / product.total_count
            factor = self._policy.factor_for(consumed)

        numbered = product.numbered_tiers
        anchor_id = numbered[-1].id if numbered else None
        return RateSnapshot(
            product_id=product.id,
            profit_rate=profit_rate,
            tier_multipliers=multipliers,
            escalation_factor=factor,
            anchor_tier_id=anchor_id,
        )


def default_rate_provider() -> RateProvider:
    """Provider selected by ``KUJI_RATE_OVERLAY``."""
    if config.rate_overlay_enabled():
        return SettingsRateProvider()
    return NeutralRateProvider()


def display_probabilities(
    tiers: Sequence[PrizeTier], snapshot: RateSnapshot
) -> dict[int, float]:
    """Probabilities to show players, keyed by tier id.

    Base probabilities are scaled by the snapshot multipliers and then
    renormalized to the base table's total. The Last One tier is left out.
    """
    numbered = [t for t in tiers if not t.tier_level.is_last_one]
    base_total = sum(t.probability for t in numbered)
    adjusted = {t.id: t.probability * snapshot.multiplier_for(t.id) for t in numbered}
    adjusted_total = sum(adjusted.values())
    if adjusted_total <= 0 or base_total <= 0:
        return {tier_id: 0.0 for tier_id in adjusted}
    scale = base_total / adjusted_total
    return {tier_id: value * scale for tier_id, value in adjusted.items()}


def get_rate_setting(session: Session, product_id: Optional[int]) -> ProductRateSetting:
    """Return the product's rate row, or an unsaved neutral one when none exists."""
    product = Product.require(session, product_id)
    setting = session.get(ProductRateSetting, product.id)
    if setting is None:
        setting = ProductRateSetting(
            product_id=product.id,
            profit_rate=DEFAULT_PROFIT_RATE,
            escalation_enabled=True,
            updated_by=DEFAULT_UPDATED_BY,
            updated_at=product.created_at,
        )
    return setting


def set_profit_rate(
    session: Session,
    product_id: Optional[int],
    profit_rate: Optional[float],
    *,
    updated_by: str = DEFAULT_UPDATED_BY,
    escalation_enabled: Optional[bool] = None,
) -> ProductRateSetting:
    """Create or update the product's profit rate."""
    if profit_rate is None:
        raise MissingParameter("profitRate")
    check_rate("profitRate", profit_rate)
    product = Product.require(session, product_id)

    setting = session.get(ProductRateSetting, product.id)
    if setting is None:
        setting = ProductRateSetting(product_id=product.id, profit_rate=profit_rate)
        session.add(setting)
    else:
        setting.profit_rate = profit_rate
    if escalation_enabled is not None:
        setting.escalation_enabled = escalation_enabled
    setting.updated_by = updated_by or DEFAULT_UPDATED_BY
    setting.updated_at = datetime.now(timezone.utc)
    session.flush()
    logger.info(
        "Profit rate of product %s set to %s by %s",
        product.id,
        setting.profit_rate,
        setting.updated_by,
    )
    return setting


def set_tier_multiplier(
    session: Session,
    tier_id: Optional[int],
    multiplier: Optional[float],
    *,
    updated_by: str = DEFAULT_UPDATED_BY,
) -> Optional[TierRateAdjustment]:
    """Set or clear (``multiplier=None``) a tier override."""
    if tier_id is None:
        raise MissingParameter("prizeTierId")
    tier = session.get(PrizeTier, tier_id)
    if tier is None:
        raise NotFound(f"Prize tier {tier_id} not found")

    adjustment = session.get(TierRateAdjustment, tier.id)
    if multiplier is not None:
        check_rate("multiplier", multiplier)
    if multiplier is None:
        if adjustment is not None:
            session.delete(adjustment)
            session.flush()
        return None
    if adjustment is None:
        adjustment = TierRateAdjustment(prize_tier_id=tier.id, multiplier=multiplier)
        session.add(adjustment)
    else:
        adjustment.multiplier = multiplier
    adjustment.updated_by = updated_by
    adjustment.updated_at = datetime.now(timezone.utc)
    session.flush()
    return adjustment


__all__ = [
    "EscalationPolicy",
    "EscalationStep",
    "NeutralRateProvider",
    "RateProvider",
    "RateSnapshot",
    "SettingsRateProvider",
    "default_rate_provider",
    "display_probabilities",
    "get_rate_setting",
    "set_profit_rate",
    "set_tier_multiplier",
]
