"""Operator-owned rate overlay settings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from kujibox.errors import InvalidParameter
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .product import PrizeTier, Product

DEFAULT_PROFIT_RATE = 1.0
DEFAULT_UPDATED_BY = "admin"


def check_rate(field: str, value: float) -> float:
    if value is None:
        raise InvalidParameter(field, f"{field} must not be null")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(field, f"{field} must be a number, got {value!r}")
    value = float(value)
    if value != value or value in (float("inf"), float("-inf")):
        raise InvalidParameter(field, f"{field} must be finite")
    if value < 0:
        raise InvalidParameter(field, f"{field} must be >= 0, got {value}")
    return value


class ProductRateSetting(Base):
    """Per-product profit rate (``product_settings`` row).

    A missing row means the neutral rate of ``1.0``.
    """

    __tablename__ = "product_settings"

    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    profit_rate: Mapped[float] = mapped_column(
        Float, nullable=False, default=DEFAULT_PROFIT_RATE
    )
    escalation_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    updated_by: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_UPDATED_BY
    )

    product: Mapped["Product"] = relationship(back_populates="rate_setting")

    __table_args__ = (
        CheckConstraint("profit_rate >= 0", name="profit_rate_non_negative"),
    )

    @validates("profit_rate")
    def _validate_rate(self, _key: str, value: float) -> float:
        return check_rate("profitRate", value)


class TierRateAdjustment(Base):
    """Per-tier multiplier overriding the product profit rate for one tier."""

    __tablename__ = "tier_rate_adjustments"

    prize_tier_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("product_prizes.id", ondelete="CASCADE"), primary_key=True
    )
    multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    tier: Mapped["PrizeTier"] = relationship(back_populates="rate_adjustment")

    __table_args__ = (
        CheckConstraint("multiplier >= 0", name="multiplier_non_negative"),
    )

    @validates("multiplier")
    def _validate_multiplier(self, _key: str, value: float) -> float:
        return check_rate("multiplier", value)


__all__ = [
    "DEFAULT_PROFIT_RATE",
    "DEFAULT_UPDATED_BY",
    "ProductRateSetting",
    "TierRateAdjustment",
]
