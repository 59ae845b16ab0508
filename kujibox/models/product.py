"""Draw pool models: products, their prize tiers, and the fixed ticket assignment."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from kujibox.db.utils import dt_iso
from kujibox.errors import ConsistencyViolation, InvalidParameter, MissingParameter, NotFound
from .base import ID_TYPE, Base
from .tier_level import TierLevel

if TYPE_CHECKING:
    from .draw_record import DrawRecord
    from .rate import ProductRateSetting, TierRateAdjustment

PRODUCT_STATUSES = ("active", "inactive", "archived")


class Product(Base):
    """A draw pool of numbered tickets.

    Tickets are numbered ``1..total_count``. Ticket number ``0`` is reserved
    for the Last One bonus and is not part of the numbered pool.
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    total_count: Mapped[int] = mapped_column(Integer, nullable=False)
    """Number of numbered tickets in the pool."""

    remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    """Unconsumed numbered tickets. A cache of the draw ledger."""

    seed: Mapped[str] = mapped_column(String(128), nullable=False)
    """Secret seed. Never serialized until ``seed_revealed_at`` is set."""

    commitment_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    """Public SHA-256 commitment of ``seed`` published at creation."""

    seed_revealed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    tiers: Mapped[list["PrizeTier"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="PrizeTier.id",
    )
    tickets: Mapped[list["PoolTicket"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="PoolTicket.number",
    )
    draws: Mapped[list["DrawRecord"]] = relationship(back_populates="product")
    rate_setting: Mapped[Optional["ProductRateSetting"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint("total_count > 0", name="total_count_positive"),
        CheckConstraint(
            "remaining >= 0 AND remaining <= total_count", name="remaining_in_range"
        ),
        CheckConstraint(
            "status IN ('active','inactive','archived')", name="status_enum"
        ),
        Index("ix_products_status", "status"),
    )

    @validates("seed", "commitment_hash")
    def _freeze_commitment(self, key: str, value: str) -> str:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ConsistencyViolation(f"Product.{key} is immutable once published")
        return value

    @validates("status")
    def _check_status(self, _key: str, value: str) -> str:
        if value not in PRODUCT_STATUSES:
            raise InvalidParameter("status", f"Unknown product status {value!r}")
        return value

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0

    @property
    def is_seed_revealed(self) -> bool:
        return self.seed_revealed_at is not None

    @property
    def numbered_tiers(self) -> list["PrizeTier"]:
        """Tiers backed by numbered tickets, in grade order."""
        return sorted(
            (t for t in self.tiers if not t.tier_level.is_last_one),
            key=lambda t: (t.tier_level, t.id or 0),
        )

    @property
    def last_one_tier(self) -> Optional["PrizeTier"]:
        for tier in self.tiers:
            if tier.tier_level.is_last_one:
                return tier
        return None

    @classmethod
    def require(cls, session: Session, product_id: Optional[int]) -> "Product":
        """Load a product by id, validating the id and raising when absent."""
        if product_id is None:
            raise MissingParameter("productId")
        if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
            raise InvalidParameter("productId", f"Invalid product id {product_id!r}")
        product = session.get(cls, product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found")
        return product

    def to_json(self, *, include_tiers: bool = True) -> dict[str, Any]:
        """Serialize the pool for clients. The seed is only present once revealed."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "imageUrl": self.image_url,
            "status": self.status,
            "totalCount": self.total_count,
            "remaining": self.remaining,
            "txidHash": self.commitment_hash,
            "seed": self.seed if self.is_seed_revealed else None,
            "seedRevealedAt": dt_iso(self.seed_revealed_at),
            "createdAt": dt_iso(self.created_at),
        }
        if include_tiers:
            data["prizes"] = [
                tier.to_json() for tier in sorted(self.tiers, key=lambda t: t.tier_level)
            ]
        return data

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Product(id={self.id}, name={self.name!r}, status={self.status}, "
            f"remaining={self.remaining}/{self.total_count})>"
        )


class PrizeTier(Base):
    """One grade of prize within a pool (``product_prizes`` row)."""

    __tablename__ = "product_prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level: Mapped[str] = mapped_column(String(20), nullable=False)
    """Canonical grade label (``"A"``..``"H"`` or ``"Last One"``)."""

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Nominal weight shown to players. Ignored for the Last One tier."""

    product: Mapped["Product"] = relationship(back_populates="tiers")
    tickets: Mapped[list["PoolTicket"]] = relationship(back_populates="tier")
    rate_adjustment: Mapped[Optional["TierRateAdjustment"]] = relationship(
        back_populates="tier",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint("total > 0", name="total_positive"),
        CheckConstraint("remaining >= 0 AND remaining <= total", name="remaining_in_range"),
        CheckConstraint("probability >= 0", name="probability_non_negative"),
    )

    @validates("level")
    def _normalize_level(self, _key: str, value: str) -> str:
        return TierLevel.parse(value).label

    @property
    def tier_level(self) -> TierLevel:
        return TierLevel.parse(self.level)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "level": self.level,
            "name": self.name,
            "imageUrl": self.image_url,
            "total": self.total,
            "remaining": self.remaining,
            "probability": self.probability,
        }

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<PrizeTier(id={self.id}, product_id={self.product_id}, level={self.level}, "
            f"remaining={self.remaining}/{self.total})>"
        )


class PoolTicket(Base):
    """Fixed mapping of one numbered ticket to its prize tier.

    Rows are written once when the pool is created and never change, so a
    ticket number resolves to the same tier for the life of the pool.
    """

    __tablename__ = "pool_tickets"

    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    prize_tier_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("product_prizes.id", ondelete="CASCADE"), nullable=False, index=True
    )

    product: Mapped["Product"] = relationship(back_populates="tickets")
    tier: Mapped["PrizeTier"] = relationship(back_populates="tickets")

    __table_args__ = (CheckConstraint("number > 0", name="number_positive"),)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<PoolTicket(product_id={self.product_id}, number={self.number}, tier={self.prize_tier_id})>"


__all__ = ["PRODUCT_STATUSES", "Product", "PrizeTier", "PoolTicket"]
