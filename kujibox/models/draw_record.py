"""Append-only ledger of consumed tickets."""

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
    UniqueConstraint,
    event,
    func,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from kujibox.db.utils import dt_iso
from kujibox.errors import ConsistencyViolation
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .product import PrizeTier, Product

LAST_ONE_TICKET_NUMBER = 0


class DrawRecord(Base):
    """Immutable fact that ``user_id`` consumed ``ticket_number`` of a pool.

    The ledger is the source of truth for every remaining-count cache.
    ``ticket_number == 0`` marks the Last One bonus, tracked only against its
    own tier.
    """

    __tablename__ = "draw_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_prize_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("product_prizes.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    """Opaque user identifier issued by the auth provider."""

    nonce: Mapped[int] = mapped_column(Integer, nullable=False)
    """Per-pool draw sequence fed into the random derivation (0 for Last One)."""

    txid_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    """``SHA256("{seed}:{nonce}")`` so players can verify this draw once the seed is out."""

    random_value: Mapped[float] = mapped_column(Float, nullable=False)
    profit_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    """Effective overlay multiplier of the drawn tier when the draw happened."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    product: Mapped["Product"] = relationship(back_populates="draws")
    tier: Mapped["PrizeTier"] = relationship()

    __table_args__ = (
        CheckConstraint("ticket_number >= 0", name="ticket_number_non_negative"),
        UniqueConstraint("product_id", "nonce", name="uq_draw_records_product_nonce"),
        # A numbered ticket can be consumed by exactly one record.
        Index(
            "uq_draw_records_product_ticket",
            "product_id",
            "ticket_number",
            unique=True,
            sqlite_where=text("ticket_number > 0"),
            postgresql_where=text("ticket_number > 0"),
        ),
        # At most one Last One record per pool.
        Index(
            "uq_draw_records_last_one",
            "product_id",
            unique=True,
            sqlite_where=text("ticket_number = 0"),
            postgresql_where=text("ticket_number = 0"),
        ),
    )

    @property
    def is_last_one(self) -> bool:
        return self.ticket_number == LAST_ONE_TICKET_NUMBER

    @classmethod
    def count_numbered(cls, session: Session, product_id: int) -> int:
        """Count records that consumed a numbered ticket of ``product_id``."""
        return session.scalar(
            select(func.count(cls.id)).where(
                cls.product_id == product_id,
                cls.ticket_number > LAST_ONE_TICKET_NUMBER,
            )
        ) or 0

    @classmethod
    def for_product(cls, session: Session, product_id: int) -> list["DrawRecord"]:
        return list(
            session.scalars(
                select(cls)
                .where(cls.product_id == product_id)
                .order_by(cls.nonce.asc(), cls.id.asc())
            ).all()
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "ticketNumber": self.ticket_number,
            "prizeTierId": self.product_prize_id,
            "userId": self.user_id,
            "nonce": self.nonce,
            "txidHash": self.txid_hash,
            "randomValue": self.random_value,
            "createdAt": dt_iso(self.created_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<DrawRecord(id={self.id}, product_id={self.product_id}, "
            f"ticket_number={self.ticket_number}, tier={self.product_prize_id}, "
            f"user_id={self.user_id})>"
        )


@event.listens_for(Session, "before_flush")
def _reject_ledger_mutation(session: Session, _flush_context, _instances) -> None:
    """Refuse to flush updates or deletes of persisted draw records."""
    for obj in session.deleted:
        if isinstance(obj, DrawRecord):
            raise ConsistencyViolation(
                f"Draw record {obj.id} cannot be deleted; the draw ledger is append-only"
            )
    for obj in session.dirty:
        if isinstance(obj, DrawRecord) and session.is_modified(
            obj, include_collections=False
        ):
            raise ConsistencyViolation(
                f"Draw record {obj.id} cannot be modified; the draw ledger is append-only"
            )


__all__ = ["LAST_ONE_TICKET_NUMBER", "DrawRecord"]
