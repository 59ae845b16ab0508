"""Draw engine: consumes pool tickets and records each draw in the ledger."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional, Sequence, Union

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kujibox.errors import (
    ConsistencyViolation,
    DrawConflict,
    InsufficientInventory,
    InvalidParameter,
    MissingParameter,
    NotFound,
    PoolUnavailable,
)
from kujibox.fairness.commitment import derive_random_value, txid_hash
from kujibox.models import (
    LAST_ONE_TICKET_NUMBER,
    DrawRecord,
    PoolTicket,
    PrizeTier,
    Product,
)
from .rates import NeutralRateProvider, RateProvider, RateSnapshot

logger = logging.getLogger(__name__)


@dataclass
class DrawOutcome:
    """One consumed ticket, in the order the batch consumed it.

    Attributes
    ----------
    record : DrawRecord
        Ledger row written for this ticket.
    ticket_number : int
        Consumed ticket, ``0`` for the Last One bonus.
    prize_tier_id : int
        Tier the ticket resolved to.
    prize_name : str
        Display name of the tier.
    prize_image : Optional[str]
        Image reference of the tier.
    level : str
        Canonical tier label.
    """

    record: DrawRecord
    ticket_number: int
    prize_tier_id: int
    prize_name: str
    prize_image: Optional[str]
    level: str

    @property
    def is_last_one(self) -> bool:
        return self.ticket_number == LAST_ONE_TICKET_NUMBER

    def to_json(self) -> dict[str, Any]:
        return {
            "ticketNumber": self.ticket_number,
            "prizeTierId": self.prize_tier_id,
            "prizeName": self.prize_name,
            "prizeImage": self.prize_image,
            "level": self.level,
            "nonce": self.record.nonce,
            "randomValue": self.record.random_value,
            "txidHash": self.record.txid_hash,
        }


def weighted_pick(weights: Sequence[float], random_value: float) -> int:
    """Return the index selected by ``random_value`` in ``[0, 1]``.

    Falls back to a uniform pick when every weight is zero so the pool can
    always be drained.
    """
    if not weights:
        raise ValueError("weights must not be empty")
    total = sum(weights)
    if total <= 0:
        return min(int(random_value * len(weights)), len(weights) - 1)
    target = random_value * total
    cumulative = 0.0
    for index, weight in enumerate(weights):
        cumulative += weight
        if target < cumulative:
            return index
    # random_value == 1.0 lands past the end: take the last positive weight.
    return max(i for i, weight in enumerate(weights) if weight > 0)


class DrawEngine:
    """Allocates tickets to draw requests against one SQLAlchemy session.

    The engine never commits. Every row it writes belongs to the caller's
    transaction, so a failure anywhere in a batch leaves nothing behind once
    the caller rolls back.
    """

    def __init__(
        self,
        session: Session,
        *,
        rate_provider: Optional[RateProvider] = None,
    ) -> None:
        """Create a draw engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for lookups and persistence.
        rate_provider : Optional[RateProvider], default: None
            Source of the rate overlay. When omitted every tier weighs the
            same (:class:`NeutralRateProvider`).
        """

        self._session = session
        self._rates = rate_provider or NeutralRateProvider()

    def draw(
        self,
        product: Union[Product, int],
        user_id: Optional[str],
        count: Optional[int] = None,
        *,
        ticket_numbers: Optional[Sequence[int]] = None,
    ) -> list[DrawOutcome]:
        """Consume ``count`` tickets of ``product`` for ``user_id``.

        Parameters
        ----------
        product : Product or int
            Pool to draw from.
        user_id : str
            Acting user, as issued by the auth provider.
        count : Optional[int], default: None
            Number of tickets. Defaults to ``len(ticket_numbers)`` or ``1``.
        ticket_numbers : Optional[Sequence[int]], default: None
            Specific tickets picked by the player. When omitted the engine
            picks unclaimed tickets from the seed-derived random value of
            each draw, weighted by the rate overlay.

        Returns
        -------
        list[DrawOutcome]
            Outcomes in consumption order. When the batch consumes the last
            numbered ticket a Last One outcome (ticket ``0``) follows.

        Notes
        -----
        Steps, all inside the caller's transaction:

        1. Validate the request; nothing is written on invalid input.
        2. Lock the product row and take one rate snapshot for the batch.
        3. Per ticket: derive the random value from ``(seed, nonce)``,
           choose the ticket, insert the ledger row (the unique index on
           ``(product_id, ticket_number)`` claims the ticket), then decrement
           product and tier counters with guarded ``UPDATE`` statements.
        4. Award the Last One tier and archive the pool when it empties.

        Raises
        ------
        MissingParameter, InvalidParameter
            Malformed request.
        NotFound
            Unknown product id.
        PoolUnavailable
            Pool is inactive or archived.
        InsufficientInventory
            ``count`` exceeds the remaining tickets.
        DrawConflict
            A concurrent draw claimed a ticket first. The session must be
            rolled back; retrying is safe.
        ConsistencyViolation
            Counters disagree with the ledger; run reconciliation.
        """
        if user_id is None or (isinstance(user_id, str) and not user_id.strip()):
            raise MissingParameter("userId")
        if not isinstance(user_id, str):
            raise InvalidParameter("userId", "userId must be a string")
        user_id = user_id.strip()

        requested = self._validate_ticket_numbers(ticket_numbers)
        count = self._validate_count(count, requested)

        product = self._lock_product(product)
        product_id = product.id
        if product.status != "active":
            raise PoolUnavailable(product_id, product.status)
        if count > product.remaining:
            raise InsufficientInventory(product_id, count, product.remaining)
        if requested is not None:
            self._check_requested_tickets(product, requested)

        snapshot = self._rates.snapshot(self._session, product)
        tiers = {tier.id: tier for tier in product.tiers}
        drawn_so_far = DrawRecord.count_numbered(self._session, product_id)

        outcomes: list[DrawOutcome] = []
        try:
            for index in range(count):
                nonce = drawn_so_far + index + 1
                random_value = derive_random_value(product.seed, nonce)
                if requested is not None:
                    ticket = self._ticket(product_id, requested[index])
                else:
                    ticket = self._pick_ticket(product_id, random_value, snapshot)
                tier = tiers[ticket.prize_tier_id]
                outcomes.append(
                    self._consume(
                        product,
                        tier,
                        ticket_number=ticket.number,
                        user_id=user_id,
                        nonce=nonce,
                        random_value=random_value,
                        multiplier=snapshot.multiplier_for(tier.id),
                    )
                )
                if nonce == product.total_count:
                    last_one = self._award_last_one(product, user_id)
                    if last_one is not None:
                        outcomes.append(last_one)
                    product.status = "archived"
                    self._session.flush()
        except IntegrityError as exc:
            # The failed flush rolled the transaction back and expired `product`.
            raise DrawConflict(
                f"Ticket already claimed by a concurrent draw on product {product_id}"
            ) from exc

        logger.info(
            "User %s drew %d ticket(s) from product %s: %s",
            user_id,
            count,
            product_id,
            [o.ticket_number for o in outcomes],
        )
        return outcomes

    # -------- validation --------
    @staticmethod
    def _validate_ticket_numbers(
        ticket_numbers: Optional[Sequence[int]],
    ) -> Optional[list[int]]:
        if ticket_numbers is None:
            return None
        numbers = list(ticket_numbers)
        if not numbers:
            raise InvalidParameter("ticketNumbers", "ticketNumbers must not be empty")
        for number in numbers:
            if isinstance(number, bool) or not isinstance(number, int) or number <= 0:
                raise InvalidParameter(
                    "ticketNumbers", f"Ticket number {number!r} must be a positive integer"
                )
        if len(set(numbers)) != len(numbers):
            raise InvalidParameter("ticketNumbers", "ticketNumbers must not repeat")
        return numbers

    @staticmethod
    def _validate_count(count: Optional[int], requested: Optional[list[int]]) -> int:
        if count is None:
            return len(requested) if requested is not None else 1
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise InvalidParameter("count", f"count must be an integer >= 1, got {count!r}")
        if requested is not None and count != len(requested):
            raise InvalidParameter(
                "count", "count must match the number of ticketNumbers"
            )
        return count

    def _lock_product(self, product: Union[Product, int]) -> Product:
        product_id = product.id if isinstance(product, Product) else product
        if product_id is None:
            raise InvalidParameter("productId", "Product must be persisted before drawing")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise InvalidParameter("productId", f"Invalid product id {product_id!r}")
        locked = self._session.scalar(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if locked is None:
            raise NotFound(f"Product {product_id} not found")
        return locked

    def _check_requested_tickets(self, product: Product, numbers: list[int]) -> None:
        out_of_range = [n for n in numbers if n > product.total_count]
        if out_of_range:
            raise InvalidParameter(
                "ticketNumbers",
                f"Tickets {out_of_range} are outside 1..{product.total_count}",
            )
        taken = self._session.scalars(
            select(DrawRecord.ticket_number).where(
                DrawRecord.product_id == product.id,
                DrawRecord.ticket_number.in_(numbers),
            )
        ).all()
        if taken:
            raise InvalidParameter(
                "ticketNumbers", f"Tickets {sorted(taken)} have already been drawn"
            )

    # -------- allocation --------
    def _ticket(self, product_id: int, number: int) -> PoolTicket:
        ticket = self._session.get(PoolTicket, (product_id, number))
        if ticket is None:
            raise ConsistencyViolation(
                f"Product {product_id} has no ticket assignment for number {number}"
            )
        return ticket

    def _pick_ticket(
        self, product_id: int, random_value: float, snapshot: RateSnapshot
    ) -> PoolTicket:
        unclaimed = self._session.scalars(
            select(PoolTicket)
            .outerjoin(
                DrawRecord,
                and_(
                    DrawRecord.product_id == PoolTicket.product_id,
                    DrawRecord.ticket_number == PoolTicket.number,
                ),
            )
            .where(PoolTicket.product_id == product_id, DrawRecord.id.is_(None))
            .order_by(PoolTicket.number.asc())
        ).all()
        if not unclaimed:
            raise ConsistencyViolation(
                f"Product {product_id} reports remaining tickets but every ticket is claimed"
            )
        weights = [max(snapshot.multiplier_for(t.prize_tier_id), 0.0) for t in unclaimed]
        return unclaimed[weighted_pick(weights, random_value)]

    def _consume(
        self,
        product: Product,
        tier: PrizeTier,
        *,
        ticket_number: int,
        user_id: str,
        nonce: int,
        random_value: float,
        multiplier: Optional[float],
    ) -> DrawOutcome:
        product_id = product.id
        record = DrawRecord(
            product_id=product_id,
            ticket_number=ticket_number,
            product_prize_id=tier.id,
            user_id=user_id,
            nonce=nonce,
            txid_hash=txid_hash(product.seed, nonce),
            random_value=random_value,
            profit_rate=multiplier,
        )
        self._session.add(record)
        # The flush claims the ticket through the ledger's unique indexes
        # before any counter moves.
        self._session.flush()

        if ticket_number != LAST_ONE_TICKET_NUMBER:
            if not self._decrement(Product, product_id):
                raise DrawConflict(
                    f"Product {product_id} ran out of tickets during the draw"
                )
        if not self._decrement(PrizeTier, tier.id):
            raise ConsistencyViolation(
                f"Prize tier {tier.id} counter is exhausted but ticket {ticket_number} "
                "was unclaimed; reconcile the product"
            )
        self._session.expire(product, ["remaining"])
        self._session.expire(tier, ["remaining"])

        return DrawOutcome(
            record=record,
            ticket_number=ticket_number,
            prize_tier_id=tier.id,
            prize_name=tier.name,
            prize_image=tier.image_url,
            level=tier.level,
        )

    def _decrement(self, model: type[Union[Product, PrizeTier]], row_id: int) -> bool:
        result = self._session.execute(
            update(model)
            .where(model.id == row_id, model.remaining >= 1)
            .values(remaining=model.remaining - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _award_last_one(self, product: Product, user_id: str) -> Optional[DrawOutcome]:
        tier = product.last_one_tier
        if tier is None:
            return None
        if tier.remaining < 1:
            logger.warning(
                "Product %s emptied but its Last One tier %s has nothing left", product.id, tier.id
            )
            return None
        return self._consume(
            product,
            tier,
            ticket_number=LAST_ONE_TICKET_NUMBER,
            user_id=user_id,
            nonce=LAST_ONE_TICKET_NUMBER,
            random_value=derive_random_value(product.seed, LAST_ONE_TICKET_NUMBER),
            multiplier=None,
        )


__all__ = ["DrawEngine", "DrawOutcome", "weighted_pick"]
