import unittest
from unittest.mock import patch

from sqlalchemy import func, select

from kujibox.db.engine import get_sessionmaker, make_engine
from kujibox.draw.engine import DrawEngine, weighted_pick
from kujibox.draw.pool import TierSpec, create_pool
from kujibox.draw.rates import EscalationPolicy, SettingsRateProvider, set_tier_multiplier
from kujibox.errors import (
    DrawConflict,
    InsufficientInventory,
    InvalidParameter,
    MissingParameter,
    NotFound,
    PoolUnavailable,
)
from kujibox.fairness import derive_random_value, txid_hash, verify_draw
from kujibox.models import Base, DrawRecord, PoolTicket, PrizeTier, Product

TIERS = [
    TierSpec(level="A", name="Figure", total=1, probability=0.1),
    TierSpec(level="B", name="Stand", total=2, probability=0.2),
    TierSpec(level="C", name="Strap", total=7, probability=0.7),
    TierSpec(level="Last One", name="Special", total=1),
]


class WeightedPickTests(unittest.TestCase):
    def test_cumulative_selection(self):
        weights = [1.0, 2.0, 7.0]
        self.assertEqual(weighted_pick(weights, 0.0), 0)
        self.assertEqual(weighted_pick(weights, 0.05), 0)
        self.assertEqual(weighted_pick(weights, 0.15), 1)
        self.assertEqual(weighted_pick(weights, 0.5), 2)
        self.assertEqual(weighted_pick(weights, 1.0), 2)

    def test_zero_weights_fall_back_to_uniform(self):
        self.assertEqual(weighted_pick([0.0, 0.0, 0.0, 0.0], 0.0), 0)
        self.assertEqual(weighted_pick([0.0, 0.0, 0.0, 0.0], 0.6), 2)
        self.assertEqual(weighted_pick([0.0, 0.0, 0.0, 0.0], 1.0), 3)

    def test_zero_weight_entry_never_chosen(self):
        for u in (0.0, 0.3, 0.7, 0.999):
            self.assertNotEqual(weighted_pick([0.0, 1.0, 1.0], u), 0)


class DrawEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine("sqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            product = create_pool(session, name="Scenario pool", tiers=TIERS)
            self.product_id = product.id
            self.seed = product.seed
            self.tier_ids = {t.level: t.id for t in product.tiers}
            self.assignment = {
                t.number: t.prize_tier_id
                for t in session.scalars(select(PoolTicket))
            }

    def tearDown(self) -> None:
        self.engine.dispose()

    def _draw(self, user_id="user-1", count=None, **kwargs):
        with self.Session.begin() as session:
            return DrawEngine(session, **kwargs).draw(self.product_id, user_id, count)

    def _counts(self):
        with self.Session() as session:
            product = session.get(Product, self.product_id)
            tiers = {t.level: t.remaining for t in product.tiers}
            records = DrawRecord.for_product(session, self.product_id)
            return product, tiers, records

    def test_ten_single_draws_exhaust_pool_and_award_last_one(self):
        seen = []
        for i in range(10):
            outcomes = self._draw(user_id=f"user-{i}")
            numbered = [o for o in outcomes if not o.is_last_one]
            self.assertEqual(len(numbered), 1)
            seen.append(numbered[0].ticket_number)
            if i < 9:
                self.assertEqual(len(outcomes), 1)
        self.assertEqual(sorted(seen), list(range(1, 11)))
        self.assertTrue(outcomes[-1].is_last_one)
        self.assertEqual(outcomes[-1].level, "Last One")

        product, tiers, records = self._counts()
        self.assertEqual(product.remaining, 0)
        self.assertEqual(product.status, "archived")
        self.assertEqual(tiers, {"A": 0, "B": 0, "C": 0, "Last One": 0})
        last_one = [r for r in records if r.ticket_number == 0]
        self.assertEqual(len(last_one), 1)
        self.assertEqual(last_one[0].user_id, "user-9")
        self.assertEqual(last_one[0].product_prize_id, self.tier_ids["Last One"])

    def test_outcomes_follow_the_fixed_assignment_and_verify(self):
        outcomes = self._draw(count=4)
        self.assertEqual([o.record.nonce for o in outcomes], [1, 2, 3, 4])
        for outcome in outcomes:
            self.assertEqual(outcome.prize_tier_id, self.assignment[outcome.ticket_number])
            nonce = outcome.record.nonce
            self.assertEqual(outcome.record.random_value, derive_random_value(self.seed, nonce))
            self.assertEqual(outcome.record.txid_hash, txid_hash(self.seed, nonce))
            result = verify_draw(self.seed, nonce, outcome.record.txid_hash)
            self.assertTrue(result.hash_match)
            self.assertEqual(result.random_value, outcome.record.random_value)
        data = outcomes[0].to_json()
        self.assertEqual(
            set(data),
            {
                "ticketNumber",
                "prizeTierId",
                "prizeName",
                "prizeImage",
                "level",
                "nonce",
                "randomValue",
                "txidHash",
            },
        )

    def test_batch_draw_conserves_inventory(self):
        for count in (3, 2, 4):
            self._draw(count=count)
        product, tiers, records = self._counts()
        numbered = [r for r in records if r.ticket_number > 0]
        self.assertEqual(product.remaining + len(numbered), product.total_count)
        self.assertEqual(len({r.ticket_number for r in numbered}), len(numbered))
        with self.Session() as session:
            for tier in session.scalars(select(PrizeTier)):
                consumed = sum(1 for r in records if r.product_prize_id == tier.id)
                self.assertEqual(tier.remaining + consumed, tier.total)

    def test_explicit_ticket_numbers(self):
        with self.Session.begin() as session:
            outcomes = DrawEngine(session).draw(
                self.product_id, "user-1", ticket_numbers=[7, 3]
            )
        self.assertEqual([o.ticket_number for o in outcomes], [7, 3])
        self.assertEqual(outcomes[0].prize_tier_id, self.assignment[7])

        with self.Session() as session:
            with self.assertRaises(InvalidParameter) as ctx:
                DrawEngine(session).draw(self.product_id, "user-2", ticket_numbers=[3])
            self.assertIn("already been drawn", ctx.exception.message)

    def test_invalid_requests_write_nothing(self):
        cases = [
            (MissingParameter, dict(user_id=None)),
            (MissingParameter, dict(user_id="  ")),
            (InvalidParameter, dict(count=0)),
            (InvalidParameter, dict(count=True)),
            (InvalidParameter, dict(ticket_numbers=[1, 1])),
            (InvalidParameter, dict(ticket_numbers=[11])),
            (InvalidParameter, dict(ticket_numbers=[0])),
            (InvalidParameter, dict(count=3, ticket_numbers=[1, 2])),
            (InsufficientInventory, dict(count=11)),
        ]
        for exc_type, case in cases:
            with self.subTest(case=case):
                kwargs = dict(case)
                user_id = kwargs.pop("user_id", "user-1")
                with self.Session() as session:
                    with self.assertRaises(exc_type):
                        DrawEngine(session).draw(self.product_id, user_id, **kwargs)
                    session.rollback()
        product, _, records = self._counts()
        self.assertEqual(product.remaining, 10)
        self.assertEqual(records, [])

    def test_unknown_and_closed_pools(self):
        with self.Session() as session:
            with self.assertRaises(NotFound):
                DrawEngine(session).draw(9999, "user-1")
        with self.Session.begin() as session:
            session.get(Product, self.product_id).status = "inactive"
        with self.Session() as session:
            with self.assertRaises(PoolUnavailable):
                DrawEngine(session).draw(self.product_id, "user-1")

    def test_failure_mid_batch_rolls_back_everything(self):
        original = DrawEngine._consume
        calls = []

        def failing_consume(engine, *args, **kwargs):
            calls.append(1)
            if len(calls) == 2:
                raise RuntimeError("storage went away")
            return original(engine, *args, **kwargs)

        with patch.object(DrawEngine, "_consume", autospec=True, side_effect=failing_consume):
            with self.assertRaises(RuntimeError):
                self._draw(count=3)

        product, tiers, records = self._counts()
        self.assertEqual(product.remaining, 10)
        self.assertEqual(tiers["C"], 7)
        self.assertEqual(records, [])

    def test_claimed_ticket_race_surfaces_as_conflict(self):
        # Another transaction committed ticket 5 after this one validated.
        with self.Session.begin() as session:
            session.add(
                DrawRecord(
                    product_id=self.product_id,
                    ticket_number=5,
                    product_prize_id=self.assignment[5],
                    user_id="rival",
                    nonce=1,
                    txid_hash=txid_hash(self.seed, 1),
                    random_value=derive_random_value(self.seed, 1),
                )
            )
        with patch.object(DrawEngine, "_check_requested_tickets"):
            with self.assertRaises(DrawConflict):
                with self.Session.begin() as session:
                    DrawEngine(session).draw(self.product_id, "user-1", ticket_numbers=[5])
        with self.Session() as session:
            count = session.scalar(select(func.count(DrawRecord.id)))
            self.assertEqual(count, 1)

    def test_rate_overlay_steers_the_pick(self):
        with self.Session.begin() as session:
            set_tier_multiplier(session, self.tier_ids["A"], 0.0)
            set_tier_multiplier(session, self.tier_ids["B"], 0.0)
        provider = SettingsRateProvider(EscalationPolicy())

        outcomes = self._draw(count=7, rate_provider=provider)
        self.assertEqual({o.level for o in outcomes}, {"C"})

        # Only zero-weight tiers are left: the pick falls back to uniform.
        outcomes = self._draw(count=3, rate_provider=provider)
        numbered = [o for o in outcomes if not o.is_last_one]
        self.assertEqual(sorted(o.level for o in numbered), ["A", "B", "B"])
        self.assertTrue(outcomes[-1].is_last_one)
        self.assertEqual(numbered[0].record.profit_rate, 0.0)


if __name__ == "__main__":
    unittest.main()
