from concurrent.futures import ThreadPoolExecutor
import os
from pathlib import Path
import tempfile
import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from kujibox import workflows
from kujibox.db.engine import get_sessionmaker, make_engine
from kujibox.draw.engine import DrawEngine
from kujibox.draw.rates import NeutralRateProvider
from kujibox.draw.reconciliation import audit_product
from kujibox.errors import (
    DrawConflict,
    InvalidParameter,
    MissingParameter,
    NotFound,
    StorageFailure,
)
from kujibox.models import Base, DrawRecord, Product

PRIZES = [
    {"level": "A賞", "name": "Figure", "total": 1, "probability": 0.1},
    {"level": "B", "name": "Stand", "total": 2, "probability": 0.2},
    {"level": "C", "name": "Strap", "total": 7, "probability": 0.7, "imageUrl": "c.png"},
    {"level": "Last One", "name": "Special", "total": 1},
]


class WorkflowTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine("sqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            product = workflows.publish_pool(session, name="Workflow pool", prizes=PRIZES)
            self.product_id = product.id

    def tearDown(self):
        self.engine.dispose()

    def test_publish_pool_accepts_mappings(self):
        with self.Session() as session:
            product = session.get(Product, self.product_id)
            self.assertEqual(product.total_count, 10)
            levels = {t.level: t for t in product.tiers}
            self.assertEqual(sorted(levels), ["A", "B", "C", "Last One"])
            self.assertEqual(levels["C"].image_url, "c.png")
        with self.Session() as session:
            with self.assertRaises(MissingParameter):
                workflows.publish_pool(session, name="Empty", prizes=None)

    def test_run_draw_commits(self):
        outcomes = workflows.run_draw(
            self.Session, self.product_id, "user-1", 3, rate_provider=NeutralRateProvider()
        )
        self.assertEqual(len(outcomes), 3)
        with self.Session() as session:
            self.assertEqual(session.get(Product, self.product_id).remaining, 7)
            self.assertEqual(DrawRecord.count_numbered(session, self.product_id), 3)

    def test_run_draw_retries_lost_races(self):
        original = DrawEngine.draw
        calls = []

        def flaky(engine, *args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise DrawConflict("lost a ticket race")
            return original(engine, *args, **kwargs)

        with patch.object(DrawEngine, "draw", autospec=True, side_effect=flaky):
            outcomes = workflows.run_draw(self.Session, self.product_id, "user-1", max_attempts=3)
        self.assertEqual(len(calls), 2)
        self.assertEqual(len(outcomes), 1)

    def test_run_draw_gives_up_after_max_attempts(self):
        with patch.object(
            DrawEngine, "draw", autospec=True, side_effect=DrawConflict("busy")
        ) as mock_draw:
            with self.assertRaises(DrawConflict):
                workflows.run_draw(self.Session, self.product_id, "user-1", max_attempts=2)
        self.assertEqual(mock_draw.call_count, 2)

    def test_run_draw_reads_attempt_limit_from_env(self):
        with patch.dict(os.environ, {"KUJI_DRAW_MAX_ATTEMPTS": "4"}):
            with patch.object(
                DrawEngine, "draw", autospec=True, side_effect=DrawConflict("busy")
            ) as mock_draw:
                with self.assertRaises(DrawConflict):
                    workflows.run_draw(self.Session, self.product_id, "user-1")
        self.assertEqual(mock_draw.call_count, 4)

    def test_storage_errors_become_storage_failure(self):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        with patch.object(DrawEngine, "draw", autospec=True, side_effect=error):
            with self.assertRaises(StorageFailure):
                workflows.run_draw(self.Session, self.product_id, "user-1")

    def test_run_draw_rejects_bad_attempt_limit(self):
        with self.assertRaises(InvalidParameter):
            workflows.run_draw(self.Session, self.product_id, "user-1", max_attempts=0)

    def test_fairness_info_reveals_seed_only_after_reveal(self):
        with self.Session() as session:
            info = workflows.get_fairness_info(session, self.product_id)
            self.assertIsNone(info["seed"])
            self.assertIsNone(info["commitmentValid"])
            self.assertEqual(info["remaining"], 10)

        with self.Session.begin() as session:
            workflows.reveal_seed(session, self.product_id, force=True)

        with self.Session() as session:
            info = workflows.get_fairness_info(session, self.product_id)
            self.assertIsNotNone(info["seed"])
            self.assertTrue(info["commitmentValid"])
            self.assertEqual(info["status"], "inactive")

    def test_verify_delegates_to_verifier(self):
        workflows.run_draw(self.Session, self.product_id, "user-1", 1)
        with self.Session.begin() as session:
            workflows.reveal_seed(session, self.product_id, force=True)
        with self.Session() as session:
            seed = session.get(Product, self.product_id).seed
            record = DrawRecord.for_product(session, self.product_id)[0]
        result = workflows.verify(seed, str(record.nonce), record.txid_hash)
        self.assertTrue(result.hash_match)
        self.assertEqual(result.random_value, record.random_value)

    def test_rates_round_trip_and_display(self):
        with self.Session() as session:
            rates = workflows.get_rates(session, self.product_id)
            self.assertEqual(rates["currentProfitRate"], 1.0)
            self.assertEqual(rates["updatedBy"], "admin")

        with self.Session.begin() as session:
            tiers = {t.level: t.id for t in session.get(Product, self.product_id).tiers}
            rates = workflows.update_rates(
                session,
                self.product_id,
                2.0,
                updated_by="ops-team",
                escalation_enabled=False,
                tier_multipliers={tiers["B"]: 1.0},
            )
        self.assertEqual(rates["currentProfitRate"], 2.0)
        self.assertEqual(rates["updatedBy"], "ops-team")
        self.assertFalse(rates["escalationEnabled"])

        with patch.dict(os.environ, {"KUJI_RATE_OVERLAY": "on"}):
            with self.Session() as session:
                shown = workflows.get_display_probabilities(session, self.product_id)
        by_level = {row["level"]: row for row in shown}
        self.assertEqual(sorted(by_level), ["A", "B", "C"])
        self.assertAlmostEqual(sum(row["displayProbability"] for row in shown), 1.0)
        self.assertGreater(by_level["A"]["displayProbability"], 0.1)
        self.assertEqual(by_level["A"]["baseProbability"], 0.1)

    def test_update_rates_rejects_foreign_tier(self):
        with self.Session() as session:
            with self.assertRaises(InvalidParameter):
                workflows.update_rates(session, self.product_id, 1.0, tier_multipliers={9999: 1.0})

    def test_list_draws_exposes_ledger_for_auditing(self):
        workflows.run_draw(self.Session, self.product_id, "user-1", 2)
        workflows.run_draw(self.Session, self.product_id, "user-2", 1)
        with self.Session() as session:
            rows = workflows.list_draws(session, self.product_id)
            mine = workflows.list_draws(session, self.product_id, "user-2")
            self.assertEqual(workflows.list_draws(session, self.product_id, "nobody"), [])
        self.assertEqual([r["nonce"] for r in rows], [1, 2, 3])
        self.assertEqual([r["userId"] for r in mine], ["user-2"])
        self.assertEqual(mine[0], rows[2])

        with self.Session.begin() as session:
            workflows.reveal_seed(session, self.product_id, force=True)
        with self.Session() as session:
            seed = session.get(Product, self.product_id).seed
        for row in rows:
            result = workflows.verify(seed, row["nonce"], row["txidHash"])
            self.assertTrue(result.hash_match)
            self.assertAlmostEqual(result.random_value, row["randomValue"])

    def test_exhausted_pool_reveals_without_force(self):
        workflows.run_draw(self.Session, self.product_id, "user-1", 10)
        with self.Session.begin() as session:
            product = workflows.reveal_seed(session, self.product_id)
            self.assertTrue(product.is_seed_revealed)
            self.assertEqual(product.status, "archived")

    def test_unknown_product(self):
        with self.Session() as session:
            with self.assertRaises(NotFound):
                workflows.get_fairness_info(session, 4242)
            with self.assertRaises(NotFound):
                workflows.deactivate_pool(session, 4242)
            with self.assertRaises(NotFound):
                workflows.list_draws(session, 4242)



class ConcurrentDrawTests(unittest.TestCase):
    """Draws racing for the same tickets on a file-backed database."""

    PRIZES = [
        {"level": "A", "name": "Figure", "total": 4, "probability": 0.1},
        {"level": "B", "name": "Stand", "total": 12, "probability": 0.3},
        {"level": "C", "name": "Strap", "total": 24, "probability": 0.6},
    ]

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "kuji.db"
        self.engine = make_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            product = workflows.publish_pool(session, name="Race pool", prizes=self.PRIZES)
            self.product_id = product.id

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _assert_consistent(self, expected_remaining):
        with self.Session() as session:
            product = session.get(Product, self.product_id)
            self.assertEqual(product.remaining, expected_remaining)
            report = audit_product(session, product)
            self.assertTrue(report.is_consistent, report.findings)
            records = DrawRecord.for_product(session, self.product_id)
            numbers = [r.ticket_number for r in records if r.ticket_number > 0]
            self.assertEqual(len(numbers), len(set(numbers)))
            self.assertEqual(len(numbers), product.total_count - expected_remaining)

    def test_ticket_lost_to_a_committed_rival_is_retried(self):
        original = DrawEngine._pick_ticket
        stolen = []

        def pick_after_rival_commits(engine, product_id, random_value, snapshot):
            ticket = original(engine, product_id, random_value, snapshot)
            if not stolen:
                stolen.append(ticket.number)
                with self.Session() as rival, rival.begin():
                    DrawEngine(rival, rate_provider=NeutralRateProvider()).draw(
                        product_id, "rival", ticket_numbers=[ticket.number]
                    )
            return ticket

        with patch.object(
            DrawEngine, "_pick_ticket", autospec=True, side_effect=pick_after_rival_commits
        ) as mock_pick:
            outcomes = workflows.run_draw(
                self.Session,
                self.product_id,
                "user-1",
                rate_provider=NeutralRateProvider(),
                max_attempts=3,
            )

        self.assertEqual(mock_pick.call_count, 2)
        self.assertEqual(len(outcomes), 1)
        self.assertNotEqual(outcomes[0].ticket_number, stolen[0])
        self.assertEqual(outcomes[0].record.nonce, 2)
        self._assert_consistent(38)

    def test_lost_race_without_retries_raises_conflict(self):
        with self.Session() as session, session.begin():
            DrawEngine(session, rate_provider=NeutralRateProvider()).draw(
                self.product_id, "rival", ticket_numbers=[1]
            )

        with patch.object(DrawEngine, "_check_requested_tickets"):
            with self.assertRaises(DrawConflict):
                workflows.run_draw(
                    self.Session, self.product_id, "user-1", ticket_numbers=[1], max_attempts=2
                )
        self._assert_consistent(39)

    def test_parallel_draws_never_share_a_ticket(self):
        def draw_five(worker):
            return [
                workflows.run_draw(
                    self.Session,
                    self.product_id,
                    f"user-{worker}",
                    rate_provider=NeutralRateProvider(),
                    max_attempts=50,
                )
                for _ in range(5)
            ]

        with ThreadPoolExecutor(max_workers=4) as executor:
            batches = list(executor.map(draw_five, range(4)))

        outcomes = [o for worker in batches for draw in worker for o in draw]
        self.assertEqual(len(outcomes), 20)
        self.assertEqual(len({o.ticket_number for o in outcomes}), 20)
        self._assert_consistent(20)


if __name__ == "__main__":
    unittest.main()
