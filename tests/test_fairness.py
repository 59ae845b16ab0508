import hashlib
import unittest

from kujibox.errors import InvalidParameter, MissingParameter
from kujibox.fairness import (
    assign_tickets,
    derive_random_value,
    generate_commitment,
    generate_seed,
    normalize_nonce,
    recompute_assignment,
    seed_commitment,
    txid_hash,
    verify_draw,
    verify_pool_commitment,
)

# SHA256("abc123:42") and HMAC-SHA256(key="abc123", msg="42")
ABC123_42_HASH = "c7858f0ba7cc0652088ecc71fdd491eb9045346dfc07dfafdfd7a9d868d4c7ff"
ABC123_42_HMAC = "473601a4063f7c17384a3a2427e38bff9de5885b32e6b63f45cf13a530989195"


class TestCommitment(unittest.TestCase):
    def test_generate_seed_is_hex_of_requested_size(self):
        seed = generate_seed(16)
        self.assertEqual(len(seed), 32)
        int(seed, 16)
        self.assertNotEqual(generate_seed(), generate_seed())

    def test_generate_seed_rejects_weak_entropy(self):
        with self.assertRaises(ValueError):
            generate_seed(8)

    def test_seed_commitment_is_sha256_of_seed(self):
        self.assertEqual(
            seed_commitment("abc123"),
            "6ca13d52ca70c883e0f0bb101e425a89e8624de51db2d2392593af6a84118090",
        )

    def test_generate_commitment_matches_seed(self):
        commitment = generate_commitment()
        self.assertEqual(seed_commitment(commitment.seed), commitment.commitment_hash)
        self.assertNotIn(commitment.seed, repr(commitment))

    def test_txid_hash_known_vector(self):
        self.assertEqual(txid_hash("abc123", 42), ABC123_42_HASH)
        self.assertEqual(
            txid_hash("abc123", 42),
            hashlib.sha256(b"abc123:42").hexdigest(),
        )

    def test_random_value_known_vector(self):
        expected = int(ABC123_42_HMAC[:16], 16) / int("f" * 16, 16)
        self.assertAlmostEqual(derive_random_value("abc123", 42), expected, places=15)

    def test_random_value_in_unit_interval(self):
        seed = generate_seed()
        for nonce in range(200):
            value = derive_random_value(seed, nonce)
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)

    def test_nonce_spellings_are_equivalent(self):
        self.assertEqual(normalize_nonce(42), 42)
        self.assertEqual(normalize_nonce("42"), 42)
        self.assertEqual(normalize_nonce(" 42 "), 42)
        self.assertEqual(normalize_nonce(42.0), 42)
        self.assertEqual(txid_hash("s" * 16, "7"), txid_hash("s" * 16, 7))

    def test_nonce_rejections(self):
        with self.assertRaises(MissingParameter):
            normalize_nonce(None)
        with self.assertRaises(MissingParameter):
            normalize_nonce("")
        for bad in ("4a", "1.5", True, 1.5, -1, "-3", [1]):
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidParameter):
                    normalize_nonce(bad)

    def test_nonce_accepts_only_ascii_digits_of_bounded_length(self):
        self.assertEqual(normalize_nonce("9" * 20), int("9" * 20))
        for bad in ("\u0664\u0662", "\uff14\uff12", "9" * 21, "9" * 5000, 10**20, 1e300):
            with self.subTest(bad=bad if not isinstance(bad, str) else bad[:10]):
                with self.assertRaises(InvalidParameter) as ctx:
                    normalize_nonce(bad)
                self.assertEqual(ctx.exception.field, "nonce")

    def test_assign_tickets_is_deterministic_permutation(self):
        slots = ["A"] + ["B"] * 2 + ["C"] * 7
        first = assign_tickets("abc123", slots)
        self.assertEqual(first, assign_tickets("abc123", slots))
        self.assertEqual(sorted(first), sorted(slots))
        self.assertEqual(slots, ["A"] + ["B"] * 2 + ["C"] * 7)


class TestVerification(unittest.TestCase):
    def test_matching_hash(self):
        result = verify_draw("abc123", 42, ABC123_42_HASH)
        self.assertTrue(result.hash_match)
        self.assertEqual(result.txid_hash, ABC123_42_HASH)
        again = verify_draw("abc123", "42", ABC123_42_HASH)
        self.assertEqual(result, again)

    def test_one_character_change_is_a_mismatch(self):
        altered = ("0" if ABC123_42_HASH[0] != "0" else "1") + ABC123_42_HASH[1:]
        result = verify_draw("abc123", 42, altered)
        self.assertFalse(result.hash_match)
        self.assertEqual(result.txid_hash, ABC123_42_HASH)

    def test_missing_fields_raise_before_computing(self):
        cases = [
            ((None, 42, ABC123_42_HASH), "seed"),
            (("", 42, ABC123_42_HASH), "seed"),
            (("abc123", None, ABC123_42_HASH), "nonce"),
            (("abc123", 42, None), "expectedHash"),
            (("abc123", 42, ""), "expectedHash"),
        ]
        for args, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(MissingParameter) as ctx:
                    verify_draw(*args)
                self.assertEqual(ctx.exception.field, field)

    def test_non_ascii_hash_is_a_mismatch_not_a_crash(self):
        result = verify_draw("abc123", 42, "\u00e9" + ABC123_42_HASH[1:])
        self.assertFalse(result.hash_match)
        self.assertFalse(verify_draw("\u00fc", 1, "\u00fc").hash_match)
        self.assertTrue(verify_draw("\u00fc", 1, txid_hash("\u00fc", 1)).hash_match)

    def test_unencodable_text_is_invalid(self):
        with self.assertRaises(InvalidParameter) as ctx:
            verify_draw("abc123", 42, "\ud800")
        self.assertEqual(ctx.exception.field, "expectedHash")

    def test_arabic_indic_digits_do_not_verify_as_ascii_nonce(self):
        with self.assertRaises(InvalidParameter):
            verify_draw("abc123", "\u0664\u0662", ABC123_42_HASH)

    def test_non_numeric_nonce(self):
        with self.assertRaises(InvalidParameter) as ctx:
            verify_draw("abc123", "forty-two", ABC123_42_HASH)
        self.assertEqual(ctx.exception.field, "nonce")

    def test_result_json_has_only_public_fields(self):
        data = verify_draw("abc123", 42, ABC123_42_HASH).to_json()
        self.assertEqual(set(data), {"randomValue", "hashMatch", "txidHash"})

    def test_pool_commitment(self):
        commitment = generate_commitment()
        self.assertTrue(verify_pool_commitment(commitment.seed, commitment.commitment_hash))
        self.assertFalse(verify_pool_commitment("abc123", commitment.commitment_hash))
        self.assertFalse(verify_pool_commitment("\u00fc", "\u00fc" * 64))
        forged = "\u00e9" + commitment.commitment_hash[1:]
        self.assertFalse(verify_pool_commitment(commitment.seed, forged))

    def test_recompute_assignment_ignores_last_one(self):
        mapping = recompute_assignment("abc123", {"a賞": 1, "B": 2, "C": 7, "Last One": 1})
        self.assertEqual(sorted(mapping), list(range(1, 11)))
        labels = list(mapping.values())
        self.assertEqual(labels.count("A"), 1)
        self.assertEqual(labels.count("B"), 2)
        self.assertEqual(labels.count("C"), 7)


if __name__ == "__main__":
    unittest.main()
