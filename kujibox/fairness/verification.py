"""Stateless verification of individual draws and revealed pools."""

from __future__ import annotations

from dataclasses import dataclass
import hmac
from typing import Any, Mapping, Optional

from kujibox.errors import InvalidParameter, MissingParameter
from kujibox.models.tier_level import TierLevel
from .commitment import (
    Nonce,
    assign_tickets,
    derive_random_value,
    normalize_nonce,
    normalize_seed,
    seed_commitment,
    txid_hash,
)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of re-deriving one draw.

    Attributes
    ----------
    random_value : float
        Value in ``[0, 1]`` derived exactly as the draw engine derived it.
    hash_match : bool
        Whether the recomputed hash equals the expected hash.
    txid_hash : str
        The recomputed ``SHA256("{seed}:{nonce}")``.

    Notes
    -----
    The result deliberately carries nothing about tier odds or how the
    random value was mapped onto a ticket.
    """

    random_value: float
    hash_match: bool
    txid_hash: str

    def to_json(self) -> dict[str, Any]:
        return {
            "randomValue": self.random_value,
            "hashMatch": self.hash_match,
            "txidHash": self.txid_hash,
        }


def verify_draw(
    seed: Optional[str],
    nonce: Optional[Nonce],
    expected_hash: Optional[str],
) -> VerificationResult:
    """Recompute the hash and random value of a draw.

    Parameters
    ----------
    seed : str
        Revealed pool seed.
    nonce : int or str
        Draw sequence number recorded on the draw.
    expected_hash : str
        Hash published with the draw.

    Returns
    -------
    VerificationResult
        A mismatch is reported as ``hash_match=False``, never raised.

    Raises
    ------
    MissingParameter
        If any argument is missing or empty. Nothing is computed.
    InvalidParameter
        If an argument is malformed (for example a non-numeric nonce).
    """
    for field, value in (("seed", seed), ("nonce", nonce), ("expectedHash", expected_hash)):
        if value is None or value == "":
            raise MissingParameter(field)
    expected_hash = normalize_seed(expected_hash, field="expectedHash")

    seed = normalize_seed(seed)
    value = normalize_nonce(nonce)

    computed = txid_hash(seed, value)
    return VerificationResult(
        random_value=derive_random_value(seed, value),
        hash_match=hmac.compare_digest(
            computed.encode("utf-8"), expected_hash.encode("utf-8")
        ),
        txid_hash=computed,
    )


def verify_pool_commitment(seed: Optional[str], commitment_hash: Optional[str]) -> bool:
    """Check that a revealed seed matches the commitment published at pool creation."""
    if commitment_hash is None or commitment_hash == "":
        raise MissingParameter("txidHash")
    seed = normalize_seed(seed)
    commitment_hash = normalize_seed(commitment_hash, field="txidHash")
    # compare_digest rejects non-ASCII str, so compare the encoded bytes.
    return hmac.compare_digest(
        seed_commitment(seed).encode("utf-8"), commitment_hash.encode("utf-8")
    )


def recompute_assignment(seed: str, tier_totals: Mapping[str, int]) -> dict[int, str]:
    """Rebuild the ticket number -> tier label map of a revealed pool.

    ``tier_totals`` maps tier labels (any accepted spelling) to their ticket
    totals. The Last One tier is not part of the numbered pool and is
    ignored.
    """
    levels: list[tuple[TierLevel, int]] = []
    for label, total in tier_totals.items():
        level = TierLevel.parse(label)
        if level.is_last_one:
            continue
        if isinstance(total, bool) or not isinstance(total, int) or total <= 0:
            raise InvalidParameter("total", f"Tier {label!r} total must be a positive integer")
        levels.append((level, total))
    levels.sort(key=lambda item: item[0])

    slots = [level.label for level, total in levels for _ in range(total)]
    shuffled = assign_tickets(seed, slots)
    return {number: label for number, label in enumerate(shuffled, start=1)}


__all__ = [
    "VerificationResult",
    "recompute_assignment",
    "verify_draw",
    "verify_pool_commitment",
]
