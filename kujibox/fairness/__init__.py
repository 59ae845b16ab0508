"""Commit-reveal fairness primitives."""

from .commitment import (
    Commitment,
    assign_tickets,
    derive_random_value,
    generate_commitment,
    generate_seed,
    normalize_nonce,
    seed_commitment,
    txid_hash,
)
from .verification import (
    VerificationResult,
    recompute_assignment,
    verify_draw,
    verify_pool_commitment,
)

__all__ = [
    "Commitment",
    "VerificationResult",
    "assign_tickets",
    "derive_random_value",
    "generate_commitment",
    "generate_seed",
    "normalize_nonce",
    "recompute_assignment",
    "seed_commitment",
    "txid_hash",
    "verify_draw",
    "verify_pool_commitment",
]
