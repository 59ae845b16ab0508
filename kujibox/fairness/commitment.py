"""Commit-reveal primitives shared by the draw engine and the verifier.

A pool publishes ``SHA256(seed)`` before its first draw. Every draw then
uses a nonce (the pool's draw sequence number) and records
``SHA256("{seed}:{nonce}")``; its random value is
``HMAC-SHA256(key=seed, msg=str(nonce))`` scaled to ``[0, 1]``. Once the seed
is revealed anyone can recompute both for any draw.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import re
import secrets
from typing import Optional, Sequence, TypeVar, Union

from kujibox.errors import InvalidParameter, MissingParameter

T = TypeVar("T")

MIN_SEED_BYTES = 16
DEFAULT_SEED_BYTES = 32
_RANDOM_HEX_DIGITS = 16
_RANDOM_DENOMINATOR = int("f" * _RANDOM_HEX_DIGITS, 16)
# ASCII digits only; a nonce never exceeds a 64-bit draw counter.
_NONCE_MAX_DIGITS = 20
_NONCE_PATTERN = re.compile(r"^[+-]?[0-9]{1,%d}$" % _NONCE_MAX_DIGITS)

Nonce = Union[int, str]


@dataclass(frozen=True)
class Commitment:
    """Secret seed and the public hash that commits to it."""

    seed: str
    commitment_hash: str

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks.
        return f"Commitment(commitment_hash={self.commitment_hash!r})"


def normalize_seed(seed: Optional[str], *, field: str = "seed") -> str:
    """Validate ``seed`` without altering it; seeds are compared byte for byte."""
    if seed is None or seed == "":
        raise MissingParameter(field)
    if not isinstance(seed, str):
        raise InvalidParameter(field, f"{field} must be a string")
    try:
        seed.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidParameter(field, f"{field} must be valid text") from exc
    return seed


def normalize_nonce(nonce: Optional[Nonce]) -> int:
    """Return ``nonce`` as a non-negative int.

    Accepts ints, integral floats (JSON numbers) and decimal digit strings,
    so ``42``, ``42.0`` and ``"42"`` are the same nonce. Anything else is
    rejected rather than coerced.
    """
    if nonce is None or nonce == "":
        raise MissingParameter("nonce")
    if isinstance(nonce, bool):
        raise InvalidParameter("nonce", "nonce must be numeric, got a boolean")
    if isinstance(nonce, int):
        value = nonce
    elif isinstance(nonce, float):
        if not nonce.is_integer():
            raise InvalidParameter("nonce", f"nonce must be an integer, got {nonce!r}")
        value = int(nonce)
    elif isinstance(nonce, str):
        text = nonce.strip()
        if not _NONCE_PATTERN.fullmatch(text):
            raise InvalidParameter(
                "nonce",
                f"nonce must be a decimal integer of at most {_NONCE_MAX_DIGITS} digits",
            )
        try:
            value = int(text)
        except ValueError as exc:
            raise InvalidParameter("nonce", "nonce must be a decimal integer") from exc
    else:
        raise InvalidParameter("nonce", f"nonce must be numeric, got {type(nonce).__name__}")
    if value < 0:
        raise InvalidParameter("nonce", "nonce must be >= 0")
    if value >= 10**_NONCE_MAX_DIGITS:
        raise InvalidParameter(
            "nonce", f"nonce must have at most {_NONCE_MAX_DIGITS} digits"
        )
    return value


def generate_seed(nbytes: int = DEFAULT_SEED_BYTES) -> str:
    """Return a hex seed drawn from the operating system CSPRNG."""
    if nbytes < MIN_SEED_BYTES:
        raise ValueError(f"seeds need at least {MIN_SEED_BYTES} bytes of entropy")
    return secrets.token_hex(nbytes)


def seed_commitment(seed: str) -> str:
    """Pool-level commitment ``SHA256(seed)`` as lowercase hex."""
    seed = normalize_seed(seed)
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def generate_commitment(nbytes: int = DEFAULT_SEED_BYTES) -> Commitment:
    seed = generate_seed(nbytes)
    return Commitment(seed=seed, commitment_hash=seed_commitment(seed))


def txid_hash(seed: str, nonce: Nonce) -> str:
    """Per-draw commitment ``SHA256("{seed}:{nonce}")`` as lowercase hex."""
    seed = normalize_seed(seed)
    value = normalize_nonce(nonce)
    return hashlib.sha256(f"{seed}:{value}".encode("utf-8")).hexdigest()


def _hmac_unit(seed: str, message: str) -> float:
    digest = hmac.new(
        seed.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return int(digest[:_RANDOM_HEX_DIGITS], 16) / _RANDOM_DENOMINATOR


def derive_random_value(seed: str, nonce: Nonce) -> float:
    """Deterministic value in ``[0, 1]`` for ``(seed, nonce)``."""
    seed = normalize_seed(seed)
    return _hmac_unit(seed, str(normalize_nonce(nonce)))


def assign_tickets(seed: str, slots: Sequence[T]) -> list[T]:
    """Shuffle ``slots`` deterministically from ``seed``.

    Ticket number ``n`` receives element ``n - 1`` of the returned list.
    The Fisher-Yates swap index for position ``i`` comes from
    ``HMAC(seed, "shuffle:{i}")``, so the whole assignment is fixed by the
    committed seed and can be recomputed after it is revealed.
    """
    seed = normalize_seed(seed)
    shuffled = list(slots)
    for i in range(len(shuffled) - 1, 0, -1):
        u = _hmac_unit(seed, f"shuffle:{i}")
        j = min(int(u * (i + 1)), i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


__all__ = [
    "Commitment",
    "DEFAULT_SEED_BYTES",
    "MIN_SEED_BYTES",
    "assign_tickets",
    "derive_random_value",
    "generate_commitment",
    "generate_seed",
    "normalize_nonce",
    "normalize_seed",
    "seed_commitment",
    "txid_hash",
]
