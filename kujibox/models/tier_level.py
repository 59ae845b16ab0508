"""Prize tier grades and their fixed ordering."""

from __future__ import annotations

import enum
import re

from kujibox.errors import InvalidParameter

_LAST_ONE_ALIASES = {"last one", "lastone", "最後賞", "ラストワン", "ラストワン賞"}
_GRADE_SUFFIXES = ("賞", " prize", " tier")


class TierLevel(enum.IntEnum):
    """Grade of a prize tier.

    The integer value is the sort key: ``A`` is the top grade and sorts
    first, ``LAST_ONE`` always sorts last whatever label variant it was
    stored under.
    """

    A = 1
    B = 2
    C = 3
    D = 4
    E = 5
    F = 6
    G = 7
    H = 8
    LAST_ONE = 99

    @property
    def label(self) -> str:
        """Canonical label stored in ``product_prizes.level``."""
        if self is TierLevel.LAST_ONE:
            return "Last One"
        return self.name

    @property
    def is_last_one(self) -> bool:
        return self is TierLevel.LAST_ONE

    @classmethod
    def parse(cls, label: "str | TierLevel") -> "TierLevel":
        """Normalize a free-form grade label.

        ``"A"``, ``"a"``, ``"A賞"`` and ``"A Prize"`` all map to :attr:`A`;
        ``"Last One"``, ``"LAST ONE"``, ``"last_one"`` and ``"最後賞"`` map to
        :attr:`LAST_ONE`. Unknown labels raise
        :class:`~kujibox.errors.InvalidParameter`.
        """
        if isinstance(label, TierLevel):
            return label
        if not isinstance(label, str):
            raise InvalidParameter("level", f"Tier level must be a string, got {label!r}")

        text = re.sub(r"[\s_\-]+", " ", label.strip()).casefold()
        if text in _LAST_ONE_ALIASES:
            return cls.LAST_ONE
        for suffix in _GRADE_SUFFIXES:
            if text.endswith(suffix):
                text = text[: -len(suffix)].strip()
                break
        if text in _LAST_ONE_ALIASES:
            return cls.LAST_ONE
        if len(text) == 1 and "a" <= text <= "h":
            return cls[text.upper()]
        raise InvalidParameter("level", f"Unknown prize tier level {label!r}")


__all__ = ["TierLevel"]
