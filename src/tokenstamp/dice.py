from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import FormulaError

MAX_DICE = 1000
MAX_FACES = 10000

_TERM = re.compile(
    r"""
    (?P<sign>[+-])?\s*
    (?:
        (?P<count>\d*)d(?P<faces>\d+)(?:(?P<keep>k[hl]?)(?P<keep_n>\d+))?
      | (?P<const>\d+)
    )
    \s*
    """,
    re.IGNORECASE | re.VERBOSE,
)


@dataclass(frozen=True)
class DiceRoll:
    """Outcome of one evaluated formula: total plus the raw and kept dice per term."""

    formula: str
    total: int
    rolls: Tuple[Tuple[int, ...], ...]
    kept: Tuple[Tuple[int, ...], ...]


def _roll_term(rng: random.Random, count: int, faces: int, keep: Optional[str], keep_n: int) -> Tuple[List[int], List[int]]:
    rolls = [rng.randint(1, faces) for _ in range(count)]
    if not keep:
        return rolls, list(rolls)
    ordered = sorted(rolls)
    keep_n = min(keep_n, count)
    kept = ordered[:keep_n] if keep.lower() == "kl" else ordered[count - keep_n:]
    return rolls, kept


def roll(formula: str, rng: Optional[random.Random] = None) -> DiceRoll:
    """Evaluate a dice formula such as ``"2d8 + 4"`` or ``"4d6kh3"``.

    Supported terms are ``NdM`` (``N`` defaults to 1), keep-highest ``khN`` /
    ``kN`` and keep-lowest ``klN`` suffixes, and integer constants, joined by
    ``+`` and ``-``. Raises :class:`FormulaError` on anything else.
    """
    text = str(formula or "").strip()
    if not text:
        raise FormulaError("Empty dice formula")
    rng = rng or random.Random()

    total = 0
    all_rolls: List[Tuple[int, ...]] = []
    all_kept: List[Tuple[int, ...]] = []
    pos = 0
    first = True
    while pos < len(text):
        match = _TERM.match(text, pos)
        if not match or match.end() == pos:
            raise FormulaError(f"Invalid dice formula '{text}' at position {pos}")
        if not first and not match.group("sign"):
            raise FormulaError(f"Missing operator in dice formula '{text}' at position {pos}")
        sign = -1 if match.group("sign") == "-" else 1
        if match.group("const") is not None:
            total += sign * int(match.group("const"))
        else:
            count = int(match.group("count") or 1)
            faces = int(match.group("faces"))
            if count < 1 or count > MAX_DICE:
                raise FormulaError(f"Dice count out of range in '{text}'")
            if faces < 1 or faces > MAX_FACES:
                raise FormulaError(f"Die faces out of range in '{text}'")
            keep = match.group("keep")
            keep_n = int(match.group("keep_n") or 0)
            if keep and keep_n < 1:
                raise FormulaError(f"Keep count must be positive in '{text}'")
            rolls, kept = _roll_term(rng, count, faces, keep, keep_n)
            total += sign * sum(kept)
            all_rolls.append(tuple(rolls))
            all_kept.append(tuple(kept))
        pos = match.end()
        first = False

    return DiceRoll(formula=text, total=total, rolls=tuple(all_rolls), kept=tuple(all_kept))


async def evaluate(formula: str, rng: Optional[random.Random] = None) -> int:
    """Async formula evaluator used by :class:`tokenstamp.hp.HPResolver`."""
    return roll(formula, rng).total
