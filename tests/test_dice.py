import asyncio
import random

import pytest

from tokenstamp.dice import evaluate, roll
from tokenstamp.errors import FormulaError


def test_constant_and_single_faced_dice():
    assert roll("3d1 + 2").total == 5
    assert roll("10 - 3").total == 7
    assert roll("d1").total == 1


def test_keep_highest_and_lowest():
    rng = random.Random(3)
    result = roll("4d6kh3", rng)
    assert len(result.rolls[0]) == 4
    assert len(result.kept[0]) == 3
    assert sorted(result.kept[0]) == sorted(result.rolls[0])[1:]
    low = roll("2d20kl1", random.Random(3))
    assert low.total == min(low.rolls[0])


def test_seeded_rolls_are_deterministic():
    assert roll("8d6+4", random.Random(99)).total == roll("8d6+4", random.Random(99)).total


@pytest.mark.parametrize("formula", ["", "2x6", "2d6 3", "1001d6", "1d0", "4d6k0"])
def test_invalid_formulas_raise(formula):
    with pytest.raises(FormulaError):
        roll(formula)


def test_async_evaluate():
    assert asyncio.run(evaluate("2d1+1")) == 3
