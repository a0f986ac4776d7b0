import asyncio
import random

import pytest

from tokenstamp.errors import FormulaError
from tokenstamp.hp import (
    STATIC_HP_FORMAT_HINT,
    STATIC_HP_POSITIVE_HINT,
    HPBase,
    HPOverride,
    HPParams,
    HPResolver,
    calculate_percent_range,
    format_hp_summary,
    normalize_hp_mode,
    parse_static_hp,
    read_hp_base,
    round_half_up,
    sanitize_hp_percent,
)
from tokenstamp.systems import get_system_profile


def test_static_hp_parsing():
    fixed = parse_static_hp(" 45 ")
    assert fixed.valid and fixed.kind == "fixed" and fixed.value == 45

    swapped = parse_static_hp("85-20")
    assert (swapped.kind, swapped.min, swapped.max) == ("range", 20, 85)

    en_dash = parse_static_hp("20–85")
    assert en_dash.valid and (en_dash.min, en_dash.max) == (20, 85)

    assert parse_static_hp("10-10").kind == "fixed"


@pytest.mark.parametrize("raw, reason", [
    ("", ""),
    (None, ""),
    ("abc", STATIC_HP_FORMAT_HINT),
    ("5-", STATIC_HP_FORMAT_HINT),
    ("0", STATIC_HP_POSITIVE_HINT),
    ("0-10", STATIC_HP_POSITIVE_HINT),
])
def test_static_hp_rejections(raw, reason):
    parsed = parse_static_hp(raw)
    assert not parsed.valid
    assert parsed.reason == reason


def test_percent_range():
    assert calculate_percent_range(40, 0) == (40, 40)
    assert calculate_percent_range(100, 20) == (80, 120)
    assert calculate_percent_range(1, 500) == (1, 6)


def test_sanitize_and_rounding():
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert sanitize_hp_percent("abc") == 20
    assert sanitize_hp_percent(9999) == 500
    assert sanitize_hp_percent(-5) == 0
    assert sanitize_hp_percent("12.5") == 13


def test_mode_aliases():
    assert normalize_hp_mode("Actor") == "inherit"
    assert normalize_hp_mode("preset") == "inherit"
    assert normalize_hp_mode("PERCENT") == "percent"
    assert normalize_hp_mode("bogus") == "inherit"
    assert normalize_hp_mode(None) == "inherit"


def test_read_hp_base_per_system():
    generic = get_system_profile(None)
    base = read_hp_base({"hp": {"value": 12, "max": 30, "formula": "2d8+4"}}, generic)
    assert base == HPBase(path="hp", value=12, max=30, formula="2d8+4")
    assert base.base == 30

    flat = read_hp_base({"hp": 15}, generic)
    assert (flat.value, flat.max, flat.formula) == (15, 15, "")

    dnd = get_system_profile("dnd5e")
    nested = read_hp_base({"system": {"attributes": {"hp": {"value": 7, "formula": "2d6"}}}}, dnd)
    assert nested.path == "system.attributes.hp"
    assert (nested.max, nested.formula) == (7, "2d6")

    assert read_hp_base({}, generic) is None
    assert get_system_profile("unknown-system").id == "generic"


def test_resolver_percent_zero_keeps_base():
    resolver = HPResolver(rng=random.Random(1))
    override = asyncio.run(resolver.resolve("percent", HPParams(percent=0), HPBase(path="hp", value=40, max=40)))
    assert override == HPOverride(attribute_path="hp", value=40, max=40)
    assert override.as_update() == {"hp.value": 40, "hp.max": 40}


def test_percent_draw_stays_within_rounded_bounds():
    resolver = HPResolver(rng=random.Random(11))
    bases = list(range(1, 300, 7)) + [2, 3, 1000]
    percents = [0, 1, 5, 20, 33, 50, 99, 100, 101, 250, 499, 500]

    async def main():
        drawn = []
        for base in bases:
            for pct in percents:
                hp = HPBase(path="hp", value=base, max=base)
                for _ in range(3):
                    drawn.append((base, pct, await resolver.resolve("percent", HPParams(percent=pct), hp)))
        return drawn

    for base, pct, override in asyncio.run(main()):
        low = max(1, round_half_up(base * (1 - pct / 100)))
        high = max(low, round_half_up(base * (1 + pct / 100)))
        assert calculate_percent_range(base, pct) == (low, high)
        assert low <= override.value <= high
        assert override.value == override.max


def test_resolver_static_range_stays_in_bounds():
    resolver = HPResolver(rng=random.Random(5))
    base = HPBase(path="hp", value=1, max=1)

    async def main():
        return [await resolver.resolve("static", HPParams(static_value="20-25"), base) for _ in range(20)]

    values = [o.value for o in asyncio.run(main())]
    assert all(20 <= v <= 25 for v in values)


def test_resolver_inherit_and_missing_base_give_nothing():
    resolver = HPResolver()
    base = HPBase(path="hp", value=10, max=10)
    assert asyncio.run(resolver.resolve("inherit", HPParams(), base)) is None
    assert asyncio.run(resolver.resolve("percent", HPParams(), None)) is None
    assert asyncio.run(resolver.resolve("static", HPParams(static_value="oops"), base)) is None


def test_formula_rolls_with_default_evaluator():
    resolver = HPResolver()
    override = asyncio.run(resolver.resolve("formula", HPParams(), HPBase(path="hp", formula="2d1+3")))
    assert override.value == override.max == 5


def test_formula_warning_is_shown_once():
    warnings = []

    async def broken(formula, rng):
        raise FormulaError("nope")

    resolver = HPResolver(evaluator=broken, warn=warnings.append)
    base = HPBase(path="hp", value=10, max=10, formula="1d")

    async def main():
        for _ in range(3):
            assert await resolver.resolve("formula", HPParams(), base) is None
        assert await resolver.resolve("formula", HPParams(), HPBase(path="hp")) is None

    asyncio.run(main())
    assert len(warnings) == 1
    assert resolver.formula_warned

    resolver.reset_warnings()
    asyncio.run(resolver.resolve("formula", HPParams(), base))
    assert len(warnings) == 2


def test_any_evaluator_error_warns_once():
    warnings = []

    async def crashing(formula, rng):
        raise ZeroDivisionError("bad divisor")

    resolver = HPResolver(evaluator=crashing, warn=warnings.append)
    base = HPBase(path="hp", value=10, max=10, formula="1d6/0")

    async def main():
        return [await resolver.resolve("formula", HPParams(), base) for _ in range(2)]

    assert asyncio.run(main()) == [None, None]
    assert warnings == ["Failed to roll HP formula. Using preset HP instead."]


def test_summaries():
    assert format_hp_summary("inherit") == "HP: Entity preset"
    assert format_hp_summary("percent", percent=15) == "HP: ±15% of preset"
    assert format_hp_summary("static", static_parsed=parse_static_hp("20-85")) == "HP: 20-85"
    assert format_hp_summary("static") == "HP: Custom value"
