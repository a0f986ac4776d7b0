"""Health-point override rules.

Four modes decide the HP written onto a placed entity:

- ``inherit``: keep the bound entity's own HP (no override).
- ``formula``: roll the entity's HP dice formula.
- ``percent``: jitter the preset HP by up to +-N percent.
- ``static``: a fixed value (``"45"``) or an inclusive range (``"20-85"``).

An override always sets current HP equal to max HP.
"""
from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from . import dice
from .errors import FormulaError
from .systems import SystemProfile, get_property

logger = logging.getLogger(__name__)

HP_MODES: Tuple[str, ...] = ("inherit", "formula", "percent", "static")
DEFAULT_HP_PERCENT = 20
MAX_HP_PERCENT = 500
STATIC_HP_MAX_LENGTH = 120

STATIC_HP_FORMAT_HINT = "Enter a number or range like 20-85."
STATIC_HP_POSITIVE_HINT = "HP must be greater than zero."

_MODE_ALIASES = {"actor": "inherit", "preset": "inherit"}
_DASHES = re.compile("[–—−]")
_STATIC_PATTERN = re.compile(r"^(\d+)(?:\s*-\s*(\d+))?$")

FormulaEvaluator = Callable[[str, random.Random], Awaitable[int]]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_hp_mode(mode: Any) -> str:
    if not isinstance(mode, str):
        return "inherit"
    value = mode.strip().lower()
    value = _MODE_ALIASES.get(value, value)
    return value if value in HP_MODES else "inherit"


def sanitize_hp_percent(value: Any, default: int = DEFAULT_HP_PERCENT, maximum: int = MAX_HP_PERCENT) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return max(0, min(maximum, round_half_up(number)))


@dataclass(frozen=True)
class StaticHPParse:
    """Result of parsing a user-entered static HP string.

    ``kind`` is ``"fixed"`` or ``"range"`` when valid. ``reason`` carries the
    inline validation message when invalid (empty for blank input).
    """

    valid: bool
    kind: str = ""
    value: Optional[int] = None
    min: Optional[int] = None
    max: Optional[int] = None
    reason: str = ""


def parse_static_hp(raw: Any) -> StaticHPParse:
    text = raw.strip() if isinstance(raw, str) else ""
    if not text:
        return StaticHPParse(valid=False)
    text = _DASHES.sub("-", text)
    match = _STATIC_PATTERN.match(text)
    if not match:
        return StaticHPParse(valid=False, reason=STATIC_HP_FORMAT_HINT)
    first = int(match.group(1))
    if first <= 0:
        return StaticHPParse(valid=False, reason=STATIC_HP_POSITIVE_HINT)
    if match.group(2) is None:
        return StaticHPParse(valid=True, kind="fixed", value=first)
    second = int(match.group(2))
    if second <= 0:
        return StaticHPParse(valid=False, reason=STATIC_HP_POSITIVE_HINT)
    low, high = min(first, second), max(first, second)
    if low == high:
        return StaticHPParse(valid=True, kind="fixed", value=low)
    return StaticHPParse(valid=True, kind="range", min=low, max=high)


def calculate_percent_range(base: Any, percent: Any) -> Tuple[int, int]:
    pct = sanitize_hp_percent(percent)
    try:
        base_value = max(1, round_half_up(float(base or 0)))
    except (TypeError, ValueError):
        base_value = 1
    low = max(1, round_half_up(base_value * (1 - pct / 100)))
    high = max(low, round_half_up(base_value * (1 + pct / 100)))
    return low, high


def random_in_range(low: int, high: int, rng: random.Random) -> int:
    low, high = int(min(low, high)), int(max(low, high))
    if high <= low:
        return max(1, low)
    return rng.randint(low, high)


def format_hp_summary(mode: str, *, percent: Optional[int] = None, static_value: str = "",
                      static_parsed: Optional[StaticHPParse] = None) -> str:
    mode = normalize_hp_mode(mode)
    if mode == "formula":
        return "HP: Roll formula"
    if mode == "percent":
        pct = DEFAULT_HP_PERCENT if percent is None else percent
        return f"HP: ±{pct}% of preset"
    if mode == "static":
        if static_parsed is not None and static_parsed.valid:
            if static_parsed.kind == "fixed":
                return f"HP: {static_parsed.value}"
            return f"HP: {static_parsed.min}-{static_parsed.max}"
        if static_value and static_value.strip():
            return f"HP: {static_value.strip()}"
        return "HP: Custom value"
    return "HP: Entity preset"


@dataclass(frozen=True)
class HPBase:
    """HP data read from an entity: attribute path, current, max and formula."""

    path: str
    value: float = 0
    max: float = 0
    formula: str = ""

    @property
    def base(self) -> int:
        return max(1, round_half_up(float(self.max or self.value or 0)))


@dataclass(frozen=True)
class HPParams:
    percent: int = DEFAULT_HP_PERCENT
    static_value: str = ""
    formula: str = ""


@dataclass(frozen=True)
class HPOverride:
    attribute_path: str
    value: int
    max: int

    def as_update(self) -> dict:
        return {f"{self.attribute_path}.value": self.value, f"{self.attribute_path}.max": self.max}


def _number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return 0 if math.isnan(number) else number


def read_hp_base(entity_data: Any, profile: SystemProfile) -> Optional[HPBase]:
    """Read HP for ``profile`` out of an entity's data; None when absent."""
    if entity_data is None:
        return None
    data = get_property(entity_data, profile.hp_path)
    if data is None:
        return None
    if isinstance(data, (int, float)) and not isinstance(data, bool):
        value = max_value = _number(data)
    else:
        raw_value = get_property(data, "value")
        raw_max = get_property(data, "max")
        value = _number(raw_value if raw_value is not None else raw_max)
        max_value = _number(raw_max if raw_max is not None else raw_value)
    formula = ""
    if profile.hp_formula_path:
        raw_formula = get_property(entity_data, profile.hp_formula_path)
        if isinstance(raw_formula, str):
            formula = raw_formula.strip()
    return HPBase(path=profile.hp_path, value=value, max=max_value, formula=formula)


async def _default_evaluator(formula: str, rng: random.Random) -> int:
    return await dice.evaluate(formula, rng)


class HPResolver:
    """Turn an HP mode plus parameters into an :class:`HPOverride`.

    ``warn`` is called at most once per resolver lifetime for formula problems
    (missing formula or failed roll); later failures only log. Call
    :meth:`reset_warnings` when a new session starts.
    """

    def __init__(
        self,
        *,
        evaluator: Optional[FormulaEvaluator] = None,
        rng: Optional[random.Random] = None,
        warn: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._evaluator = evaluator or _default_evaluator
        self._rng = rng or random.Random()
        self._warn = warn
        self._formula_warned = False

    @property
    def formula_warned(self) -> bool:
        return self._formula_warned

    def reset_warnings(self) -> None:
        self._formula_warned = False

    def _warn_once(self, message: str) -> None:
        if self._formula_warned:
            logger.debug("Suppressed repeated HP formula warning: %s", message)
            return
        self._formula_warned = True
        logger.warning(message)
        if self._warn is not None:
            self._warn(message)

    async def resolve(self, mode: str, params: HPParams, base: Optional[HPBase]) -> Optional[HPOverride]:
        mode = normalize_hp_mode(mode)
        if mode == "inherit" or base is None:
            return None

        value: Optional[float] = None
        if mode == "formula":
            formula = (params.formula or base.formula or "").strip()
            if not formula:
                self._warn_once("No HP formula available for the selected entity. Using preset HP.")
                return None
            try:
                value = await self._evaluator(formula, self._rng)
            except FormulaError as exc:
                logger.info("HP formula '%s' failed: %s", formula, exc)
                self._warn_once("Failed to roll HP formula. Using preset HP instead.")
                return None
            except Exception:
                logger.exception("HP formula evaluator raised for '%s'", formula)
                self._warn_once("Failed to roll HP formula. Using preset HP instead.")
                return None
        elif mode == "percent":
            low, high = calculate_percent_range(base.base, params.percent)
            value = random_in_range(low, high, self._rng)
        elif mode == "static":
            parsed = parse_static_hp(params.static_value)
            if not parsed.valid:
                return None
            if parsed.kind == "fixed":
                value = parsed.value
            else:
                value = random_in_range(parsed.min, parsed.max, self._rng)

        if value is None or _number(value) <= 0:
            return None
        final = max(1, round_half_up(_number(value)))
        logger.debug("Resolved HP override (%s): %d at '%s'", mode, final, base.path)
        return HPOverride(attribute_path=base.path, value=final, max=final)
