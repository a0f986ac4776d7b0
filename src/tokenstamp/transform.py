from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

MAX_RANDOM_STRENGTH_DEG = 180.0
DEFAULT_RANDOM_STRENGTH_DEG = 45.0

Point = Tuple[float, float]


def normalize_rotation(value: Any) -> float:
    """Wrap any angle into ``[0, 360)``; non-numbers become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    wrapped = number % 360.0
    return 0.0 if wrapped == 360.0 else wrapped


def clamp_strength(value: Any, maximum: float = MAX_RANDOM_STRENGTH_DEG) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(maximum, number))


@dataclass(frozen=True)
class TransformSettings:
    """User-chosen base rotation/mirroring and their random toggles."""

    rotation_base_deg: float = 0.0
    rotation_random_strength_deg: float = DEFAULT_RANDOM_STRENGTH_DEG
    rotation_random_enabled: bool = False
    mirror_h: bool = False
    mirror_v: bool = False
    mirror_random_h: bool = False
    mirror_random_v: bool = False

    @property
    def random_rotation_active(self) -> bool:
        return self.rotation_random_enabled and clamp_strength(self.rotation_random_strength_deg) > 0

    @property
    def random_mirror_active(self) -> bool:
        return self.mirror_random_h or self.mirror_random_v


@dataclass(frozen=True)
class PendingTransform:
    """Values the next commit will use, plus where the pointer currently is.

    ``rotation_offset`` and the flip offsets are the randomized parts; they are
    kept separately so changing the base value keeps the same random jitter.
    """

    rotation_deg: float = 0.0
    rotation_offset: float = 0.0
    mirror_h: bool = False
    mirror_v: bool = False
    flip_offset_h: bool = False
    flip_offset_v: bool = False
    screen: Optional[Point] = None
    world: Optional[Point] = None
    snapped_world: Optional[Point] = None


def regenerate_rotation(
    settings: TransformSettings,
    pending: PendingTransform,
    rng: random.Random,
    *,
    regenerate: bool = False,
    clamp: bool = False,
) -> PendingTransform:
    base = normalize_rotation(settings.rotation_base_deg)
    if not settings.random_rotation_active:
        return replace(pending, rotation_offset=0.0, rotation_deg=base)
    limit = clamp_strength(settings.rotation_random_strength_deg)
    offset = pending.rotation_offset
    if regenerate:
        offset = (rng.random() * 2 - 1) * limit
    elif clamp:
        offset = max(-limit, min(limit, offset))
    return replace(pending, rotation_offset=offset, rotation_deg=normalize_rotation(base + offset))


def regenerate_mirror(
    settings: TransformSettings,
    pending: PendingTransform,
    rng: random.Random,
    *,
    regenerate: bool = False,
) -> PendingTransform:
    """Random toggles flip the base value on a coin toss; otherwise the base is used."""
    if settings.mirror_random_h:
        offset_h = rng.random() < 0.5 if regenerate else pending.flip_offset_h
        mirror_h = (not settings.mirror_h) if offset_h else settings.mirror_h
    else:
        offset_h, mirror_h = False, settings.mirror_h
    if settings.mirror_random_v:
        offset_v = rng.random() < 0.5 if regenerate else pending.flip_offset_v
        mirror_v = (not settings.mirror_v) if offset_v else settings.mirror_v
    else:
        offset_v, mirror_v = False, settings.mirror_v
    return replace(
        pending,
        mirror_h=mirror_h,
        mirror_v=mirror_v,
        flip_offset_h=offset_h,
        flip_offset_v=offset_v,
    )


def prepare_next(settings: TransformSettings, pending: PendingTransform, rng: random.Random) -> PendingTransform:
    """Pending values for the placement after a commit.

    Random parts are rolled again only when their toggle is on; fixed base
    values carry over unchanged.
    """
    pending = regenerate_rotation(settings, pending, rng, regenerate=settings.random_rotation_active, clamp=True)
    return regenerate_mirror(settings, pending, rng, regenerate=settings.random_mirror_active)


def format_mirror_summary(horizontal: bool, vertical: bool) -> str:
    if horizontal and vertical:
        return "H & V"
    if horizontal:
        return "H"
    if vertical:
        return "V"
    return "None"
