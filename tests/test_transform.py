import random

from tokenstamp.transform import (
    PendingTransform,
    TransformSettings,
    clamp_strength,
    format_mirror_summary,
    normalize_rotation,
    prepare_next,
    regenerate_mirror,
    regenerate_rotation,
)


def test_rotation_wraps_into_range():
    assert normalize_rotation(-15) == 345
    assert normalize_rotation(720) == 0
    assert normalize_rotation("abc") == 0
    assert normalize_rotation(float("inf")) == 0


def test_strength_is_clamped():
    assert clamp_strength(500) == 180
    assert clamp_strength(-1) == 0
    assert clamp_strength("x") == 0


def test_fixed_rotation_ignores_rng():
    settings = TransformSettings(rotation_base_deg=90)
    pending = regenerate_rotation(settings, PendingTransform(rotation_offset=30), random.Random(1), regenerate=True)
    assert pending.rotation_deg == 90
    assert pending.rotation_offset == 0


def test_random_rotation_stays_within_strength():
    settings = TransformSettings(rotation_base_deg=10, rotation_random_enabled=True, rotation_random_strength_deg=20)
    rng = random.Random(4)
    pending = PendingTransform()
    for _ in range(50):
        pending = prepare_next(settings, pending, rng)
        assert -20 <= pending.rotation_offset <= 20
        assert pending.rotation_deg == normalize_rotation(10 + pending.rotation_offset)


def test_lowering_strength_clamps_existing_offset():
    wide = TransformSettings(rotation_random_enabled=True, rotation_random_strength_deg=90)
    narrow = TransformSettings(rotation_random_enabled=True, rotation_random_strength_deg=10)
    pending = PendingTransform(rotation_offset=60)
    pending = regenerate_rotation(narrow, pending, random.Random(0), clamp=True)
    assert pending.rotation_offset == 10
    assert regenerate_rotation(wide, pending, random.Random(0)).rotation_offset == 10


def test_fixed_mirror_carries_over():
    settings = TransformSettings(mirror_h=True)
    pending = prepare_next(settings, PendingTransform(), random.Random(2))
    assert (pending.mirror_h, pending.mirror_v) == (True, False)


def test_random_mirror_flips_relative_to_base():
    settings = TransformSettings(mirror_v=True, mirror_random_v=True)
    rng = random.Random(11)
    seen = set()
    for _ in range(30):
        pending = regenerate_mirror(settings, PendingTransform(), rng, regenerate=True)
        assert pending.mirror_v == (not pending.flip_offset_v)
        seen.add(pending.mirror_v)
    assert seen == {True, False}


def test_mirror_summary():
    assert format_mirror_summary(True, True) == "H & V"
    assert format_mirror_summary(False, True) == "V"
    assert format_mirror_summary(False, False) == "None"
