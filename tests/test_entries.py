import pytest

from tokenstamp.entries import (
    PlacementEntry,
    apply_entry_attributes,
    dedupe_pool,
    looks_like_image,
    normalize,
)

from conftest import DummyCard


def test_normalize_mapping_with_legacy_keys():
    entry = normalize({
        "source": "CLOUD",
        "tier": "Premium",
        "filename": "goblin.webp",
        "folderPath": "monsters",
        "gridWidth": "2",
        "scale": "1.5x",
    })
    assert entry.source == "cloud"
    assert entry.tier == "premium"
    assert entry.full_path == "monsters/goblin.webp"
    assert entry.grid_width == 2
    assert entry.grid_height == 1
    assert entry.scale == 1.5
    assert entry.identity_key == "monsters/goblin.webp"
    # cloud entries are never considered cached until a download resolves
    assert entry.cached_local_path == ""
    assert entry.is_cloud and entry.is_premium


def test_local_entry_is_cached_at_its_own_path():
    entry = normalize({"filename": "orc.png", "folder_path": "tokens/"})
    assert entry.source == "local"
    assert entry.tier == "free"
    assert entry.full_path == "tokens/orc.png"
    assert entry.cached_local_path == "tokens/orc.png"


def test_normalize_is_idempotent():
    raw = {"source": "cloud", "filename": "Bat.webp", "path": "beasts", "displayName": "Giant Bat", "scale": "0"}
    once = normalize(raw)
    assert normalize(once) == once
    assert once.scale == 1


def test_invalid_numbers_fall_back_to_one():
    entry = normalize({"filename": "x.webp", "grid_width": "abc", "grid_height": -3, "scale": float("nan")})
    assert entry.footprint == (1, 1, 1)


def test_normalize_from_card_reads_cached_url():
    card = DummyCard(**{
        "data-source": "cloud",
        "data-filename": "wolf.webp",
        "data-path": "beasts",
        "data-cached": "true",
        "data-url": "/cache/beasts/wolf.webp",
        "data-grid-w": "2",
        "data-grid-h": "2",
    })
    entry = normalize(card)
    assert entry.cached_local_path == "/cache/beasts/wolf.webp"
    assert entry.footprint == (2, 2, 1)


def test_normalize_rejects_unsupported_types():
    with pytest.raises(TypeError):
        normalize(42)


def test_dedupe_pool_keeps_first_and_skips_garbage():
    pool = dedupe_pool([
        {"filename": "a.webp", "folder_path": "t", "display_name": "First"},
        None,
        42,
        {"filename": "A.webp", "folder_path": "T", "display_name": "Second"},
        {"filename": "b.webp", "folder_path": "t"},
    ])
    assert [e.identity_key for e in pool] == ["t/a.webp", "t/b.webp"]
    assert pool[0].display_name == "First"


def test_looks_like_image_ignores_query_string():
    assert looks_like_image("/cache/goblin.PNG?v=3")
    assert not looks_like_image("/cache/readme.txt")
    assert not looks_like_image("")


def test_apply_entry_attributes_reflects_back_onto_card():
    card = DummyCard()
    entry = PlacementEntry(source="cloud", filename="a.webp", full_path="t/a.webp", identity_key="t/a.webp")
    entry.mark_cached("/cache/t/a.webp")
    apply_entry_attributes(entry, card)
    assert card.attrs["data-cached"] == "true"
    assert card.attrs["data-url"] == "/cache/t/a.webp"
    assert normalize(card).cached_local_path == "/cache/t/a.webp"
