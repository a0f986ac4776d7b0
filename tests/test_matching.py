import asyncio
import random
from dataclasses import replace

from tokenstamp.collaborators import CompendiumIndexEntry, CompendiumPack, EntityRecord
from tokenstamp.entries import PlacementEntry
from tokenstamp.matching import (
    CandidateCatalog,
    EntityMatcher,
    compendium_candidate,
    derive_match_key,
    normalize_match_string,
    world_candidate,
)

from conftest import DummyStore

MONSTER_MANUAL = CompendiumPack(id="mm", label="Monster Manual")


def test_normalize_and_derive_match_key():
    assert normalize_match_string("Goblin_Archer-02.webp") == "goblin archer 02 webp"
    key = derive_match_key(PlacementEntry(filename="goblin_archer.webp"))
    assert key.raw == "goblin archer"
    assert key.normalized == "goblin archer"
    assert key.tokens == ("goblin", "archer", "webp")


def test_display_name_wins_over_filename():
    key = derive_match_key(PlacementEntry(filename="gob_01.webp", display_name="Goblin Boss"))
    assert key.normalized == "goblin boss"
    assert key.tokens[:2] == ("goblin", "boss")


def test_world_candidate_ranks_before_equal_compendium_entry():
    matcher = EntityMatcher()
    world = world_candidate(EntityRecord(id="g1", name="Goblin"))
    comp = compendium_candidate(MONSTER_MANUAL, CompendiumIndexEntry(id="c1", name="Goblin"))
    ranked = matcher.rank([comp, world], ("goblin",), "goblin")
    assert [r.candidate.id for r in ranked] == ["world:g1", "comp:mm:c1"]
    assert ranked[0].score > ranked[1].score


def test_more_matching_tokens_score_higher():
    matcher = EntityMatcher()
    archer = world_candidate(EntityRecord(id="a", name="Goblin Archer"))
    plain = world_candidate(EntityRecord(id="b", name="Goblin"))
    tokens = ("goblin", "archer")
    assert matcher.score(archer, tokens, "goblin archer") > matcher.score(plain, tokens, "goblin archer")


def test_adding_a_query_token_to_a_candidate_never_lowers_its_score():
    matcher = EntityMatcher()
    rng = random.Random(7)
    vocab = ["goblin", "archer", "wolf", "dire", "red", "dragon", "ancient", "skeleton", "king", "bat", "gob"]
    for i in range(300):
        name = " ".join(rng.sample(vocab, rng.randint(1, 3)))
        query = rng.sample(vocab, rng.randint(1, 3))
        if i % 2:
            candidate = world_candidate(EntityRecord(id=str(i), name=name))
        else:
            candidate = compendium_candidate(MONSTER_MANUAL, CompendiumIndexEntry(id=str(i), name=name))
        normalized = " ".join(query)
        for token in query:
            if token in candidate.match_tokens:
                continue
            widened = replace(candidate, match_tokens=candidate.match_tokens + (token,))
            before = matcher.score(candidate, query, normalized)
            assert matcher.score(widened, query, normalized) >= before, (name, query, token)


def test_zero_scores_dropped_unless_allowed():
    matcher = EntityMatcher()
    comp = compendium_candidate(MONSTER_MANUAL, CompendiumIndexEntry(id="c1", name="Goblin"))
    assert matcher.rank([comp], ("zzz",), "zzz") == []
    kept = matcher.rank([comp], ("zzz",), "zzz", allow_zero=True)
    assert len(kept) == 1 and kept[0].score == 0


def test_rank_dedupes_by_id_and_honours_limit():
    matcher = EntityMatcher()
    goblins = [world_candidate(EntityRecord(id=f"g{i}", name=f"Goblin {i}")) for i in range(5)]
    ranked = matcher.rank(goblins + goblins[:2], ("goblin",), "goblin", limit=3)
    assert len(ranked) == 3
    assert len({r.candidate.id for r in ranked}) == 3


def test_auto_select_threshold_and_user_override():
    matcher = EntityMatcher()
    exact = matcher.rank([world_candidate(EntityRecord(id="g1", name="Goblin"))], ("goblin",), "goblin")
    assert matcher.auto_select(exact, user_modified=False).id == "world:g1"
    assert matcher.auto_select(exact, user_modified=True) is None
    weak = matcher.rank([world_candidate(EntityRecord(id="w", name="Wolf"))], ("zzz",), "zzz")
    assert matcher.auto_select(weak, user_modified=False) is None


def _store_with_goblins():
    store = DummyStore()
    store.add(EntityRecord(id="g1", name="Goblin", folder_path=["Monsters", "Humanoids"]))
    store.add_pack(MONSTER_MANUAL, [CompendiumIndexEntry(id="c1", name="Goblin"), CompendiumIndexEntry(id="", name="x")])
    return store


def test_catalog_refresh_exclusion_and_purge():
    store = _store_with_goblins()
    changes = []
    catalog = CandidateCatalog(store, on_change=lambda: changes.append(1))
    asyncio.run(catalog.refresh())
    assert catalog.loaded
    assert "world:g1" in catalog
    assert "comp:mm:c1" in catalog
    assert catalog.get("world:g1").subtitle == "Monsters / Humanoids"

    catalog.set_pack_excluded("mm", True)
    assert catalog.is_pack_excluded("mm")
    assert [c.id for c in catalog.candidates()] == ["world:g1"]
    assert catalog.available_packs()[0]["excluded"] is True

    catalog.purge("world:g1")
    assert "world:g1" not in catalog
    assert len(changes) == 3


def test_catalog_starts_with_store_exclusions():
    store = _store_with_goblins()
    store.excluded_pack_ids = ["mm"]
    catalog = CandidateCatalog(store)
    asyncio.run(catalog.refresh())
    assert [c.id for c in catalog.candidates()] == ["world:g1"]


def test_schedule_refresh_coalesces_bursts():
    async def main():
        store = _store_with_goblins()
        changes = []
        catalog = CandidateCatalog(store, debounce_s=0.01, on_change=lambda: changes.append(1))
        catalog.schedule_refresh()
        catalog.schedule_refresh()
        assert catalog.refresh_pending
        await asyncio.sleep(0.05)
        await catalog.wait_idle()
        assert not catalog.refresh_pending
        assert changes == [1]
        assert "world:g1" in catalog

    asyncio.run(main())
