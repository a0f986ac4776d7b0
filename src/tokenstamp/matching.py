"""Fuzzy ranking of bindable entities against a token's derived name.

Candidates come from two places: entities already in the world and entries
of compendium packs that would have to be imported first. Both are scored by
the same additive rules so a world goblin and a compendium goblin compare
directly; ties favour world entities.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from .collaborators import CompendiumIndexEntry, CompendiumPack, EntityRecord, EntityStore
from .config import ScoringWeights

logger = logging.getLogger(__name__)

WORLD = "world"
COMPENDIUM = "compendium"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_EXTENSION = re.compile(r"\.[^./\\]+$")
_SEPARATORS = re.compile(r"[_-]+")


def normalize_match_string(value: Any) -> str:
    if not value:
        return ""
    return _NON_ALNUM.sub(" ", str(value).lower()).strip()


def tokenize_match_string(value: Any) -> Tuple[str, ...]:
    normalized = normalize_match_string(value)
    return tuple(normalized.split(" ")) if normalized else ()


def build_match_tokens(*values: Any) -> Tuple[str, ...]:
    """Unique tokens from every value, in first-seen order."""
    tokens: Dict[str, None] = {}
    for value in values:
        for part in tokenize_match_string(value):
            tokens.setdefault(part, None)
    return tuple(tokens)


def strip_file_extension(value: Any) -> str:
    return _EXTENSION.sub("", str(value)) if value else ""


def join_folder_path(folders: Union[str, Sequence[str], None]) -> str:
    if not folders:
        return ""
    if isinstance(folders, str):
        return folders
    return " / ".join(name for name in folders if name)


@dataclass(frozen=True)
class MatchKey:
    raw: str
    normalized: str
    tokens: Tuple[str, ...]


def derive_match_key(entry: Any) -> MatchKey:
    """Build the query for auto-binding from a placement entry's names."""
    display_name = getattr(entry, "display_name", "") or ""
    filename = getattr(entry, "filename", "") or ""
    variant = getattr(entry, "variant_group_key", "") or ""
    file_stem = _SEPARATORS.sub(" ", strip_file_extension(filename))
    base_name = display_name or file_stem or filename or variant
    return MatchKey(
        raw=base_name,
        normalized=normalize_match_string(base_name),
        tokens=build_match_tokens(display_name, file_stem, filename, variant),
    )


@dataclass(frozen=True)
class MatchCandidate:
    """Immutable snapshot of a bindable entity option."""

    id: str
    kind: str
    label: str
    source_label: str = ""
    match_tokens: Tuple[str, ...] = ()
    match_normalized: str = ""
    source_tokens: Tuple[str, ...] = ()
    source_normalized: str = ""
    pack_tokens: Tuple[str, ...] = ()
    entity_id: Optional[str] = None
    pack_id: Optional[str] = None
    document_id: Optional[str] = None
    icon: str = ""

    @property
    def sort_key(self) -> str:
        return self.label.casefold()

    @property
    def subtitle(self) -> str:
        if self.kind == WORLD:
            return self.source_label or "World Entity"
        return f"Compendium • {self.source_label}" if self.source_label else "Compendium Entity"


def world_candidate(entity: EntityRecord) -> MatchCandidate:
    label = entity.name or "Unnamed Entity"
    folder_path = join_folder_path(entity.folder_path)
    prototype_name = (entity.prototype or {}).get("name", "")
    return MatchCandidate(
        id=f"world:{entity.id}",
        kind=WORLD,
        label=label,
        source_label=folder_path,
        match_tokens=build_match_tokens(label, folder_path, prototype_name),
        match_normalized=normalize_match_string(label),
        source_tokens=tokenize_match_string(folder_path),
        source_normalized=normalize_match_string(folder_path),
        entity_id=entity.id,
        icon=entity.img,
    )


def compendium_candidate(pack: CompendiumPack, entry: CompendiumIndexEntry) -> MatchCandidate:
    name = entry.name or "Unnamed Entity"
    label = pack.label or pack.id
    return MatchCandidate(
        id=f"comp:{pack.id}:{entry.id}",
        kind=COMPENDIUM,
        label=name,
        source_label=label,
        match_tokens=build_match_tokens(name, label, pack.id),
        match_normalized=normalize_match_string(name),
        source_tokens=tokenize_match_string(label),
        source_normalized=normalize_match_string(label),
        pack_tokens=tokenize_match_string(pack.id),
        pack_id=pack.id,
        document_id=entry.id,
        icon=entry.img,
    )


@dataclass(frozen=True)
class RankedCandidate:
    candidate: MatchCandidate
    score: float
    order: int

    @property
    def kind_rank(self) -> int:
        return 0 if self.candidate.kind == WORLD else 1


class EntityMatcher:
    """Scores and ranks :class:`MatchCandidate` options against a query."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        *,
        min_containment_length: int = 3,
        auto_select_min_score: float = 35,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.min_containment_length = min_containment_length
        self.auto_select_min_score = auto_select_min_score

    def score(self, candidate: MatchCandidate, tokens: Sequence[str], normalized: str) -> float:
        w = self.weights
        cand_tokens = candidate.match_tokens or tokenize_match_string(candidate.label)
        cand_normalized = candidate.match_normalized or normalize_match_string(candidate.label)
        token_set = set(cand_tokens)
        min_len = self.min_containment_length
        score = 0.0

        if normalized:
            if cand_normalized == normalized:
                score += w.exact
            elif cand_normalized.startswith(normalized) and len(normalized) >= min_len:
                score += w.candidate_prefix
            elif normalized.startswith(cand_normalized) and len(cand_normalized) >= min_len:
                score += w.query_prefix
            elif normalized in cand_normalized and len(normalized) >= min_len:
                score += w.substring

        matched = 0.0
        for token in tokens:
            if not token:
                continue
            if token in token_set:
                matched += 1
                score += w.token
            elif token in cand_normalized:
                matched += 0.5
                score += w.token_substring
            if token in candidate.source_tokens:
                score += w.source_token
            if token in candidate.pack_tokens:
                score += w.pack_token

        if tokens and matched >= len(tokens):
            score += w.all_tokens
        if tokens:
            score -= abs(len(cand_tokens) - len(tokens)) * w.token_count_penalty
        if candidate.kind == WORLD:
            score += w.world
        if normalized and candidate.source_normalized and normalized in candidate.source_normalized:
            score += w.source_label

        return max(score, 0.0)

    def rank(
        self,
        candidates: Iterable[MatchCandidate],
        tokens: Sequence[str],
        normalized: str,
        *,
        limit: int = 10,
        allow_zero: bool = False,
    ) -> List[RankedCandidate]:
        """Score, dedupe by id (best score wins) and sort.

        With ``allow_zero`` every candidate is kept, so an empty query still
        yields a list to show.
        """
        pool = list(candidates)
        best: Dict[str, RankedCandidate] = {}
        for index, candidate in enumerate(pool):
            score = self.score(candidate, tokens, normalized)
            if score <= 0 and not allow_zero:
                continue
            existing = best.get(candidate.id)
            if existing is None or score > existing.score:
                best[candidate.id] = RankedCandidate(candidate, score, index)

        ranked = sorted(
            best.values(),
            key=lambda r: (-r.score, r.kind_rank, r.candidate.sort_key, r.order),
        )
        return ranked[:limit]

    def auto_select(self, ranked: Sequence[RankedCandidate], user_modified: bool) -> Optional[MatchCandidate]:
        """Top candidate when confident enough and the user has not taken over."""
        if user_modified or not ranked:
            return None
        top = ranked[0]
        if top.score < self.auto_select_min_score:
            return None
        return top.candidate


class CandidateCatalog:
    """Live set of bindable candidates pulled from an :class:`EntityStore`.

    World candidates are cheap and rebuilt synchronously; compendium
    candidates need each pack's index loaded and are refreshed only on
    request. Entity-store change bursts are coalesced through
    :meth:`schedule_refresh`.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        debounce_s: float = 0.15,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._store = store
        self.debounce_s = debounce_s
        self.on_change = on_change
        self._excluded: Set[str] = set(getattr(store, "excluded_pack_ids", ()) or ())
        self._world: List[MatchCandidate] = []
        self._compendium: List[MatchCandidate] = []
        self._by_id: Dict[str, MatchCandidate] = {}
        self.loading = False
        self.loaded = False
        self.load_error: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._refresh_task: Optional["asyncio.Task[None]"] = None

    @property
    def world(self) -> List[MatchCandidate]:
        return list(self._world)

    @property
    def excluded_pack_ids(self) -> Set[str]:
        return set(self._excluded)

    def candidates(self, include_compendium: bool = True) -> List[MatchCandidate]:
        result = list(self._world)
        if include_compendium:
            result.extend(c for c in self._compendium if c.pack_id not in self._excluded)
        return result

    def get(self, candidate_id: str) -> Optional[MatchCandidate]:
        return self._by_id.get(candidate_id)

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._by_id

    def _rebuild_index(self) -> None:
        self._by_id = {c.id: c for c in self._world + self._compendium if c.id}

    def refresh_world(self) -> None:
        results: List[MatchCandidate] = []
        for entity in self._store.world_entities():
            if entity is None:
                continue
            try:
                results.append(world_candidate(entity))
            except (AttributeError, TypeError) as exc:
                logger.warning("Skipping world entity '%s': %s", getattr(entity, "id", "?"), exc)
        results.sort(key=lambda c: c.sort_key)
        self._world = results
        self._rebuild_index()
        logger.debug("World candidates refreshed (%d)", len(results))

    async def _collect_compendium(self) -> List[MatchCandidate]:
        results: List[MatchCandidate] = []
        for pack in self._store.compendium_packs():
            try:
                index = await self._store.load_pack_index(pack.id)
            except Exception as exc:
                logger.warning("Failed to load index for pack '%s': %s", pack.id, exc)
                continue
            for entry in index:
                if not entry.id:
                    continue
                results.append(compendium_candidate(pack, entry))
        results.sort(key=lambda c: (c.source_label.casefold(), c.sort_key))
        return results

    async def refresh(self, include_compendium: bool = True) -> None:
        """Rebuild world candidates and, optionally, compendium candidates."""
        self.refresh_world()
        self._notify()
        if not include_compendium:
            return
        self.loading = True
        try:
            self._compendium = await self._collect_compendium()
            self.load_error = None
        except Exception as exc:
            self.load_error = str(exc)
            logger.warning("Compendium candidates failed to load: %s", exc)
        finally:
            self.loading = False
        self.loaded = True
        self._rebuild_index()
        self._notify()

    def ensure_loaded(self) -> None:
        """Build world candidates now and load compendium ones in the background once."""
        if self.loaded or self.loading:
            return
        task = self._refresh_task
        if task is not None and not task.done():
            return
        self.refresh_world()
        self._refresh_task = asyncio.get_running_loop().create_task(self.refresh(include_compendium=True))

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def schedule_refresh(self, include_compendium: bool = False) -> None:
        """Coalesce refresh requests arriving within the debounce window."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce_s, self._fire_refresh, include_compendium)

    def _fire_refresh(self, include_compendium: bool) -> None:
        self._timer = None
        self._refresh_task = asyncio.get_running_loop().create_task(self.refresh(include_compendium))

    @property
    def refresh_pending(self) -> bool:
        return self._timer is not None

    async def wait_idle(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            await task

    def cancel_scheduled(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def purge(self, candidate_id: str) -> None:
        """Drop a candidate whose backing entity no longer exists."""
        self._by_id.pop(candidate_id, None)
        self._world = [c for c in self._world if c.id != candidate_id]
        self._compendium = [c for c in self._compendium if c.id != candidate_id]
        logger.info("Purged stale binding candidate '%s'", candidate_id)

    def is_pack_excluded(self, pack_id: str) -> bool:
        return pack_id in self._excluded

    def set_pack_excluded(self, pack_id: str, excluded: bool) -> None:
        self.set_packs_excluded([pack_id], excluded)

    def set_packs_excluded(self, pack_ids: Iterable[str], excluded: bool) -> None:
        for pack_id in pack_ids:
            if excluded:
                self._excluded.add(pack_id)
            else:
                self._excluded.discard(pack_id)
        logger.debug("Excluded packs now: %s", sorted(self._excluded))
        self._notify()

    def available_packs(self) -> List[Dict[str, Any]]:
        packs = []
        for pack in self._store.compendium_packs():
            packs.append({
                "id": pack.id,
                "label": pack.label or pack.id,
                "folder": join_folder_path(pack.folder_path) or None,
                "package_name": pack.package_name,
                "excluded": pack.id in self._excluded,
            })
        packs.sort(key=lambda p: (p["folder"] or "", p["label"]))
        return packs


__all__ = [
    "COMPENDIUM",
    "WORLD",
    "CandidateCatalog",
    "EntityMatcher",
    "MatchCandidate",
    "MatchKey",
    "RankedCandidate",
    "build_match_tokens",
    "compendium_candidate",
    "derive_match_key",
    "join_folder_path",
    "normalize_match_string",
    "strip_file_extension",
    "tokenize_match_string",
    "world_candidate",
]
