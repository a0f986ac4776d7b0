from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .collaborators import EntityRecord, EntityStore
from .matching import (
    COMPENDIUM,
    WORLD,
    CandidateCatalog,
    EntityMatcher,
    MatchCandidate,
    MatchKey,
    RankedCandidate,
    derive_match_key,
    normalize_match_string,
)
from .errors import EntityImportError
from .results import Failure, FailureKind, Ok, StepResult

logger = logging.getLogger(__name__)

CREATE_NEW = "create-new"
SEARCH_MAX_LENGTH = 120


@dataclass(frozen=True)
class BindingSelection:
    """What the next commit binds to: ``new`` or an existing ``entity``."""

    mode: str
    candidate: Optional[MatchCandidate] = None
    linked: bool = False

    @property
    def is_entity(self) -> bool:
        return self.mode == "entity" and self.candidate is not None


NEW_SELECTION = BindingSelection(mode="new")


class BindingController:
    """Tracks which entity (if any) placed instances bind to.

    Selection is either automatic (the matcher's confident top pick for the
    current entry) or manual. Once the user picks, searches or toggles
    linkage, automatic selection stops until the next session resets it.
    """

    def __init__(
        self,
        store: EntityStore,
        catalog: CandidateCatalog,
        matcher: EntityMatcher,
        *,
        max_suggestions: int = 10,
        max_results: int = 60,
    ) -> None:
        self._store = store
        self.catalog = catalog
        self.matcher = matcher
        self.max_suggestions = max_suggestions
        self.max_results = max_results

        self.selection_id = CREATE_NEW
        self.selected: Optional[MatchCandidate] = None
        self.linked = False
        self.search = ""
        self.user_modified = False
        self.selection_auto = False
        self.match_key = MatchKey(raw="", normalized="", tokens=())
        self.suggestions: List[RankedCandidate] = []
        self.append_number_override: Optional[bool] = None
        self.prepend_adjective_override: Optional[bool] = None
        self.resolved_compendium: Dict[str, str] = {}

    # -- selection state -------------------------------------------------

    def reset(self) -> None:
        self.user_modified = False
        self.selection_auto = False
        self.selection_id = CREATE_NEW
        self.selected = None
        self.linked = False
        self.search = ""
        self.reset_naming_overrides()

    def active_selection(self) -> BindingSelection:
        if self.selection_id == CREATE_NEW:
            return NEW_SELECTION
        candidate = self.catalog.get(self.selection_id) or self.selected
        if candidate is None:
            return NEW_SELECTION
        return BindingSelection(mode="entity", candidate=candidate, linked=self.linked)

    def _revert_to_new(self) -> None:
        changed = self.selection_id != CREATE_NEW
        self.selection_id = CREATE_NEW
        self.selected = None
        self.linked = False
        if changed:
            self.reset_naming_overrides()

    def sync_selection(self) -> None:
        """Fall back to "create new" when the selected candidate disappeared."""
        if self.selection_id != CREATE_NEW and self.selection_id not in self.catalog:
            logger.debug("Selected candidate '%s' vanished; reverting to create-new", self.selection_id)
            self._revert_to_new()
        elif self.selected is not None:
            self.selected = self.catalog.get(self.selected.id) or self.selected

    def select(self, candidate_id: Optional[str], *, user: bool = True, auto: bool = False,
               candidate: Optional[MatchCandidate] = None) -> bool:
        previous = self.selection_id
        target = candidate_id or CREATE_NEW
        if user:
            self.user_modified = True
            self.selection_auto = False
        elif auto:
            self.user_modified = False
            self.selection_auto = True

        if target == CREATE_NEW:
            self.selection_id = CREATE_NEW
            self.selected = None
            self.linked = False
            self.search = ""
            if not auto:
                self.selection_auto = False
            if previous != CREATE_NEW:
                self.reset_naming_overrides()
            return True

        resolved = candidate or self.catalog.get(target)
        if resolved is None:
            resolved = next((r.candidate for r in self.suggestions if r.candidate.id == target), None)
        if resolved is None:
            self.sync_selection()
            return False
        if previous == target:
            return True
        self.selection_id = target
        self.selected = resolved
        self.search = ""
        self.reset_naming_overrides()
        logger.debug("Binding selection -> '%s' (user=%s, auto=%s)", target, user, auto)
        return True

    def set_linked(self, value: bool, *, user: bool = True) -> bool:
        can_link = self.selection_id != CREATE_NEW
        target = bool(value) and can_link
        if self.linked == target:
            return True
        if user:
            self.user_modified = True
            self.selection_auto = False
        self.linked = target
        return True

    def set_search(self, value: Any) -> bool:
        text = value[:SEARCH_MAX_LENGTH] if isinstance(value, str) else ""
        if text == self.search:
            return True
        self.user_modified = True
        self.selection_auto = False
        self.search = text
        return True

    # -- ranking ---------------------------------------------------------

    def apply_match_context(self, entry: Any, *, reset: bool = False, auto_select: bool = True) -> None:
        self.match_key = derive_match_key(entry)
        if reset:
            self.reset()
        self.refresh_suggestions(auto_select=auto_select)

    def refresh_suggestions(self, *, auto_select: bool = False) -> None:
        tokens = self.match_key.tokens
        self.suggestions = self.matcher.rank(
            self.catalog.candidates(),
            tokens,
            self.match_key.normalized,
            limit=self.max_suggestions,
            allow_zero=not tokens,
        )
        if auto_select:
            self._auto_select()

    def _auto_select(self) -> None:
        if self.user_modified:
            return
        top = self.matcher.auto_select(self.suggestions, user_modified=False)
        if top is None:
            if self.selection_auto and self.selection_id != CREATE_NEW:
                self.select(CREATE_NEW, user=False, auto=False)
            self.selection_auto = False
            return
        if self.selection_id != CREATE_NEW and not self.selection_auto:
            return
        if self.selection_id == top.id:
            self.selection_auto = True
            return
        self.select(top.id, user=False, auto=True, candidate=top)

    def on_catalog_changed(self) -> None:
        self.sync_selection()
        self.refresh_suggestions(auto_select=True)

    def display_list(self) -> List[Dict[str, Any]]:
        """Options for the binding picker, "create new" first."""
        items: List[Dict[str, Any]] = [{
            "is_header": False,
            "id": CREATE_NEW,
            "label": "Create new entity",
            "subtitle": "Creates a new entity for each placement.",
            "kind": "default",
            "selected": self.selection_id == CREATE_NEW,
        }]
        added = {CREATE_NEW}

        query = normalize_match_string(self.search)
        query_tokens = tuple(t for t in query.split(" ") if t) if query else ()
        if query_tokens:
            ranked = self.matcher.rank(self.catalog.candidates(), query_tokens, query, limit=self.max_results)
            if not ranked:
                ranked = self.matcher.rank(
                    self.catalog.candidates(), query_tokens, query, limit=self.max_results, allow_zero=True
                )
            for entry in ranked:
                if entry.candidate.id not in added:
                    items.append(self._format(entry.candidate))
                    added.add(entry.candidate.id)
            return items

        suggestions = [r.candidate for r in self.suggestions]
        if suggestions:
            items.append({"is_header": True, "label": "Suggested Matches"})
            for candidate in suggestions:
                if candidate.id not in added:
                    items.append(self._format(candidate))
                    added.add(candidate.id)

        existing = sum(1 for item in items if not item["is_header"] and item["id"] != CREATE_NEW)
        remaining = max(0, self.max_results - existing)
        world = [c for c in self.catalog.world if c.id not in added][:remaining]
        if world:
            items.append({"is_header": True, "label": "All World Entities"})
            items.extend(self._format(c) for c in world)
        return items

    def _format(self, candidate: MatchCandidate) -> Dict[str, Any]:
        return {
            "is_header": False,
            "id": candidate.id,
            "label": candidate.label,
            "subtitle": candidate.subtitle,
            "kind": candidate.kind,
            "icon": candidate.icon,
            "selected": self.selection_id == candidate.id,
        }

    # -- entity resolution -----------------------------------------------

    def handle_missing(self, candidate_id: str) -> None:
        self.catalog.purge(candidate_id)
        if self.selection_id == candidate_id:
            self._revert_to_new()

    def peek_entity(self, selection: BindingSelection) -> Optional[EntityRecord]:
        """Entity behind ``selection`` if it is already in the world (no import)."""
        if not selection.is_entity:
            return None
        candidate = selection.candidate
        if candidate.kind == WORLD:
            return self._store.get_entity(candidate.entity_id)
        cached = self.resolved_compendium.get(candidate.id)
        if cached:
            entity = self._store.get_entity(cached)
            if entity is not None:
                return entity
        return self._store.find_imported(candidate.pack_id, candidate.document_id)

    async def resolve_entity(self, candidate: MatchCandidate) -> StepResult[EntityRecord]:
        """Find the world entity for ``candidate``, importing from its pack if needed."""
        if candidate.kind == WORLD:
            entity = self._store.get_entity(candidate.entity_id)
            if entity is None:
                self.handle_missing(candidate.id)
                return Failure(FailureKind.MISSING_TARGET, f"'{candidate.label}' is no longer available.")
            return Ok(entity)

        if candidate.kind != COMPENDIUM:
            return Failure(FailureKind.MISSING_TARGET, f"Unsupported candidate kind '{candidate.kind}'")

        cached_id = self.resolved_compendium.get(candidate.id)
        if cached_id:
            entity = self._store.get_entity(cached_id)
            if entity is not None:
                return Ok(entity)
            del self.resolved_compendium[candidate.id]

        flagged = self._store.find_imported(candidate.pack_id, candidate.document_id)
        if flagged is not None:
            self.resolved_compendium[candidate.id] = flagged.id
            return Ok(flagged)

        try:
            imported = await self._store.import_from_compendium(candidate.pack_id, candidate.document_id)
            if imported is None:
                raise EntityImportError(f"pack '{candidate.pack_id}' returned nothing for '{candidate.document_id}'")
        except Exception as exc:
            logger.warning("Import of '%s' from pack '%s' failed: %s", candidate.label, candidate.pack_id, exc)
            return Failure(FailureKind.IMPORT, f"Could not import '{candidate.label}': {exc}")
        self.resolved_compendium[candidate.id] = imported.id
        logger.info("Imported '%s' from pack '%s' as entity '%s'", candidate.label, candidate.pack_id, imported.id)
        self.catalog.schedule_refresh(include_compendium=False)
        return Ok(imported)

    # -- naming overrides ------------------------------------------------

    def naming_defaults(self, selection: Optional[BindingSelection] = None) -> Tuple[bool, bool, bool]:
        """``(supported, append_number, prepend_adjective)`` for the selection."""
        selection = selection or self.active_selection()
        if not selection.is_entity:
            return False, False, False
        entity = self.peek_entity(selection)
        prototype = (entity.prototype if entity is not None else None) or {}
        return True, bool(prototype.get("append_number")), bool(prototype.get("prepend_adjective"))

    def set_append_number(self, value: Any) -> bool:
        supported, default, _ = self.naming_defaults()
        if not supported:
            return False
        target = bool(value)
        self.append_number_override = None if target == default else target
        return True

    def set_prepend_adjective(self, value: Any) -> bool:
        supported, _, default = self.naming_defaults()
        if not supported:
            return False
        target = bool(value)
        self.prepend_adjective_override = None if target == default else target
        return True

    def reset_naming_overrides(self) -> None:
        self.append_number_override = None
        self.prepend_adjective_override = None

    @property
    def has_naming_overrides(self) -> bool:
        return self.append_number_override is not None or self.prepend_adjective_override is not None

    def naming_options(self) -> Dict[str, bool]:
        options: Dict[str, bool] = {}
        if self.append_number_override is not None:
            options["append_number"] = self.append_number_override
        if self.prepend_adjective_override is not None:
            options["prepend_adjective"] = self.prepend_adjective_override
        return options

    async def apply_naming_overrides(self, entity: EntityRecord) -> bool:
        """Persist pending naming overrides onto ``entity``'s template."""
        if not self.has_naming_overrides:
            return False
        prototype = entity.prototype or {}
        changes: Dict[str, bool] = {}
        for key, value in self.naming_options().items():
            if value != bool(prototype.get(key)):
                changes[f"prototype.{key}"] = value
        if not changes:
            self.reset_naming_overrides()
            return False
        try:
            await self._store.update_entity(entity, changes)
        except Exception as exc:
            logger.warning("Failed to update naming rules on '%s': %s", entity.id, exc)
            return False
        self.reset_naming_overrides()
        return True
