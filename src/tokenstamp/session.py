"""Interactive placement session.

A :class:`PlacementSession` takes one or more asset entries and lets the
user stamp instances of them onto the scene: pointer moves update the
preview, the wheel rotates or zooms, a primary click commits. With several
entries the session cycles through them at random, preferring ones the
prefetch queue already downloaded.

State lives in an immutable :class:`SessionState` replaced on every
transition. Each session gets a fresh token; every coroutine compares the
token it started with against the current one after each await and drops
its result when they differ.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .binding import NEW_SELECTION, BindingController, BindingSelection
from .collaborators import (
    AuthContext,
    ContentService,
    EntityFactory,
    EntityRecord,
    EntityStore,
    NullPreview,
    PlacementDescriptor,
    PlacementHooks,
    Preview,
    Scene,
)
from .config import PlacementConfig
from .context import PlacementContext
from .entries import PlacementEntry, apply_entry_attributes, dedupe_pool, join_path, looks_like_image, normalize
from .errors import DownloadError, InvariantViolation
from .events import (
    EntryChanged,
    EventBus,
    InstanceCommitted,
    Notification,
    SessionCancelled,
    SessionStarted,
    UIStateChanged,
)
from .hp import HPOverride, HPParams, HPResolver, normalize_hp_mode, read_hp_base, sanitize_hp_percent
from .matching import COMPENDIUM, CandidateCatalog, EntityMatcher
from .prefetch import PrefetchQueue
from .results import CommitOutcome, Failure, FailureKind, Ok, StepResult
from .systems import SystemProfile, get_system_profile
from .transform import (
    PendingTransform,
    TransformSettings,
    clamp_strength,
    normalize_rotation,
    prepare_next,
    regenerate_mirror,
    regenerate_rotation,
)

logger = logging.getLogger(__name__)

CANCEL_REASONS = ("user", "esc", "restart", "error", "canvas-teardown", "placed")
PRIMARY_BUTTON = 0


class Phase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTING = "committing"


class Mode(str, Enum):
    SINGLE = "single"
    RANDOM = "random"


@dataclass(frozen=True)
class SessionState:
    token: int = 0
    phase: Phase = Phase.IDLE
    mode: Mode = Mode.SINGLE
    sticky: bool = False
    pool: Tuple[PlacementEntry, ...] = ()
    current_entry: Optional[PlacementEntry] = None
    transform: TransformSettings = TransformSettings()
    pending: Optional[PendingTransform] = None
    binding: BindingSelection = NEW_SELECTION
    hp_mode: str = "inherit"
    hp_params: HPParams = HPParams()

    @property
    def active(self) -> bool:
        return self.phase is not Phase.IDLE


@dataclass(frozen=True)
class PointerEvent:
    x: float
    y: float
    button: int = PRIMARY_BUTTON
    shift: bool = False
    ctrl: bool = False
    meta: bool = False


@dataclass(frozen=True)
class WheelEvent:
    x: float
    y: float
    delta_y: float
    ctrl: bool = False
    meta: bool = False
    shift: bool = False


@dataclass(frozen=True)
class KeyEvent:
    key: str


@dataclass(frozen=True)
class _Placed:
    outcome: CommitOutcome
    entity: Optional[EntityRecord] = None
    instance: Any = None
    world: Optional[Tuple[float, float]] = None


def _default_auth() -> AuthContext:
    return AuthContext()


class PlacementSession:
    """Single-owner state machine for stamping tokens onto a scene.

    Lifecycle: ``idle -> active(single|random) -> committing -> active | idle``.
    At most one session is live per instance; :meth:`start` cancels the
    previous one with reason ``restart``.
    """

    def __init__(
        self,
        content: ContentService,
        factory: EntityFactory,
        store: EntityStore,
        scene: Scene,
        *,
        config: Optional[PlacementConfig] = None,
        bus: Optional[EventBus] = None,
        context: Optional[PlacementContext] = None,
        auth_provider: Optional[Callable[[], AuthContext]] = None,
        preview: Optional[Preview] = None,
        rng: Optional[random.Random] = None,
        system_id: Optional[str] = None,
        hp_resolver: Optional[HPResolver] = None,
    ) -> None:
        self.config = config or PlacementConfig()
        self.bus = bus or EventBus()
        self.context = context or PlacementContext()
        self.profile: SystemProfile = get_system_profile(system_id)
        self._content = content
        self._factory = factory
        self._store = store
        self._scene = scene
        self._auth_provider = auth_provider or _default_auth
        self._auth = AuthContext()
        self._preview: Preview = preview or NullPreview()
        self._rng = rng or random.Random()

        matching = self.config.matching
        self.matcher = EntityMatcher(
            matching.weights,
            min_containment_length=matching.min_containment_length,
            auto_select_min_score=matching.auto_select_min_score,
        )
        self.catalog = CandidateCatalog(store, debounce_s=matching.refresh_debounce_s, on_change=self._on_catalog_changed)
        self.binding = BindingController(
            store,
            self.catalog,
            self.matcher,
            max_suggestions=matching.max_suggestions,
            max_results=matching.max_results,
        )
        self.hp_resolver = hp_resolver or HPResolver(rng=self._rng, warn=lambda msg: self._notify("warning", msg))
        self.queue: PrefetchQueue[PlacementEntry] = PrefetchQueue(
            prefetch_count=self.config.prefetch_count,
            identity_of=lambda entry: entry.identity_key,
            needs_fetch=self._entry_needs_fetch,
            fetch=self._prefetch_entry,
            rng=self._rng,
            log_tag="placement.prefetch",
        )

        self._state = SessionState(
            hp_params=HPParams(percent=self.config.hp.default_percent),
        )
        self._downloads: Dict[str, "asyncio.Task[str]"] = {}
        self._cards: Dict[str, List[Any]] = {}
        self._store_unsubscribe: Optional[Callable[[], None]] = None
        self._holds_hover = False
        self.last_cancel_reason: Optional[str] = None

    # -- read-only views -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def is_active(self) -> bool:
        return self._state.active

    @property
    def scene(self) -> Scene:
        return self._scene

    @property
    def binding_selection(self) -> BindingSelection:
        return self.binding.active_selection()

    def ui_state(self) -> Dict[str, Any]:
        from .ui_state import build_ui_state

        return build_ui_state(self)

    def _replace(self, **changes: Any) -> SessionState:
        self._state = replace(self._state, **changes)
        return self._state

    def _is_current(self, token: int) -> bool:
        return self._state.active and self._state.token == token

    def _notify(self, level: str, message: str) -> None:
        log = logger.error if level == "error" else logger.warning if level == "warning" else logger.info
        log("Notification (%s): %s", level, message)
        self.bus.publish(Notification(level=level, message=message))

    def _publish_ui(self, render: bool = False) -> None:
        if self.bus.subscriber_count(UIStateChanged):
            self.bus.publish(UIStateChanged(state=self.ui_state(), render=render))

    def _sync_binding(self) -> None:
        if self._state.active:
            self._replace(binding=self.binding.active_selection())

    def _invariant(self, message: str) -> None:
        if self.config.strict_invariants:
            raise InvariantViolation(message)
        logger.error("Invariant violated: %s", message)

    # -- lifecycle -------------------------------------------------------

    async def start(
        self,
        entries: Iterable[Any],
        *,
        sticky: Optional[bool] = None,
        pointer: Optional[Tuple[float, float]] = None,
        force_random: bool = False,
    ) -> bool:
        """Begin a session over ``entries``; returns False when nothing could start.

        ``sticky`` defaults to off for a single entry and on for a random pool.
        """
        raw = list(entries or ())
        if not raw:
            return False
        if self.is_active:
            self.cancel("restart")

        pool = dedupe_pool(raw)
        if not pool:
            logger.warning("No usable placement entries among %d inputs", len(raw))
            return False

        self._auth = self._auth_provider()
        single = len(pool) == 1 and not force_random
        if sticky is None:
            sticky = not single
        if single:
            entry = pool[0]
            if entry.is_cloud and entry.is_premium and not self._auth.authed and not entry.cached_local_path:
                self._notify("error", "Authentication required for premium tokens.")
                return False

        previous = self._state
        settings = TransformSettings(
            rotation_random_strength_deg=self.config.rotation.default_random_strength_deg,
        )
        token = previous.token + 1
        self._state = SessionState(
            token=token,
            phase=Phase.ACTIVE,
            mode=Mode.SINGLE if single else Mode.RANDOM,
            sticky=bool(sticky),
            pool=tuple(pool),
            transform=settings,
            pending=PendingTransform(rotation_deg=0.0, screen=pointer),
            hp_mode=previous.hp_mode,
            hp_params=previous.hp_params,
        )
        self.last_cancel_reason = None
        self.hp_resolver.reset_warnings()
        self._bind_cards(raw, pool)
        self.context.acquire_hover_suppression()
        self._holds_hover = True
        self._store_unsubscribe = self._store.subscribe(self._on_store_changed)
        self.catalog.ensure_loaded()
        self.binding.reset()

        if single:
            self._activate_entry(pool[0], initial=True, source="single")
        else:
            self.queue.set_pool(pool)
            self.queue.prime()
            if not self._advance_random(initial=True):
                return False
        if pointer is not None:
            self._update_pointer(pointer)

        logger.info(
            "Placement session %d started (%s, sticky=%s, pool=%d)",
            token, self._state.mode.value, self._state.sticky, len(pool),
        )
        self.bus.publish(SessionStarted(token=token, mode=self._state.mode.value, sticky=self._state.sticky,
                                        pool_size=len(pool)))
        self._publish_ui(render=True)
        return True

    async def update_entries(self, entries: Iterable[Any], *, force_random: bool = False) -> bool:
        """Restart with new entries, keeping sticky mode, pointer and base rotation."""
        if not self.is_active:
            return False
        state = self._state
        pointer = state.pending.screen if state.pending else None
        rotation = state.transform.rotation_base_deg
        started = await self.start(entries, sticky=state.sticky, pointer=pointer, force_random=force_random)
        if started and self.is_active:
            self.set_rotation(rotation)
        return started

    def cancel(self, reason: str = "user") -> bool:
        """End the session. Safe from any state; a second call does nothing."""
        state = self._state
        if not state.active:
            return False
        if reason not in CANCEL_REASONS:
            logger.debug("Unrecognized cancel reason '%s'", reason)
        self.last_cancel_reason = reason
        self.queue.reset()
        if self._store_unsubscribe is not None:
            self._store_unsubscribe()
            self._store_unsubscribe = None
        self.catalog.cancel_scheduled()
        self._preview.hide()
        if self._holds_hover:
            self.context.release_hover_suppression()
            self._holds_hover = False
        self._cards = {}
        self.hp_resolver.reset_warnings()
        self._state = SessionState(token=state.token + 1, hp_mode=state.hp_mode, hp_params=state.hp_params)
        logger.info("Placement session %d cancelled (%s)", state.token, reason)
        self.bus.publish(SessionCancelled(token=state.token, reason=reason))
        self._publish_ui(render=True)
        return True

    def on_scene_teardown(self) -> None:
        self.cancel("canvas-teardown")

    # -- entries and downloads --------------------------------------------

    def _bind_cards(self, raw: List[Any], pool: List[PlacementEntry]) -> None:
        """Remember which UI cards produced the pool and write the normalized values back."""
        by_key = {entry.identity_key: entry for entry in pool}
        cards: Dict[str, List[Any]] = {}
        for item in raw:
            if not callable(getattr(item, "get_attribute", None)):
                continue
            try:
                key = normalize(item).identity_key
            except TypeError:
                continue
            entry = by_key.get(key)
            if entry is None:
                continue
            cards.setdefault(key, []).append(item)
            apply_entry_attributes(entry, item)
        self._cards = cards

    def _reflect_entry(self, entry: PlacementEntry) -> None:
        for card in self._cards.get(entry.identity_key, ()):
            apply_entry_attributes(entry, card)

    def _content_item(self, entry: PlacementEntry) -> Dict[str, str]:
        file_path = entry.full_path or join_path(entry.folder_path, entry.filename)
        return {"file_path": file_path, "filename": entry.filename, "tier": entry.tier}

    def _entry_needs_fetch(self, entry: PlacementEntry) -> bool:
        if entry.cached_local_path or not entry.is_cloud:
            return False
        cached = self._content.get_local_path(self.config.asset_kind, self._content_item(entry))
        if cached:
            entry.mark_cached(cached)
            self._reflect_entry(entry)
            return False
        return True

    async def _download(self, entry: PlacementEntry) -> str:
        kind = self.config.asset_kind
        item = self._content_item(entry)
        if not entry.is_cloud:
            local = item["file_path"]
        else:
            try:
                local = self._content.get_local_path(kind, item)
                if not local:
                    local = await self._content.probe_local(kind, item)
                if not local:
                    auth_state = self._auth.state if self._auth.authed else None
                    url = await self._content.resolve_remote_url(kind, item, auth_state)
                    local = await self._content.ensure_local(kind, item, url)
            except DownloadError:
                raise
            except Exception as exc:
                raise DownloadError(f"Failed to download token asset: {exc}") from exc
        if not local:
            raise DownloadError("Unable to download token asset")
        entry.mark_cached(local)
        self._reflect_entry(entry)
        logger.debug("Asset ready for '%s': %s", entry.identity_key, local)
        return local

    def _download_task(self, entry: PlacementEntry) -> "asyncio.Task[str]":
        key = entry.identity_key
        task = self._downloads.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._download(entry))
            self._downloads[key] = task

            def _forget(done: "asyncio.Task[str]", key: str = key) -> None:
                if self._downloads.get(key) is done:
                    del self._downloads[key]

            task.add_done_callback(_forget)
        return task

    async def _ensure_local(self, entry: PlacementEntry) -> str:
        if entry.cached_local_path:
            return entry.cached_local_path
        return await self._download_task(entry)

    async def _prefetch_entry(self, entry: PlacementEntry) -> None:
        await self._ensure_local(entry)

    def _watch_download(self, entry: PlacementEntry) -> None:
        """Start the current entry's download and cancel the session if it fails outside a commit."""
        if not self._entry_needs_fetch(entry):
            return
        token = self._state.token
        task = self._download_task(entry)

        def _on_done(done: "asyncio.Task[str]") -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is None:
                return
            state = self._state
            if state.token != token or state.current_entry is not entry or state.phase is not Phase.ACTIVE:
                return
            self._notify("error", f"Failed to download token asset: {exc}")
            self.cancel("error")

        task.add_done_callback(_on_done)

    def _activate_entry(self, entry: PlacementEntry, *, initial: bool, source: str) -> None:
        auto_allowed = not self.binding.user_modified
        self.binding.apply_match_context(entry, reset=auto_allowed and initial, auto_select=auto_allowed)
        state = self._state
        pending = regenerate_rotation(state.transform, state.pending or PendingTransform(), self._rng)
        pending = regenerate_mirror(state.transform, pending, self._rng, regenerate=True)
        self._replace(current_entry=entry, pending=pending)
        self._watch_download(entry)
        self._preview.show(entry, pending.screen or (0.0, 0.0))
        self._preview.update_transform(pending.rotation_deg, pending.mirror_h, pending.mirror_v)
        self._sync_binding()
        self.bus.publish(EntryChanged(token=state.token, identity_key=entry.identity_key, source=source))

    def _pick_next(self) -> Tuple[Optional[PlacementEntry], str]:
        pool = self._state.pool
        if not pool:
            return None, "none"
        queued = self.queue.next(self._state.current_entry)
        if queued is not None:
            logger.info("Random pick from queue: '%s'", queued.identity_key)
            return queued, "queue"
        fallback = self._rng.choice(pool)
        logger.info("Random pick fallback: '%s'", fallback.identity_key)
        return fallback, "fallback"

    def _advance_random(self, *, initial: bool = False) -> bool:
        entry, source = self._pick_next()
        if entry is None:
            if initial:
                self.cancel("error")
            return False
        self._activate_entry(entry, initial=initial, source=source)
        return True

    # -- input -----------------------------------------------------------

    def _resolve_world(self, x: float, y: float) -> Tuple[Optional[Tuple[float, float]], Optional[Tuple[float, float]]]:
        world = self._scene.screen_to_world(x, y)
        entry = self._state.current_entry
        if world is None or entry is None or not self._scene.grid_snap_enabled:
            return world, None
        return world, self._scene.apply_grid_snap(world, entry.footprint)

    def _update_pointer(self, screen: Tuple[float, float]) -> None:
        world, snapped = self._resolve_world(*screen)
        pending = replace(self._state.pending or PendingTransform(), screen=screen, world=world, snapped_world=snapped)
        self._replace(pending=pending)
        preview_at = screen
        if snapped is not None:
            back = self._scene.world_to_screen(*snapped)
            if back is not None:
                preview_at = back
        self._preview.move(preview_at)

    def on_pointer_move(self, event: PointerEvent) -> None:
        if not self.is_active:
            return
        self._update_pointer((event.x, event.y))

    def on_wheel(self, event: WheelEvent) -> bool:
        """Rotate with ctrl/meta held, otherwise zoom the scene at the cursor."""
        if not self.is_active or not self._scene.is_over_scene(event.x, event.y):
            return False
        if event.ctrl or event.meta:
            rotation = self.config.rotation
            step = rotation.fine_step_deg if event.shift else rotation.wheel_step_deg
            direction = 1 if event.delta_y > 0 else -1
            base = self._state.transform.rotation_base_deg
            self.set_rotation(base + direction * step)
            return True
        factor = self.config.zoom.wheel_factor
        direction = 1 if event.delta_y < 0 else -1
        target = float(self._scene.current_scale or 1) * factor ** direction
        self._scene.zoom_at_cursor(target, event.x, event.y)
        return True

    def on_key_down(self, event: KeyEvent) -> bool:
        if self.is_active and event.key == "Escape":
            self.cancel("esc")
            return True
        return False

    async def on_pointer_down(self, event: PointerEvent) -> CommitOutcome:
        state = self._state
        if not state.active or event.button != PRIMARY_BUTTON:
            return CommitOutcome.IGNORED
        if state.phase is Phase.COMMITTING:
            logger.debug("Pointer down ignored: commit already in flight")
            return CommitOutcome.IGNORED
        entity_id = self._scene.entity_at(event.x, event.y)
        if not entity_id and not self._scene.is_over_scene(event.x, event.y):
            return CommitOutcome.IGNORED
        if state.current_entry is None:
            self._invariant("commit attempted with no current entry")
            return CommitOutcome.IGNORED

        token = state.token
        self._replace(phase=Phase.COMMITTING)
        try:
            result = await self._commit(token, event, entity_id)
        finally:
            if self._state.token == token and self._state.phase is Phase.COMMITTING:
                self._replace(phase=Phase.ACTIVE)
            self._sync_binding()

        if isinstance(result, Failure):
            if result.kind is FailureKind.STALE:
                logger.debug("Discarding stale commit for session %d", token)
                return CommitOutcome.STALE
            self._notify("error", f"Failed to place token: {result.message}")
            if result.kind.fatal:
                self.cancel("error")
            return CommitOutcome.FAILED

        placed = result.value
        entry = state.current_entry
        self.bus.publish(InstanceCommitted(
            token=token,
            identity_key=entry.identity_key,
            target=placed.outcome.value,
            entity=placed.entity,
            instance=placed.instance,
            world=placed.world,
        ))
        if not self._is_current(token):
            return placed.outcome

        if not (event.shift or self._state.sticky):
            self.cancel("placed")
            return placed.outcome

        self._replace(pending=prepare_next(self._state.transform, self._state.pending, self._rng))
        if self._state.mode is Mode.RANDOM:
            self._advance_random()
        else:
            pending = self._state.pending
            self._preview.show(entry, pending.screen or (event.x, event.y))
            self._preview.update_transform(pending.rotation_deg, pending.mirror_h, pending.mirror_v)
        self._publish_ui()
        return placed.outcome

    # -- commit pipeline -------------------------------------------------

    def _stale(self, token: int) -> Failure:
        return Failure(FailureKind.STALE, f"session {token} is no longer active")

    def _descriptor(self, entry: PlacementEntry, asset_path: str) -> PlacementDescriptor:
        pending = self._state.pending or PendingTransform()
        return PlacementDescriptor(
            asset_path=asset_path,
            filename=entry.filename,
            display_name=entry.display_name,
            source=entry.source,
            tier=entry.tier,
            grid_width=entry.grid_width,
            grid_height=entry.grid_height,
            scale=entry.scale,
            size_category=self.profile.size_category(entry.grid_width, entry.grid_height),
            rotation=normalize_rotation(pending.rotation_deg),
            mirror_h=pending.mirror_h,
            mirror_v=pending.mirror_v,
        )

    async def _commit(self, token: int, event: PointerEvent, entity_id: Optional[str]) -> StepResult[_Placed]:
        entry = self._state.current_entry
        try:
            asset_path = await self._ensure_local(entry)
        except DownloadError as exc:
            if not self._is_current(token):
                return self._stale(token)
            return Failure(FailureKind.DOWNLOAD, str(exc))
        if not self._is_current(token):
            return self._stale(token)
        if not looks_like_image(asset_path):
            return Failure(FailureKind.ASSET_UNAVAILABLE, "Token image not available locally yet.")

        descriptor = self._descriptor(entry, asset_path)
        if entity_id:
            return await self._commit_to_entity(token, entity_id, descriptor)

        world, snapped = self._resolve_world(event.x, event.y)
        target = snapped or world
        if target is None:
            return Failure(FailureKind.NO_COORDINATES, "Unable to determine drop coordinates")

        selection = self.binding.active_selection()
        if selection.is_entity:
            result = await self._place_with_entity(token, selection, descriptor, target)
            if not (isinstance(result, Failure) and result.kind is FailureKind.MISSING_TARGET):
                return result
            logger.info("Binding target missing; placing as a new entity instead")
        return await self._place_new(token, descriptor, target)

    async def _resolve_hp(self, entity: Optional[EntityRecord]) -> Optional[HPOverride]:
        if entity is None:
            return None
        state = self._state
        try:
            return await self.hp_resolver.resolve(
                state.hp_mode, state.hp_params, read_hp_base(entity.data, self.profile)
            )
        except Exception:
            logger.exception("HP override resolution failed for entity '%s'", entity.id)
            return None

    async def _apply_hp(self, target: Any, override: HPOverride) -> bool:
        try:
            async with self.context.suppress_scrolling_text():
                await self._factory.apply_hp_override(target, override)
        except Exception as exc:
            logger.warning("Applying HP override failed: %s", exc)
            return False
        return True

    async def _apply_transform(self, instance: Any, descriptor: PlacementDescriptor) -> None:
        try:
            await self._factory.apply_transform(instance, descriptor.rotation, descriptor.mirror_h, descriptor.mirror_v)
        except Exception as exc:
            logger.warning("Applying rotation/mirror to placed instance failed: %s", exc)

    async def _commit_to_entity(self, token: int, entity_id: str, descriptor: PlacementDescriptor) -> StepResult[_Placed]:
        """Dropping onto an entity element rewrites that entity's template image."""
        entity = self._store.get_entity(entity_id)
        if entity is None:
            return Failure(FailureKind.MISSING_TARGET, f"Entity '{entity_id}' is no longer available.")
        self._preview.hide()
        try:
            await self._factory.bind_existing_entity_template(entity, descriptor, {"update_image": True})
        except Exception as exc:
            return Failure(FailureKind.FACTORY, f"Could not update '{entity.name or entity.id}': {exc}")
        if not self._is_current(token):
            return self._stale(token)
        return Ok(_Placed(CommitOutcome.PLACED_ENTITY, entity=entity))

    async def _place_new(self, token: int, descriptor: PlacementDescriptor, world: Tuple[float, float]) -> StepResult[_Placed]:
        override: Optional[HPOverride] = None

        async def before_instance_create(entity: EntityRecord) -> Dict[str, Any]:
            nonlocal override
            options: Dict[str, Any] = {}
            override = await self._resolve_hp(entity)
            if override is not None:
                await self._apply_hp(entity, override)
                options["hp_override"] = override
            options.update(self.binding.naming_options())
            return options

        try:
            created = await self._factory.create_from_placement(
                descriptor, world, PlacementHooks(before_instance_create=before_instance_create)
            )
        except Exception as exc:
            logger.warning("Entity creation failed: %s", exc)
            return Failure(FailureKind.FACTORY, str(exc) or "entity creation failed")
        if not self._is_current(token):
            return self._stale(token)
        if created is None or created.instance is None:
            return Failure(FailureKind.FACTORY, "Entity factory returned no instance")

        if override is not None:
            await self._apply_hp(created.instance, override)
        await self._apply_transform(created.instance, descriptor)
        if not self._is_current(token):
            return self._stale(token)
        return Ok(_Placed(CommitOutcome.PLACED_SCENE, entity=created.entity, instance=created.instance, world=world))

    async def _place_with_entity(
        self,
        token: int,
        selection: BindingSelection,
        descriptor: PlacementDescriptor,
        world: Tuple[float, float],
    ) -> StepResult[_Placed]:
        candidate = selection.candidate
        resolved = await self.binding.resolve_entity(candidate)
        if not self._is_current(token):
            return self._stale(token)
        if isinstance(resolved, Failure):
            return resolved
        entity = resolved.value
        linked = selection.linked

        template_updated = False
        if linked or candidate.kind == COMPENDIUM:
            options = {"update_image": True, **self.binding.naming_options()}
            try:
                await self._factory.bind_existing_entity_template(entity, descriptor, options)
                template_updated = True
            except Exception as exc:
                logger.warning("Updating template of '%s' failed: %s", entity.id, exc)
            if not self._is_current(token):
                return self._stale(token)

        if self.binding.has_naming_overrides:
            if template_updated:
                self.binding.reset_naming_overrides()
            else:
                await self.binding.apply_naming_overrides(entity)
                if not self._is_current(token):
                    return self._stale(token)

        override = await self._resolve_hp(entity)
        if not self._is_current(token):
            return self._stale(token)
        if override is not None and linked:
            await self._apply_hp(entity, override)

        try:
            instance = await self._factory.create_instance(
                entity, descriptor, world, linked=linked, hp_override=override
            )
        except Exception as exc:
            logger.warning("Instance creation for '%s' failed: %s", entity.id, exc)
            return Failure(FailureKind.FACTORY, str(exc) or "instance creation failed")
        if not self._is_current(token):
            return self._stale(token)
        if override is not None and not linked:
            await self._apply_hp(instance, override)
        await self._apply_transform(instance, descriptor)
        if not self._is_current(token):
            return self._stale(token)
        return Ok(_Placed(CommitOutcome.PLACED_SCENE, entity=entity, instance=instance, world=world))

    # -- entity store notifications ---------------------------------------

    def _on_store_changed(self) -> None:
        try:
            self.catalog.schedule_refresh(include_compendium=False)
        except RuntimeError:
            # no running loop: refresh inline
            self.catalog.refresh_world()
            self._on_catalog_changed()

    def _on_catalog_changed(self) -> None:
        self.binding.on_catalog_changed()
        self._sync_binding()
        if self.is_active:
            self._publish_ui()

    # -- setter handlers -------------------------------------------------

    def _set_transform(self, settings: TransformSettings, *, regenerate_rotation_offset: bool = False,
                       regenerate_flip: Optional[bool] = None) -> None:
        state = self._state
        if state.pending is None:
            self._replace(transform=settings)
            return
        pending = regenerate_rotation(settings, state.pending, self._rng,
                                      regenerate=regenerate_rotation_offset, clamp=True)
        if regenerate_flip is not None:
            pending = regenerate_mirror(settings, pending, self._rng, regenerate=regenerate_flip)
        self._replace(transform=settings, pending=pending)
        self._preview.update_transform(pending.rotation_deg, pending.mirror_h, pending.mirror_v)
        self._publish_ui()

    def set_rotation(self, value: Any) -> bool:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return False
        settings = replace(self._state.transform, rotation_base_deg=normalize_rotation(number))
        self._set_transform(settings)
        return True

    def toggle_rotation_random(self) -> bool:
        current = self._state.transform
        enabled = not current.rotation_random_enabled
        strength = current.rotation_random_strength_deg
        if enabled and strength <= 0:
            strength = self.config.rotation.default_random_strength_deg
        settings = replace(current, rotation_random_enabled=enabled, rotation_random_strength_deg=strength)
        self._set_transform(settings, regenerate_rotation_offset=enabled)
        return True

    def set_rotation_random_strength(self, value: Any) -> bool:
        strength = clamp_strength(value, self.config.rotation.max_random_strength_deg)
        self._set_transform(replace(self._state.transform, rotation_random_strength_deg=strength))
        return True

    def toggle_mirror_h(self) -> bool:
        current = self._state.transform
        self._set_transform(replace(current, mirror_h=not current.mirror_h), regenerate_flip=False)
        return True

    def toggle_mirror_v(self) -> bool:
        current = self._state.transform
        self._set_transform(replace(current, mirror_v=not current.mirror_v), regenerate_flip=False)
        return True

    def toggle_mirror_random_h(self) -> bool:
        current = self._state.transform
        enabled = not current.mirror_random_h
        self._set_transform(replace(current, mirror_random_h=enabled), regenerate_flip=enabled)
        return True

    def toggle_mirror_random_v(self) -> bool:
        current = self._state.transform
        enabled = not current.mirror_random_v
        self._set_transform(replace(current, mirror_random_v=enabled), regenerate_flip=enabled)
        return True

    def set_binding_search(self, value: Any) -> bool:
        result = self.binding.set_search(value)
        self._sync_binding()
        self._publish_ui(render=True)
        return result

    def select_binding(self, candidate_id: Optional[str]) -> bool:
        result = self.binding.select(candidate_id)
        self._sync_binding()
        self._publish_ui(render=True)
        return result

    def set_binding_linked(self, value: Any) -> bool:
        result = self.binding.set_linked(bool(value))
        self._sync_binding()
        self._publish_ui(render=True)
        return result

    def set_pack_excluded(self, pack_id: str, excluded: bool) -> bool:
        self.catalog.set_pack_excluded(pack_id, bool(excluded))
        return True

    def set_hp_mode(self, mode: Any) -> bool:
        self._replace(hp_mode=normalize_hp_mode(mode))
        self._publish_ui(render=True)
        return True

    def set_hp_percent(self, value: Any) -> bool:
        hp = self.config.hp
        percent = sanitize_hp_percent(value, default=hp.default_percent, maximum=hp.max_percent)
        self._replace(hp_params=replace(self._state.hp_params, percent=percent))
        self._publish_ui()
        return True

    def set_hp_static(self, value: Any) -> bool:
        text = value[: self.config.hp.static_max_length] if isinstance(value, str) else ""
        self._replace(hp_params=replace(self._state.hp_params, static_value=text))
        self._publish_ui()
        return True

    def set_append_number(self, value: Any) -> bool:
        result = self.binding.set_append_number(value)
        self._publish_ui(render=True)
        return result

    def set_prepend_adjective(self, value: Any) -> bool:
        result = self.binding.set_prepend_adjective(value)
        self._publish_ui(render=True)
        return result

    def set_grid_snap(self, enabled: Any) -> bool:
        self._scene.grid_snap_enabled = bool(enabled)
        pending = self._state.pending
        if self.is_active and pending is not None and pending.screen is not None:
            self._update_pointer(pending.screen)
        return True

    def handlers(self) -> Dict[str, Callable[..., bool]]:
        """Named setter handlers for toolbar controls."""
        return {
            "set_rotation": self.set_rotation,
            "toggle_rotation_random": self.toggle_rotation_random,
            "set_rotation_random_strength": self.set_rotation_random_strength,
            "toggle_mirror_h": self.toggle_mirror_h,
            "toggle_mirror_v": self.toggle_mirror_v,
            "toggle_mirror_random_h": self.toggle_mirror_random_h,
            "toggle_mirror_random_v": self.toggle_mirror_random_v,
            "set_binding_search": self.set_binding_search,
            "select_binding": self.select_binding,
            "set_binding_linked": self.set_binding_linked,
            "set_pack_excluded": self.set_pack_excluded,
            "set_hp_mode": self.set_hp_mode,
            "set_hp_percent": self.set_hp_percent,
            "set_hp_static": self.set_hp_static,
            "set_append_number": self.set_append_number,
            "set_prepend_adjective": self.set_prepend_adjective,
            "set_grid_snap": self.set_grid_snap,
        }
