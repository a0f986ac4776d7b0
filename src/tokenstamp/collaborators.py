"""Contracts for the services a placement session drives.

The session never talks to a renderer, a download manager or a document
store directly. The owner passes objects satisfying these protocols; tests
use in-memory fakes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from .hp import HPOverride

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass(frozen=True)
class AuthContext:
    """Gate for premium-tier downloads."""

    authenticated: bool = False
    state: Any = None

    @property
    def authed(self) -> bool:
        return bool(self.authenticated and self.state)


@dataclass
class EntityRecord:
    """A world entity as seen by the matcher and the commit pipeline.

    ``folder_path`` is either a pre-joined label or the folder names from the
    root down. ``prototype`` is the entity's instance template (name, image,
    naming rules).
    """

    id: str
    name: str = ""
    folder_path: Union[str, Sequence[str]] = ""
    img: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    prototype: Dict[str, Any] = field(default_factory=dict)
    compendium_source: Optional[Tuple[str, str]] = None


@dataclass(frozen=True)
class CompendiumPack:
    id: str
    label: str = ""
    folder_path: Union[str, Sequence[str]] = ""
    package_name: Optional[str] = None


@dataclass(frozen=True)
class CompendiumIndexEntry:
    id: str
    name: str = ""
    img: str = ""


@dataclass(frozen=True)
class PlacementDescriptor:
    """Everything the entity factory needs to materialize one placement."""

    asset_path: str
    filename: str
    display_name: str
    source: str
    tier: str
    grid_width: float
    grid_height: float
    scale: float
    size_category: str
    rotation: float
    mirror_h: bool
    mirror_v: bool


InstanceOptions = Dict[str, Any]


@dataclass
class PlacementHooks:
    """Callbacks the factory invokes while creating a brand-new entity.

    ``before_instance_create`` runs after the entity exists but before its
    first instance; it returns extra instance options (HP override, naming).
    """

    before_instance_create: Optional[Callable[[EntityRecord], Awaitable[InstanceOptions]]] = None


@dataclass
class CreatedPlacement:
    entity: Optional[EntityRecord]
    instance: Any


class ContentService(Protocol):
    async def resolve_remote_url(self, kind: str, item: Mapping[str, Any], auth: Any) -> str: ...

    async def ensure_local(self, kind: str, item: Mapping[str, Any], url: str) -> str: ...

    async def probe_local(self, kind: str, item: Mapping[str, Any]) -> Optional[str]: ...

    def get_local_path(self, kind: str, item: Mapping[str, Any]) -> Optional[str]: ...


class EntityFactory(Protocol):
    async def create_from_placement(
        self, descriptor: PlacementDescriptor, world: Point, hooks: PlacementHooks
    ) -> CreatedPlacement: ...

    async def bind_existing_entity_template(
        self, entity: EntityRecord, descriptor: PlacementDescriptor, options: Mapping[str, Any]
    ) -> None: ...

    async def create_instance(
        self,
        entity: EntityRecord,
        descriptor: PlacementDescriptor,
        world: Point,
        *,
        linked: bool,
        hp_override: Optional[HPOverride],
    ) -> Any: ...

    async def apply_hp_override(self, target: Any, override: HPOverride) -> None: ...

    async def apply_transform(self, instance: Any, rotation: float, mirror_h: bool, mirror_v: bool) -> None: ...


class EntityStore(Protocol):
    excluded_pack_ids: Iterable[str]

    def world_entities(self) -> Iterable[EntityRecord]: ...

    def compendium_packs(self) -> Iterable[CompendiumPack]: ...

    async def load_pack_index(self, pack_id: str) -> Iterable[CompendiumIndexEntry]: ...

    def get_entity(self, entity_id: str) -> Optional[EntityRecord]: ...

    def find_imported(self, pack_id: str, document_id: str) -> Optional[EntityRecord]: ...

    async def import_from_compendium(self, pack_id: str, document_id: str) -> EntityRecord: ...

    async def update_entity(self, entity: EntityRecord, changes: Mapping[str, Any]) -> None: ...

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]: ...


class Scene(Protocol):
    grid_snap_enabled: bool
    current_scale: float

    def screen_to_world(self, x: float, y: float) -> Optional[Point]: ...

    def world_to_screen(self, x: float, y: float) -> Optional[Point]: ...

    def apply_grid_snap(self, world: Point, footprint: Tuple[float, float, float]) -> Point: ...

    def zoom_at_cursor(self, target_scale: float, x: float, y: float) -> None: ...

    def is_over_scene(self, x: float, y: float) -> bool: ...

    def entity_at(self, x: float, y: float) -> Optional[str]: ...


class Preview(Protocol):
    def show(self, entry: Any, screen: Point) -> None: ...

    def move(self, screen: Point) -> None: ...

    def update_transform(self, rotation: float, mirror_h: bool, mirror_v: bool) -> None: ...

    def hide(self) -> None: ...


class NullPreview:
    """Preview that renders nothing; used when the owner has no overlay."""

    def show(self, entry: Any, screen: Point) -> None:
        logger.debug("Preview show (null): %s", getattr(entry, "identity_key", entry))

    def move(self, screen: Point) -> None:
        pass

    def update_transform(self, rotation: float, mirror_h: bool, mirror_v: bool) -> None:
        pass

    def hide(self) -> None:
        pass
