import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure 'src' is on sys.path for test imports without installing the package
ROOT = Path(__file__).resolve().parents[1]
src = ROOT / "src"
if str(src) not in sys.path:
    sys.path.insert(0, str(src))

from tokenstamp.collaborators import (  # noqa: E402
    AuthContext,
    CompendiumIndexEntry,
    CompendiumPack,
    CreatedPlacement,
    EntityRecord,
)
from tokenstamp.config import PlacementConfig  # noqa: E402
from tokenstamp.events import EventBus  # noqa: E402
from tokenstamp.session import PlacementSession  # noqa: E402


class DummyContent:
    """Download service keeping an in-memory cache keyed by file path."""

    def __init__(self) -> None:
        self.cache: Dict[str, str] = {}
        self.failing: set = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.downloads: List[str] = []
        self.auth_seen: List[Any] = []

    def get_local_path(self, kind, item):
        return self.cache.get(item["file_path"])

    async def probe_local(self, kind, item):
        return None

    async def resolve_remote_url(self, kind, item, auth):
        self.auth_seen.append(auth)
        if item["file_path"] in self.failing:
            raise RuntimeError("404 not found")
        return f"https://cdn.example/{item['file_path']}"

    async def ensure_local(self, kind, item, url):
        gate = self.gates.get(item["file_path"])
        if gate is not None:
            await gate.wait()
        self.downloads.append(item["file_path"])
        path = f"/cache/{item['file_path']}"
        self.cache[item["file_path"]] = path
        return path


class DummyStore:
    def __init__(self) -> None:
        self.entities: Dict[str, EntityRecord] = {}
        self.packs: List[CompendiumPack] = []
        self.indexes: Dict[str, List[CompendiumIndexEntry]] = {}
        self.excluded_pack_ids: List[str] = []
        self.import_error: Optional[Exception] = None
        self.imports: List[tuple] = []
        self.updates: List[tuple] = []
        self.subscribers: List[Any] = []

    def add(self, entity: EntityRecord) -> EntityRecord:
        self.entities[entity.id] = entity
        return entity

    def add_pack(self, pack: CompendiumPack, entries: List[CompendiumIndexEntry]) -> None:
        self.packs.append(pack)
        self.indexes[pack.id] = list(entries)

    def world_entities(self):
        return list(self.entities.values())

    def compendium_packs(self):
        return list(self.packs)

    async def load_pack_index(self, pack_id):
        return self.indexes.get(pack_id, [])

    def get_entity(self, entity_id):
        return self.entities.get(entity_id)

    def find_imported(self, pack_id, document_id):
        for entity in self.entities.values():
            if entity.compendium_source == (pack_id, document_id):
                return entity
        return None

    async def import_from_compendium(self, pack_id, document_id):
        self.imports.append((pack_id, document_id))
        if self.import_error is not None:
            raise self.import_error
        name = next((e.name for e in self.indexes.get(pack_id, []) if e.id == document_id), document_id)
        return self.add(EntityRecord(
            id=f"imported-{document_id}",
            name=name,
            data={"hp": {"value": 7, "max": 7}},
            compendium_source=(pack_id, document_id),
        ))

    async def update_entity(self, entity, changes):
        self.updates.append((entity.id, dict(changes)))

    def subscribe(self, callback):
        self.subscribers.append(callback)

        def _unsubscribe():
            if callback in self.subscribers:
                self.subscribers.remove(callback)

        return _unsubscribe


class DummyScene:
    def __init__(self) -> None:
        self.grid_snap_enabled = False
        self.current_scale = 1.0
        self.over_scene = True
        self.has_coordinates = True
        self.entity_under: Optional[str] = None
        self.zooms: List[tuple] = []

    def screen_to_world(self, x, y):
        if not (self.over_scene and self.has_coordinates):
            return None
        return (float(x), float(y))

    def world_to_screen(self, x, y):
        return (float(x), float(y))

    def apply_grid_snap(self, world, footprint):
        return (round(world[0] / 100) * 100.0, round(world[1] / 100) * 100.0)

    def zoom_at_cursor(self, target_scale, x, y):
        self.zooms.append((target_scale, x, y))
        self.current_scale = target_scale

    def is_over_scene(self, x, y):
        return self.over_scene

    def entity_at(self, x, y):
        return self.entity_under


class DummyFactory:
    def __init__(self) -> None:
        self.created: List[dict] = []
        self.instances: List[dict] = []
        self.bound: List[tuple] = []
        self.hp_applied: List[tuple] = []
        self.transforms: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.transform_gate: Optional[asyncio.Event] = None
        self.fail_create: Optional[Exception] = None
        self._count = 0

    async def create_from_placement(self, descriptor, world, hooks):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_create is not None:
            raise self.fail_create
        self._count += 1
        entity = EntityRecord(id=f"new-{self._count}", name=descriptor.display_name,
                              data={"hp": {"value": 10, "max": 10}})
        options = {}
        if hooks.before_instance_create is not None:
            options = await hooks.before_instance_create(entity)
        instance = {"entity": entity.id, "asset": descriptor.asset_path, "world": world, "options": options}
        self.created.append(instance)
        return CreatedPlacement(entity=entity, instance=instance)

    async def bind_existing_entity_template(self, entity, descriptor, options):
        self.bound.append((entity.id, descriptor.asset_path, dict(options)))

    async def create_instance(self, entity, descriptor, world, *, linked, hp_override):
        instance = {"entity": entity.id, "asset": descriptor.asset_path, "world": world, "linked": linked,
                    "hp_override": hp_override}
        self.instances.append(instance)
        return instance

    async def apply_hp_override(self, target, override):
        self.hp_applied.append((target, override))

    async def apply_transform(self, instance, rotation, mirror_h, mirror_v):
        if self.transform_gate is not None:
            await self.transform_gate.wait()
        self.transforms.append((rotation, mirror_h, mirror_v))


class DummyCard:
    """UI card exposing data-* attributes."""

    def __init__(self, **attrs) -> None:
        self.attrs = dict(attrs)
        self.writes: List[str] = []

    def get_attribute(self, name):
        return self.attrs.get(name)

    def set_attribute(self, name, value):
        self.writes.append(name)
        self.attrs[name] = value


class DummyPreview:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.visible = False

    def show(self, entry, screen):
        self.visible = True
        self.calls.append(("show", entry.identity_key, screen))

    def move(self, screen):
        self.calls.append(("move", screen))

    def update_transform(self, rotation, mirror_h, mirror_v):
        self.calls.append(("transform", rotation, mirror_h, mirror_v))

    def hide(self):
        self.visible = False
        self.calls.append(("hide",))


def local_entry(name: str, **extra) -> dict:
    raw = {"source": "local", "filename": f"{name}.webp", "folder_path": "tokens", "display_name": name}
    raw.update(extra)
    return raw


def cloud_entry(name: str, **extra) -> dict:
    raw = {"source": "cloud", "tier": "free", "filename": f"{name}.webp", "folder_path": "cloud/monsters"}
    raw.update(extra)
    return raw


@pytest.fixture
def content():
    return DummyContent()


@pytest.fixture
def store():
    return DummyStore()


@pytest.fixture
def scene():
    return DummyScene()


@pytest.fixture
def factory():
    return DummyFactory()


@pytest.fixture
def preview():
    return DummyPreview()


@pytest.fixture
def make_session(content, factory, store, scene, preview):
    def _make(**kwargs) -> PlacementSession:
        kwargs.setdefault("config", PlacementConfig())
        kwargs.setdefault("bus", EventBus())
        kwargs.setdefault("preview", preview)
        kwargs.setdefault("auth_provider", lambda: AuthContext(authenticated=True, state={"token": "abc"}))
        return PlacementSession(content, factory, store, scene, **kwargs)

    return _make

