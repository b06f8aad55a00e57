"""Scene collaborators — entities, distance, and dialogue corpora.

The engine consumes these through the protocols below and never touches a
concrete scene:

    EntityDirectory.get(entity_id) -> Entity | None
    DistanceOracle.in_range(a, b, range_units) -> bool          (awaitable)
    CorpusProvider.resolve(corpus_id) -> Corpus | None
    Corpus.draw_random() / Corpus.entry_at(i) -> str | None      (awaitable)

In-process implementations used by the standalone host and the tests:

    Scene          — mutable entity directory with removal listeners
    PlanarDistance — Euclidean distance in scene units, with a scale factor
    ListCorpus     — a list of lines with an injectable RNG
    CorpusLibrary  — id → corpus lookup
"""

from __future__ import annotations

import logging
import math
import random
from typing import Any, Callable, Iterable, Protocol

from npc_chatter.models import Position, SceneEntity

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class Entity(Protocol):
    id: str
    name: str
    position: Position
    observer: bool


class EntityDirectory(Protocol):
    def get(self, entity_id: str) -> Entity | None: ...
    def all(self) -> list[Entity]: ...


class DistanceOracle(Protocol):
    async def in_range(self, a: Position, b: Position, range_units: float) -> bool: ...


class Corpus(Protocol):
    id: str
    name: str

    @property
    def length(self) -> int: ...
    async def draw_random(self) -> str | None: ...
    async def entry_at(self, index: int) -> str | None: ...


class CorpusProvider(Protocol):
    def resolve(self, corpus_id: str) -> Corpus | None: ...


# ---------------------------------------------------------------------------
# Scene: in-memory entity directory
# ---------------------------------------------------------------------------

RemovalListener = Callable[[str], None]


class Scene:
    """Entities keyed by id. Removing an entity notifies every listener."""

    def __init__(self, entities: Iterable[SceneEntity] = ()) -> None:
        self._entities: dict[str, SceneEntity] = {e.id: e for e in entities}
        self._removal_listeners: list[RemovalListener] = []

    def get(self, entity_id: str) -> SceneEntity | None:
        return self._entities.get(entity_id)

    def all(self) -> list[SceneEntity]:
        return list(self._entities.values())

    def observers(self) -> list[SceneEntity]:
        return [e for e in self._entities.values() if e.observer]

    def upsert(self, entity: SceneEntity) -> SceneEntity:
        self._entities[entity.id] = entity
        return entity

    def move(self, entity_id: str, x: float, y: float) -> SceneEntity | None:
        entity = self._entities.get(entity_id)
        if entity is None:
            return None
        entity.position = Position(x=x, y=y)
        return entity

    def remove(self, entity_id: str) -> bool:
        if self._entities.pop(entity_id, None) is None:
            return False
        for listener in list(self._removal_listeners):
            listener(entity_id)
        return True

    def on_remove(self, listener: RemovalListener) -> None:
        self._removal_listeners.append(listener)


# ---------------------------------------------------------------------------
# PlanarDistance
# ---------------------------------------------------------------------------

class PlanarDistance:
    """Straight-line distance; ``scale`` converts position units to range units."""

    def __init__(self, scale: float = 1.0) -> None:
        self._scale = scale

    async def in_range(self, a: Position, b: Position, range_units: float) -> bool:
        return math.hypot(a.x - b.x, a.y - b.y) * self._scale <= range_units


# ---------------------------------------------------------------------------
# Corpora
# ---------------------------------------------------------------------------

class ListCorpus:
    def __init__(
        self,
        corpus_id: str,
        name: str,
        entries: Iterable[str] = (),
        rng: random.Random | None = None,
    ) -> None:
        self.id = corpus_id
        self.name = name
        self.entries: list[str] = list(entries)
        self._rng = rng or random.Random()

    @property
    def length(self) -> int:
        return len(self.entries)

    async def draw_random(self) -> str | None:
        if not self.entries:
            return None
        return self._rng.choice(self.entries)

    async def entry_at(self, index: int) -> str | None:
        if 0 <= index < len(self.entries):
            return self.entries[index]
        return None


class CorpusLibrary:
    def __init__(self, corpora: Iterable[ListCorpus] = ()) -> None:
        self._corpora: dict[str, ListCorpus] = {c.id: c for c in corpora}

    def resolve(self, corpus_id: str) -> ListCorpus | None:
        return self._corpora.get(corpus_id)

    def all(self) -> list[ListCorpus]:
        return list(self._corpora.values())

    def put(self, corpus: ListCorpus) -> ListCorpus:
        self._corpora[corpus.id] = corpus
        return corpus

    def remove(self, corpus_id: str) -> bool:
        return self._corpora.pop(corpus_id, None) is not None


# ---------------------------------------------------------------------------
# Snapshot helpers: scene.json round-trip
# ---------------------------------------------------------------------------

def load_snapshot(
    data: dict[str, Any] | None, rng: random.Random | None = None
) -> tuple[Scene, CorpusLibrary]:
    """Build a Scene and CorpusLibrary from a scene.json payload."""
    data = data or {}
    scene = Scene(SceneEntity.model_validate(e) for e in data.get("entities", []))
    library = CorpusLibrary(
        ListCorpus(c["id"], c.get("name", c["id"]), c.get("entries", []), rng=rng)
        for c in data.get("corpora", [])
    )
    logger.info(
        "Loaded scene snapshot: %d entities, %d corpora",
        len(scene.all()), len(library.all()),
    )
    return scene, library


def dump_snapshot(scene: Scene, library: CorpusLibrary) -> dict[str, Any]:
    return {
        "entities": [e.model_dump() for e in scene.all()],
        "corpora": [
            {"id": c.id, "name": c.name, "entries": list(c.entries)}
            for c in library.all()
        ],
    }
