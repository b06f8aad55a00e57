import random

import pytest

from npc_chatter.dispatch import InMemoryBroadcast, TransientPresentation
from npc_chatter.engine import TriggerEngine
from npc_chatter.models import Position, SceneEntity
from npc_chatter.scene import CorpusLibrary, ListCorpus, PlanarDistance, Scene
from npc_chatter.storage import Storage


class ManualClock:
    """A clock the test moves by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def npc(entity_id: str, x: float = 0.0, y: float = 0.0) -> SceneEntity:
    return SceneEntity(id=entity_id, name=entity_id.title(), position=Position(x=x, y=y))


def player(entity_id: str, x: float = 0.0, y: float = 0.0) -> SceneEntity:
    return SceneEntity(id=entity_id, name=entity_id.title(), position=Position(x=x, y=y), observer=True)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path / "data")


@pytest.fixture
def scene() -> Scene:
    """Innkeeper E alone; guards a, b, c together; the player far away."""
    return Scene([
        npc("e", 0, 0),
        npc("a", 200, 0),
        npc("b", 210, 0),
        npc("c", 220, 0),
        player("p", 1000, 1000),
    ])


@pytest.fixture
def corpora(rng) -> CorpusLibrary:
    return CorpusLibrary([
        ListCorpus("greetings", "Greetings", ["hi", "bye"], rng=rng),
        ListCorpus("banter", "Banter", ["one", "two", "three", "four", "five"], rng=rng),
        ListCorpus("gossip", "Gossip", ["psst"], rng=rng),
    ])


@pytest.fixture
def presentation() -> TransientPresentation:
    return TransientPresentation()


@pytest.fixture
def channel() -> InMemoryBroadcast:
    return InMemoryBroadcast()


@pytest.fixture
def make_engine(scene, corpora, storage, presentation, channel, clock, rng):
    """Build a TriggerEngine over the shared fixtures; keyword overrides allowed."""

    def _make(**overrides) -> TriggerEngine:
        kwargs = dict(
            directory=scene,
            corpora=corpora,
            distance=PlanarDistance(),
            storage=storage,
            presentation=presentation,
            channel=channel,
            clock=clock,
            rng=rng,
        )
        kwargs.update(overrides)
        engine = TriggerEngine(**kwargs)
        kwargs["directory"].on_remove(engine.handle_entity_removed)
        return engine

    return _make


@pytest.fixture
def engine(make_engine) -> TriggerEngine:
    return make_engine()
