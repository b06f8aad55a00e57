"""Tests for npc_chatter.engine.TriggerEngine — ticks, cooldowns and lifecycle."""

import asyncio

import pytest

from conftest import npc
from npc_chatter.auras import AURA_FLAG
from npc_chatter.engine import TriggerEngine
from npc_chatter.models import Position
from npc_chatter.scene import ListCorpus, PlanarDistance


def _speakers(presentation) -> list[str]:
    return [entry.speaker_id for entry in presentation.log]


def _guards(**overrides) -> dict:
    config = {
        "name": "Gate Guards",
        "mode": "turn_taking",
        "members": ["a", "b", "c"],
        "shared_corpus_id": "banter",
        "range": 30,
        "delay_seconds": 10,
    }
    config.update(overrides)
    return config


class GatedDistance(PlanarDistance):
    """Blocks every check involving the origin until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def in_range(self, a: Position, b: Position, range_units: float) -> bool:
        if a.x == 0 and a.y == 0:
            await self.gate.wait()
        return await super().in_range(a, b, range_units)


class HidingDirectory:
    """Scene view that can pretend entities are gone without removing them."""

    def __init__(self, scene) -> None:
        self.scene = scene
        self.hidden: set[str] = set()

    def get(self, entity_id):
        return None if entity_id in self.hidden else self.scene.get(entity_id)

    def all(self):
        return [e for e in self.scene.all() if e.id not in self.hidden]

    def on_remove(self, listener) -> None:
        self.scene.on_remove(listener)


class BrokenCorpus(ListCorpus):
    async def draw_random(self) -> str | None:
        raise RuntimeError("corpus backend down")


# ---------------------------------------------------------------------------
# Auras
# ---------------------------------------------------------------------------

class TestAuraTick:
    async def test_fires_then_waits_for_interval(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        engine.assign_aura("e", "greetings", range=30)
        scene.move("p", 10, 0)

        assert await engine.tick(now=clock.now) == ["aura:e"]
        assert presentation.log[0].text in ("hi", "bye")
        for offset in (1, 5, 9.9):
            assert await engine.tick(now=clock.now + offset) == []
        assert await engine.tick(now=clock.now + 10) == ["aura:e"]
        assert len(presentation.log) == 2

    async def test_out_of_range(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        engine.assign_aura("e", "greetings", range=30)
        scene.move("p", 31, 0)
        assert await engine.tick(now=clock.now) == []
        scene.move("p", 30, 0)
        assert await engine.tick(now=clock.now) == ["aura:e"]

    async def test_no_observers_no_fire(self, engine: TriggerEngine, scene, clock) -> None:
        engine.assign_aura("e", "greetings")
        scene.remove("p")
        assert await engine.tick(now=clock.now) == []

    async def test_delay_override(self, engine: TriggerEngine, scene, clock) -> None:
        engine.assign_aura("e", "greetings", delay_seconds=2)
        scene.move("p", 1, 0)
        assert await engine.tick(now=clock.now) == ["aura:e"]
        assert await engine.tick(now=clock.now + 2) == ["aura:e"]

    async def test_stamp_lands_before_dispatch(self, engine: TriggerEngine, scene, presentation, storage, clock) -> None:
        engine.assign_aura("e", "greetings")
        scene.move("p", 1, 0)
        stamps: list[float] = []
        presentation.show = lambda floating: stamps.append(engine.get_aura("e").last_triggered_at)

        await engine.tick(now=clock.now)
        assert stamps == [clock.now]
        assert storage.get_entity_flag("e", AURA_FLAG)["last_triggered_at"] == clock.now

    async def test_disabled_aura_silent(self, engine: TriggerEngine, scene, clock) -> None:
        engine.assign_aura("e", "greetings")
        engine.set_aura_enabled("e", False)
        scene.move("p", 1, 0)
        assert await engine.tick(now=clock.now) == []

    async def test_auras_switched_off(self, engine: TriggerEngine, scene, clock) -> None:
        engine.assign_aura("e", "greetings")
        engine.update_settings({"auras_enabled": False})
        scene.move("p", 1, 0)
        assert await engine.tick(now=clock.now) == []

    async def test_vanished_entity_dropped(self, make_engine, scene, storage, clock) -> None:
        directory = HidingDirectory(scene)
        engine = make_engine(directory=directory)
        engine.assign_aura("e", "greetings")
        scene.move("p", 1, 0)
        directory.hidden.add("e")

        assert await engine.tick(now=clock.now) == []
        assert engine.list_auras() == []
        # the durable flag is left for the host to clean up
        assert storage.get_entity_flag("e", AURA_FLAG) is not None

    async def test_removed_entity_loses_aura(self, engine: TriggerEngine, scene, storage) -> None:
        engine.assign_aura("e", "greetings")
        scene.remove("e")
        assert engine.get_aura("e") is None
        assert storage.get_entity_flag("e", AURA_FLAG) is None

    async def test_dangling_corpus_skipped_and_kept(self, engine: TriggerEngine, scene, corpora, presentation, clock) -> None:
        engine.assign_aura("e", "greetings")
        scene.move("p", 1, 0)
        greetings = corpora.resolve("greetings")
        corpora.remove("greetings")

        assert await engine.tick(now=clock.now) == []
        assert engine.get_aura("e") is not None
        assert engine.get_aura("e").last_triggered_at == 0.0

        corpora.put(greetings)
        assert await engine.tick(now=clock.now) == ["aura:e"]
        assert len(presentation.log) == 1

    async def test_empty_corpus_still_stamps(self, engine: TriggerEngine, scene, corpora, presentation, clock) -> None:
        engine.assign_aura("e", "greetings")
        corpora.resolve("greetings").entries = []
        scene.move("p", 1, 0)
        assert await engine.tick(now=clock.now) == ["aura:e"]
        assert presentation.log == []
        assert engine.get_aura("e").last_triggered_at == clock.now


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

class TestGroupTick:
    async def test_turn_taking_rotation(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        group = engine.create_group(_guards())
        scene.move("p", 205, 0)
        for i in range(4):
            assert await engine.tick(now=clock.now + 10 * i) == [f"group:{group.group_id}"]
        assert _speakers(presentation) == ["a", "b", "c", "a"]
        assert all(entry.text in ("one", "two", "three", "four", "five") for entry in presentation.log)

    async def test_cooldown_between_lines(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        group = engine.create_group(_guards())
        scene.move("p", 205, 0)
        await engine.tick(now=clock.now)
        assert await engine.tick(now=clock.now + 5) == []
        assert engine.group_last_triggered(group.group_id) == clock.now
        assert _speakers(presentation) == ["a"]

    async def test_any_member_in_range(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        engine.create_group(_guards())
        scene.move("p", 245, 0)  # only c is within 30
        await engine.tick(now=clock.now)
        assert _speakers(presentation) == ["a"]

    async def test_delay_read_fresh_each_tick(self, engine: TriggerEngine, scene, clock) -> None:
        group = engine.create_group(_guards())
        scene.move("p", 205, 0)
        await engine.tick(now=clock.now)
        engine.replace_group(group.group_id, _guards(delay_seconds=2))
        assert await engine.tick(now=clock.now + 2) == [f"group:{group.group_id}"]

    async def test_replace_keeps_cursor(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        group = engine.create_group(_guards(delay_seconds=0))
        scene.move("p", 205, 0)
        await engine.tick(now=clock.now)
        engine.replace_group(group.group_id, _guards(name="Night watch", delay_seconds=0))
        await engine.tick(now=clock.now)
        assert _speakers(presentation) == ["a", "b"]

    async def test_delete_and_recreate_restarts_cursor(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        first = engine.create_group(_guards(delay_seconds=0))
        scene.move("p", 205, 0)
        await engine.tick(now=clock.now)
        await engine.tick(now=clock.now)
        assert engine.cursors.get(first.group_id) == 2

        assert engine.delete_group(first.group_id) is True
        assert first.group_id not in engine.cursors
        assert engine.group_last_triggered(first.group_id) == 0.0
        assert engine.delete_group(first.group_id) is False

        second = engine.create_group(_guards(delay_seconds=0))
        assert second.group_id != first.group_id
        await engine.tick(now=clock.now)
        assert _speakers(presentation) == ["a", "b", "a"]

    async def test_disabled_group_keeps_progression(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        group = engine.create_group(_guards(delay_seconds=0))
        scene.move("p", 205, 0)
        await engine.tick(now=clock.now)
        engine.set_group_enabled(group.group_id, False)
        assert await engine.tick(now=clock.now) == []
        engine.set_group_enabled(group.group_id, True)
        await engine.tick(now=clock.now)
        assert _speakers(presentation) == ["a", "b"]

    async def test_scripted_custom_wraps(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        engine.create_group({
            "name": "Duet", "mode": "scripted_custom", "members": ["a", "b"],
            "script": [
                {"speaker_id": "a", "text": "Halt!"},
                {"speaker_id": "b", "text": "Who goes there?"},
            ],
            "range": 30, "delay_seconds": 0,
        })
        scene.move("p", 205, 0)
        for _ in range(3):
            await engine.tick(now=clock.now)
        assert [e.text for e in presentation.log] == ["Halt!", "Who goes there?", "Halt!"]

    async def test_scripted_corpus_follows_shrinking_corpus(self, engine: TriggerEngine, scene, corpora, presentation, clock) -> None:
        group = engine.create_group(_guards(mode="scripted_corpus", members=["a", "b"], delay_seconds=0))
        scene.move("p", 205, 0)
        for _ in range(3):
            await engine.tick(now=clock.now)
        assert [(e.speaker_id, e.text) for e in presentation.log] == [
            ("a", "one"), ("b", "two"), ("a", "three"),
        ]
        corpora.resolve("banter").entries = ["x", "y"]
        await engine.tick(now=clock.now)
        assert (presentation.log[-1].speaker_id, presentation.log[-1].text) == ("b", "y")
        assert engine.cursors.get(group.group_id) == 4

    async def test_absent_member_consumes_turn(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        group = engine.create_group(_guards(delay_seconds=0))
        scene.move("p", 205, 0)
        scene.remove("a")
        assert await engine.tick(now=clock.now) == [f"group:{group.group_id}"]
        assert presentation.log == []
        assert engine.cursors.get(group.group_id) == 1
        await engine.tick(now=clock.now)
        assert _speakers(presentation) == ["b"]

    async def test_missing_corpus_leaves_state_intact(self, engine: TriggerEngine, scene, corpora, presentation, clock) -> None:
        group = engine.create_group(_guards())
        scene.move("p", 205, 0)
        banter = corpora.resolve("banter")
        corpora.remove("banter")

        assert await engine.tick(now=clock.now) == []
        assert presentation.log == []
        assert group.group_id not in engine.cursors
        assert engine.group_last_triggered(group.group_id) == 0.0

        # repaired within the interval: the group speaks at once
        corpora.put(banter)
        assert await engine.tick(now=clock.now + 1) == [f"group:{group.group_id}"]
        assert _speakers(presentation) == ["a"]

    async def test_empty_scripted_corpus_leaves_state_intact(self, engine: TriggerEngine, scene, corpora, clock) -> None:
        group = engine.create_group(_guards(mode="scripted_corpus"))
        scene.move("p", 205, 0)
        corpora.resolve("banter").entries = []
        assert await engine.tick(now=clock.now) == []
        assert engine.group_last_triggered(group.group_id) == 0.0

    async def test_groups_survive_restart(self, engine: TriggerEngine, make_engine) -> None:
        group = engine.create_group(_guards())
        reloaded = make_engine()
        assert reloaded.get_group(group.group_id) == group
        assert reloaded.group_stats().turn_taking == 1


# ---------------------------------------------------------------------------
# Pause, isolation, concurrency
# ---------------------------------------------------------------------------

class TestTickBehaviour:
    async def test_global_pause(self, engine: TriggerEngine, scene, presentation, clock) -> None:
        engine.assign_aura("e", "greetings")
        group = engine.create_group(_guards())
        scene.move("p", 100, 0)
        engine.update_aura_range("e", 120)
        engine.replace_group(group.group_id, _guards(range=120))

        engine.set_global_pause(True)
        for i in range(5):
            assert await engine.tick(now=clock.now + 100 * i) == []
        assert presentation.log == []
        assert engine.get_aura("e").last_triggered_at == 0.0
        assert group.group_id not in engine.cursors

        engine.set_global_pause(False)
        fired = await engine.tick(now=clock.now)
        assert sorted(fired) == ["aura:e", f"group:{group.group_id}"]

    async def test_failing_aura_does_not_block_group(self, engine: TriggerEngine, scene, corpora, presentation, clock) -> None:
        corpora.put(BrokenCorpus("broken", "Broken", ["never"]))
        engine.assign_aura("e", "broken", range=120)
        group = engine.create_group(_guards(range=120))
        scene.move("p", 100, 0)

        fired = await engine.tick(now=clock.now)
        assert sorted(fired) == ["aura:e", f"group:{group.group_id}"]
        assert _speakers(presentation) == ["a"]
        assert engine.get_aura("e").last_triggered_at == clock.now

    async def test_hung_check_does_not_stall_tick(self, make_engine, scene, presentation, clock) -> None:
        distance = GatedDistance()
        engine = make_engine(distance=distance)
        engine.update_settings({"poll_interval": 0.05})
        engine.assign_aura("e", "greetings", range=120)
        group = engine.create_group(_guards(range=120, delay_seconds=0))
        scene.move("p", 100, 0)

        assert await engine.tick(now=clock.now) == [f"group:{group.group_id}"]
        # the hung aura is not started a second time
        assert await engine.tick(now=clock.now) == [f"group:{group.group_id}"]
        assert _speakers(presentation) == ["a", "b"]

        distance.gate.set()
        await engine.drain()
        assert _speakers(presentation) == ["a", "b", "e"]
        assert await engine.tick(now=clock.now + 1) == [f"group:{group.group_id}"]


class TestLifecycle:
    async def test_start_and_stop(self, engine: TriggerEngine, scene, presentation) -> None:
        engine.update_settings({"poll_interval": 0.01})
        engine.assign_aura("e", "greetings")
        scene.move("p", 1, 0)

        engine.start_monitoring()
        engine.start_monitoring()
        assert engine.running
        await asyncio.sleep(0.1)
        await engine.stop_monitoring()
        await engine.drain()

        assert not engine.running
        # the clock is frozen, so the cooldown allows exactly one line
        assert _speakers(presentation) == ["e"]

    async def test_stop_when_not_running(self, engine: TriggerEngine) -> None:
        await engine.stop_monitoring()
        assert not engine.running

    async def test_start_reloads_auras_from_flags(self, engine: TriggerEngine, make_engine) -> None:
        engine.assign_aura("e", "greetings")
        reloaded = make_engine()
        assert reloaded.list_auras() == []
        reloaded.start_monitoring()
        try:
            assert [b.entity_id for b in reloaded.list_auras()] == ["e"]
        finally:
            await reloaded.stop_monitoring()


class TestDispatchFailure:
    @pytest.fixture
    def broken_display(self, presentation):
        def show(floating) -> None:
            raise RuntimeError("display offline")

        presentation.show = show
        return presentation

    async def test_aura_stays_stamped(self, engine: TriggerEngine, scene, broken_display, storage, clock) -> None:
        engine.assign_aura("e", "greetings")
        scene.move("p", 1, 0)

        assert await engine.tick(now=clock.now) == ["aura:e"]
        assert engine.get_aura("e").last_triggered_at == clock.now
        assert storage.get_entity_flag("e", AURA_FLAG)["last_triggered_at"] == clock.now
        # the text log is still written after the display failed
        assert len(broken_display.log) == 1

        assert await engine.tick(now=clock.now + 5) == []
        assert await engine.tick(now=clock.now + 10) == ["aura:e"]
        assert len(broken_display.log) == 2

    async def test_group_stays_stamped(self, engine: TriggerEngine, scene, broken_display, clock) -> None:
        group = engine.create_group(_guards())
        scene.move("p", 205, 0)

        assert await engine.tick(now=clock.now) == [f"group:{group.group_id}"]
        assert engine.group_last_triggered(group.group_id) == clock.now
        assert engine.cursors.get(group.group_id) == 1

        assert await engine.tick(now=clock.now + 5) == []
        assert await engine.tick(now=clock.now + 10) == [f"group:{group.group_id}"]
        assert _speakers(broken_display) == ["a", "b"]


class TestFreeFormEntityIds:
    @pytest.fixture
    def tom(self, scene):
        return scene.upsert(npc("old tom", 0, 500))

    async def test_assign_and_fire(self, engine: TriggerEngine, scene, tom, presentation, clock) -> None:
        assert engine.assign_aura("old tom", "greetings").entity_id == "old tom"
        scene.move("p", 0, 490)
        assert await engine.tick(now=clock.now) == ["aura:old tom"]
        assert _speakers(presentation) == ["old tom"]

    async def test_remove_clears_aura(self, engine: TriggerEngine, scene, tom, storage) -> None:
        engine.assign_aura("old tom", "greetings")
        assert scene.remove("old tom") is True
        assert engine.get_aura("old tom") is None
        assert storage.get_entity_flag("old tom", AURA_FLAG) is None

    async def test_start_reloads_aura(self, engine: TriggerEngine, make_engine, tom) -> None:
        engine.assign_aura("old tom", "greetings")
        reloaded = make_engine()
        reloaded.start_monitoring()
        try:
            assert [b.entity_id for b in reloaded.list_auras()] == ["old tom"]
        finally:
            await reloaded.stop_monitoring()

    async def test_unreadable_flag_does_not_block_start(self, engine: TriggerEngine, make_engine, storage, tom) -> None:
        engine.assign_aura("e", "greetings")
        engine.assign_aura("old tom", "greetings")
        (storage.base_path / "entities" / "e.json").write_text("{not json")

        reloaded = make_engine()
        reloaded.start_monitoring()
        try:
            assert [b.entity_id for b in reloaded.list_auras()] == ["old tom"]
        finally:
            await reloaded.stop_monitoring()
