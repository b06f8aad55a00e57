"""Trigger engine — the proximity monitor.

Every ``poll_interval`` seconds the engine runs one tick:

  1. If global_pause is set, nothing happens. Cooldowns are wall-clock gaps,
     so resuming does not release a burst of queued lines.
  2. Each enabled aura (when auras_enabled) and each enabled group is
     evaluated in its own task:
       - aura:  entity gone → dropped from the index; corpus gone → skipped
                and kept for later repair; otherwise in range if any observer
                is within range of the entity.
       - group: a missing corpus (or an empty one in scripted_corpus mode)
                skips it before the cooldown is touched; otherwise in range
                if any member is within range of any observer.
  3. Cooldown: fire iff now - last_triggered_at >= interval, where interval
     is the item's delay_seconds or settings.default_interval. The stamp is
     written synchronously BEFORE the first await on content or dispatch, so
     a slow dispatch can never let the next tick fire the same item twice.
  4. Aura fire: random draw from its corpus. Group fire: GroupResolver picks
     speaker + text and the cursor advances; then the line is dispatched.

A tick waits for its evaluations for at most one poll interval. Anything
still running (a hung distance or corpus call) keeps running in the
background, and that item is skipped by later ticks until it finishes.
Errors are logged per item and never reach sibling evaluations.

The engine owns all mutable state (auras, groups, cursors, group activity)
and exposes the CRUD surface used by the HTTP layer and host hooks.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Coroutine, Protocol

from pydantic import BaseModel

from npc_chatter.auras import AuraRegistry
from npc_chatter.config import Settings, load_settings, update_settings
from npc_chatter.dispatch import BroadcastChannel, Dispatcher, PresentationSink
from npc_chatter.errors import DispatchError, MissingReferenceError, PersistenceError
from npc_chatter.groups import GroupRegistry, referenced_corpora
from npc_chatter.models import (
    AuraBinding,
    ConversationGroup,
    GroupStats,
    ScriptedCorpusGroup,
    Utterance,
)
from npc_chatter.resolvers import CursorStore, GroupResolver
from npc_chatter.scene import CorpusProvider, DistanceOracle, Entity, EntityDirectory
from npc_chatter.storage import EntityFlagStore, WorldStore

logger = logging.getLogger(__name__)


class HostStorage(WorldStore, EntityFlagStore, Protocol):
    pass


class TriggerEngine:
    """One per host session. Construct it, wire entity removal to
    handle_entity_removed(), then start_monitoring() from inside a running
    event loop.
    """

    def __init__(
        self,
        *,
        directory: EntityDirectory,
        corpora: CorpusProvider,
        distance: DistanceOracle,
        storage: HostStorage,
        presentation: PresentationSink,
        channel: BroadcastChannel,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        sender: str = "host",
    ) -> None:
        self._directory = directory
        self._corpora = corpora
        self._distance = distance
        self._storage = storage
        self._clock = clock
        self._settings = load_settings(storage)

        self.cursors = CursorStore()
        self._group_activity: dict[str, float] = {}
        self.auras = AuraRegistry(directory, corpora, storage, self.settings)
        self.groups = GroupRegistry(
            corpora, storage, self.settings,
            on_delete=self._discard_group_state, clock=clock,
        )
        self.resolver = GroupResolver(directory, corpora, rng)
        self.dispatcher = Dispatcher(
            directory, presentation, channel, storage, self.settings,
            sender=sender, clock=clock,
        )

        self._task: asyncio.Task | None = None
        self._in_flight: dict[str, asyncio.Task] = {}
        self.groups.load()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def settings(self) -> Settings:
        return self._settings

    def update_settings(self, fields: dict[str, Any]) -> Settings:
        self._settings = update_settings(self._storage, fields)
        return self._settings

    def set_global_pause(self, paused: bool) -> Settings:
        settings = self.update_settings({"global_pause": paused})
        logger.info("Conversations %s", "paused" if paused else "resumed")
        return settings

    # ------------------------------------------------------------------
    # Auras
    # ------------------------------------------------------------------

    def assign_aura(
        self,
        entity_id: str,
        corpus_id: str,
        range: float | None = None,
        delay_seconds: float | None = None,
    ) -> AuraBinding:
        return self.auras.assign(entity_id, corpus_id, range, delay_seconds)

    def remove_aura(self, entity_id: str) -> bool:
        return self.auras.remove(entity_id)

    def get_aura(self, entity_id: str) -> AuraBinding | None:
        return self.auras.get(entity_id)

    def list_auras(self) -> list[AuraBinding]:
        return self.auras.all()

    def update_aura_range(self, entity_id: str, range: float) -> AuraBinding:
        return self.auras.update_range(entity_id, range)

    def set_aura_enabled(self, entity_id: str, enabled: bool) -> AuraBinding:
        return self.auras.set_enabled(entity_id, enabled)

    def handle_entity_removed(self, entity_id: str) -> None:
        """Host hook: the entity left the scene for good, so its aura goes too."""
        try:
            self.auras.remove(entity_id)
        except PersistenceError as e:
            self.auras.forget(entity_id)
            logger.error("Could not clear aura flag of removed entity %s: %s", entity_id, e)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, config: dict[str, Any] | BaseModel) -> ConversationGroup:
        return self.groups.create(config)

    def delete_group(self, group_id: str) -> bool:
        if group_id not in self.groups:
            return False
        self.groups.delete(group_id)
        return True

    def replace_group(self, group_id: str, config: dict[str, Any] | BaseModel) -> ConversationGroup:
        return self.groups.replace(group_id, config)

    def set_group_enabled(self, group_id: str, enabled: bool) -> ConversationGroup:
        return self.groups.set_enabled(group_id, enabled)

    def get_group(self, group_id: str) -> ConversationGroup | None:
        return self.groups.get(group_id)

    def list_groups(self) -> list[ConversationGroup]:
        return self.groups.all()

    def groups_for_entity(self, entity_id: str) -> list[ConversationGroup]:
        return self.groups.groups_for_entity(entity_id)

    def group_stats(self) -> GroupStats:
        return self.groups.stats()

    def group_last_triggered(self, group_id: str) -> float:
        return self._group_activity.get(group_id, 0.0)

    def _discard_group_state(self, group_id: str) -> None:
        self.cursors.discard(group_id)
        self._group_activity.pop(group_id, None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self) -> None:
        if self.running:
            return
        self.auras.load_from_scene()
        self._task = asyncio.create_task(self._run())
        logger.info("Monitoring started (poll every %gs)", self._settings.poll_interval)

    async def stop_monitoring(self) -> None:
        """Cancel future ticks. Evaluations already in flight run to completion."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Monitoring stopped")

    async def drain(self) -> None:
        """Wait for every in-flight evaluation to finish."""
        pending = list(self._in_flight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await self.tick()
            except Exception:
                logger.exception("Tick failed")
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._settings.poll_interval - elapsed))

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: float | None = None) -> list[str]:
        """Evaluate every aura and group once. Returns the keys that fired."""
        settings = self._settings
        if settings.global_pause:
            logger.debug("Tick skipped: globally paused")
            return []
        if now is None:
            now = self._clock()

        observers = [e for e in self._directory.all() if e.observer]
        jobs: dict[str, Coroutine[Any, Any, bool]] = {}

        if settings.auras_enabled:
            for binding in self.auras.all():
                key = f"aura:{binding.entity_id}"
                if binding.enabled and self._free(key):
                    jobs[key] = self._evaluate_aura(binding, observers, now, settings)
        for group in self.groups.all():
            key = f"group:{group.group_id}"
            if group.enabled and self._free(key):
                jobs[key] = self._evaluate_group(group, observers, now, settings)

        if not jobs:
            return []

        tasks: dict[str, asyncio.Task] = {}
        for key, coro in jobs.items():
            task = asyncio.create_task(coro)
            tasks[key] = task
            self._in_flight[key] = task
            task.add_done_callback(lambda t, key=key: self._release(key, t))

        done, pending = await asyncio.wait(tasks.values(), timeout=settings.poll_interval)
        if pending:
            logger.warning("%d evaluations still running after the tick", len(pending))
        return [
            key for key, task in tasks.items()
            if task in done and not task.cancelled() and task.exception() is None and task.result()
        ]

    def _free(self, key: str) -> bool:
        if key in self._in_flight:
            logger.debug("%s still evaluating from an earlier tick", key)
            return False
        return True

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _any_in_range(
        self, entities: list[Entity], observers: list[Entity], range_units: float
    ) -> bool:
        for entity in entities:
            for observer in observers:
                if observer.id == entity.id:
                    continue
                if await self._distance.in_range(entity.position, observer.position, range_units):
                    return True
        return False

    async def _evaluate_aura(
        self, binding: AuraBinding, observers: list[Entity], now: float, settings: Settings
    ) -> bool:
        entity_id = binding.entity_id
        try:
            entity = self._directory.get(entity_id)
            if entity is None:
                self.auras.forget(entity_id)
                return False
            corpus = self._corpora.resolve(binding.corpus_id)
            if corpus is None:
                logger.warning("Aura on %s: corpus %s not found, skipped", entity_id, binding.corpus_id)
                return False
            if not await self._any_in_range([entity], observers, binding.range):
                return False

            current = self.auras.get(entity_id) if entity_id in self.auras else None
            if current is None or not current.enabled:
                return False
            interval = current.delay_seconds
            if interval is None:
                interval = settings.default_interval
            elapsed = now - current.last_triggered_at
            logger.debug("Aura %s in range: elapsed=%.1fs interval=%gs", entity_id, elapsed, interval)
            if elapsed < interval:
                return False
            self.auras.stamp(entity_id, now)
        except Exception:
            logger.exception("Aura evaluation failed for %s", entity_id)
            return False

        try:
            text = await corpus.draw_random()
            if text is None:
                logger.warning("Aura on %s: corpus %s is empty", entity_id, corpus.id)
            else:
                await self.dispatcher.dispatch(Utterance(
                    speaker_id=entity_id, text=text, source="aura", source_id=entity_id,
                ))
        except (DispatchError, MissingReferenceError) as e:
            logger.error("Aura dispatch failed for %s: %s", entity_id, e)
        except Exception:
            logger.exception("Aura dispatch failed for %s", entity_id)
        finally:
            self.auras.persist_stamp(entity_id)
        return True

    def _dangling_corpus(self, group: ConversationGroup) -> str | None:
        for corpus_id in referenced_corpora(group):
            corpus = self._corpora.resolve(corpus_id)
            if corpus is None:
                return f"corpus {corpus_id} not found"
            if isinstance(group, ScriptedCorpusGroup) and corpus.length == 0:
                return f"corpus {corpus_id} has no entries"
        return None

    async def _evaluate_group(

        self, group: ConversationGroup, observers: list[Entity], now: float, settings: Settings
    ) -> bool:
        group_id = group.group_id
        try:
            present = [e for e in (self._directory.get(m) for m in group.members) if e is not None]
            if not present:
                return False
            if not await self._any_in_range(present, observers, group.range):
                return False

            current = self.groups.get(group_id)
            if current is None or not current.enabled:
                return False
            dangling = self._dangling_corpus(current)
            if dangling:
                logger.warning("Group %s: %s, skipped", group_id, dangling)
                return False
            interval = current.delay_seconds
            if interval is None:
                interval = settings.default_interval
            elapsed = now - self._group_activity.get(group_id, 0.0)
            logger.debug("Group %s in range: elapsed=%.1fs interval=%gs", group_id, elapsed, interval)
            if elapsed < interval:
                return False
            self._group_activity[group_id] = now
        except Exception:
            logger.exception("Group evaluation failed for %s", group_id)
            return False

        try:
            resolution = await self.resolver.resolve(current, self.cursors.get(group_id))
            if resolution.next_cursor is not None and group_id in self.groups:
                self.cursors.set(group_id, resolution.next_cursor)
            if not resolution.dispatchable:
                logger.info("Group %s fired without a line: %s", group_id, resolution.skipped)
                return True
            await self.dispatcher.dispatch(Utterance(
                speaker_id=resolution.speaker_id,
                text=resolution.text,
                source="group",
                source_id=group_id,
            ))
        except MissingReferenceError as e:
            logger.warning("Group %s skipped: %s", group_id, e)
        except DispatchError as e:
            logger.error("Group dispatch failed for %s: %s", group_id, e)
        except Exception:
            logger.exception("Group fire failed for %s", group_id)
        return True
