"""Aura registry — one proximity dialogue binding per entity.

Bindings are stored as a flag on the owning entity (durable, per-entity) and
mirrored in an in-memory index that the engine reads every tick. Mutations
write the flag first and only then update the index, so the index never holds
a binding that was not persisted.
"""

from __future__ import annotations

import logging
from typing import Callable

from npc_chatter.config import Settings
from npc_chatter.errors import AuraValidationError, PersistenceError, UnknownAuraError
from npc_chatter.models import AuraBinding
from npc_chatter.scene import CorpusProvider, EntityDirectory
from npc_chatter.storage import EntityFlagStore

logger = logging.getLogger(__name__)

AURA_FLAG = "dialogue_aura"


class AuraRegistry:
    def __init__(
        self,
        directory: EntityDirectory,
        corpora: CorpusProvider,
        store: EntityFlagStore,
        settings: Callable[[], Settings],
    ) -> None:
        self._directory = directory
        self._corpora = corpora
        self._store = store
        self._settings = settings
        self._active: dict[str, AuraBinding] = {}

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._active

    def __len__(self) -> int:
        return len(self._active)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entity_id: str) -> AuraBinding | None:
        binding = self._active.get(entity_id)
        if binding is not None:
            return binding
        return self._read_flag(entity_id)

    def all(self) -> list[AuraBinding]:
        return list(self._active.values())

    def _read_flag(self, entity_id: str) -> AuraBinding | None:
        raw = self._store.get_entity_flag(entity_id, AURA_FLAG)
        if not raw:
            return None
        try:
            return AuraBinding.model_validate(raw)
        except ValueError:
            logger.warning("Ignoring malformed aura flag on entity %s", entity_id)
            return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def assign(
        self,
        entity_id: str,
        corpus_id: str,
        range: float | None = None,
        delay_seconds: float | None = None,
    ) -> AuraBinding:
        """Create or replace the aura on ``entity_id``. Resets its cooldown."""
        if self._directory.get(entity_id) is None:
            raise AuraValidationError(f"Entity {entity_id} not found")
        corpus = self._corpora.resolve(corpus_id)
        if corpus is None:
            raise AuraValidationError(f"Corpus {corpus_id} not found")

        settings = self._settings()
        if range is None:
            range = settings.default_range
        reason = settings.check_range(range)
        if reason:
            raise AuraValidationError(reason)
        if delay_seconds is not None and delay_seconds < 0:
            raise AuraValidationError("delay_seconds must not be negative")

        binding = AuraBinding(
            entity_id=entity_id,
            corpus_id=corpus_id,
            corpus_name=corpus.name,
            range=range,
            delay_seconds=delay_seconds,
        )
        self._store.set_entity_flag(entity_id, AURA_FLAG, binding.model_dump())
        self._active[entity_id] = binding
        logger.info("Assigned corpus %r to entity %s (range %g)", corpus.name, entity_id, range)
        return binding

    def remove(self, entity_id: str) -> bool:
        """Delete the binding from storage and the index. False if there was none."""
        known = entity_id in self._active or self._read_flag(entity_id) is not None
        if not known:
            return False
        self._store.unset_entity_flag(entity_id, AURA_FLAG)
        self._active.pop(entity_id, None)
        logger.info("Removed aura from entity %s", entity_id)
        return True

    def forget(self, entity_id: str) -> None:
        """Drop from the in-memory index only (entity vanished from the scene)."""
        if self._active.pop(entity_id, None) is not None:
            logger.info("Dropped aura for missing entity %s", entity_id)

    def update_range(self, entity_id: str, range: float) -> AuraBinding:
        reason = self._settings().check_range(range)
        if reason:
            raise AuraValidationError(reason)
        return self._replace(entity_id, range=range)

    def set_enabled(self, entity_id: str, enabled: bool) -> AuraBinding:
        return self._replace(entity_id, enabled=enabled)

    def _replace(self, entity_id: str, **changes: object) -> AuraBinding:
        binding = self.get(entity_id)
        if binding is None:
            raise UnknownAuraError(f"No aura on entity {entity_id}")
        updated = binding.model_copy(update=changes)
        self._store.set_entity_flag(entity_id, AURA_FLAG, updated.model_dump())
        self._active[entity_id] = updated
        return updated

    # ------------------------------------------------------------------
    # Engine hooks
    # ------------------------------------------------------------------

    def stamp(self, entity_id: str, now: float) -> None:
        """Record a fire in memory. Synchronous so it lands before any await."""
        binding = self._active.get(entity_id)
        if binding is not None:
            binding.last_triggered_at = now

    def persist_stamp(self, entity_id: str) -> None:
        binding = self._active.get(entity_id)
        if binding is None:
            return
        try:
            self._store.set_entity_flag(entity_id, AURA_FLAG, binding.model_dump())
        except PersistenceError as e:
            logger.error("Could not persist cooldown for entity %s: %s", entity_id, e)

    def load_from_scene(self) -> int:
        """Rebuild the index from the flags of every entity in the scene."""
        self._active.clear()
        for entity in self._directory.all():
            try:
                binding = self._read_flag(entity.id)
            except PersistenceError as e:
                logger.error("Skipping aura of entity %s: %s", entity.id, e)
                continue
            if binding is not None and binding.enabled:
                self._active[entity.id] = binding
        logger.info("Loaded %d active auras from scene", len(self._active))
        return len(self._active)
