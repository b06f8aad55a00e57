"""Conversation group registry.

Groups are created whole (validated atomically), replaced whole, or deleted;
there is no partial update. The full collection is written to world storage
under ``conversation_groups`` after every mutation.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from npc_chatter.config import Settings
from npc_chatter.errors import GroupValidationError, UnknownGroupError
from npc_chatter.models import (
    ConversationGroup,
    GroupStats,
    RandomGroup,
    ScriptedCorpusGroup,
    ScriptedCustomGroup,
    TurnTakingGroup,
    group_adapter,
    group_list_adapter,
)
from npc_chatter.scene import CorpusProvider
from npc_chatter.storage import WorldStore

logger = logging.getLogger(__name__)

GROUPS_KEY = "conversation_groups"


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


class GroupRegistry:
    """CRUD over conversation groups.

    Args:
        corpora:    Used to check corpus references at creation.
        store:      World store holding the serialised collection.
        settings:   Callable returning current Settings (range bounds, defaults).
        on_delete:  Called with the group id after a delete; the engine uses it
                    to discard cursor and activity state.
        clock:      Source for ``created_at``.
    """

    def __init__(
        self,
        corpora: CorpusProvider,
        store: WorldStore,
        settings: Callable[[], Settings],
        on_delete: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._corpora = corpora
        self._store = store
        self._settings = settings
        self._on_delete = on_delete
        self._clock = clock
        self._groups: dict[str, ConversationGroup] = {}

    def __contains__(self, group_id: str) -> bool:
        return group_id in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace the in-memory collection with the stored one."""
        self._groups.clear()
        for raw in self._store.get_world(GROUPS_KEY) or []:
            try:
                group = group_adapter.validate_python(raw)
            except ValidationError as e:
                logger.warning("Skipping stored group %r: %s", raw.get("group_id"), _describe(e))
                continue
            self._groups[group.group_id] = group
        logger.info("Loaded %d conversation groups", len(self._groups))
        return len(self._groups)

    def _save(self) -> None:
        data = group_list_adapter.dump_python(list(self._groups.values()), mode="json")
        self._store.set_world(GROUPS_KEY, data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, group_id: str) -> ConversationGroup | None:
        return self._groups.get(group_id)

    def all(self) -> list[ConversationGroup]:
        return list(self._groups.values())

    def groups_for_entity(self, entity_id: str) -> list[ConversationGroup]:
        return [g for g in self._groups.values() if entity_id in g.members]

    def stats(self) -> GroupStats:
        stats = GroupStats(total=len(self._groups))
        for group in self._groups.values():
            if group.enabled:
                stats.enabled += 1
            setattr(stats, group.mode, getattr(stats, group.mode) + 1)
        stats.disabled = stats.total - stats.enabled
        return stats

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, config: dict[str, Any] | BaseModel) -> ConversationGroup:
        """Validate ``config`` and store it as a new group. Returns the stored group."""
        group = self._validate(config)
        group = group.model_copy(update={
            "group_id": f"group-{uuid.uuid4().hex[:12]}",
            "created_at": self._clock(),
        })
        self._groups[group.group_id] = group
        self._save()
        logger.info("Created %s group %r (%s)", group.mode, group.name, group.group_id)
        return group

    def replace(self, group_id: str, config: dict[str, Any] | BaseModel) -> ConversationGroup:
        """Swap a group for a new full configuration, keeping its id and creation time."""
        existing = self._groups.get(group_id)
        if existing is None:
            raise UnknownGroupError(f"Conversation group {group_id} not found")
        group = self._validate(config).model_copy(update={
            "group_id": group_id,
            "created_at": existing.created_at,
        })
        self._groups[group_id] = group
        self._save()
        logger.info("Replaced group %r (%s)", group.name, group_id)
        return group

    def set_enabled(self, group_id: str, enabled: bool) -> ConversationGroup:
        existing = self._groups.get(group_id)
        if existing is None:
            raise UnknownGroupError(f"Conversation group {group_id} not found")
        return self.replace(group_id, existing.model_copy(update={"enabled": enabled}))

    def delete(self, group_id: str) -> ConversationGroup:
        group = self._groups.pop(group_id, None)
        if group is None:
            raise UnknownGroupError(f"Conversation group {group_id} not found")
        if self._on_delete is not None:
            self._on_delete(group_id)
        self._save()
        logger.info("Deleted group %r (%s)", group.name, group_id)
        return group

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, config: dict[str, Any] | BaseModel) -> ConversationGroup:
        if isinstance(config, BaseModel):
            config = config.model_dump()
        try:
            group = group_adapter.validate_python(config)
        except ValidationError as e:
            raise GroupValidationError(_describe(e)) from e

        settings = self._settings()
        if group.range is None:
            group = group.model_copy(update={"range": settings.default_range})
        reason = settings.check_range(group.range)
        if reason:
            raise GroupValidationError(reason)

        for corpus_id in referenced_corpora(group):
            if self._corpora.resolve(corpus_id) is None:
                raise GroupValidationError(f"Corpus {corpus_id} not found")
        return group


def referenced_corpora(group: ConversationGroup) -> list[str]:
    """Corpus ids a group draws from, in first-use order."""
    if isinstance(group, RandomGroup):
        return list(dict.fromkeys(group.tables_by_member.values()))
    if isinstance(group, (TurnTakingGroup, ScriptedCorpusGroup)):
        return [group.shared_corpus_id]
    if isinstance(group, ScriptedCustomGroup):
        return []
    raise TypeError(f"Unhandled group type {type(group).__name__}")
