"""Speaking-mode resolvers — who speaks next in a conversation group, and what.

Each resolver takes the group's current cursor and returns a Resolution with
the speaker, the text, and the cursor value to store afterwards:

  random           uniform member, random draw from that member's corpus;
                   no cursor.
  turn_taking      members[cursor], random draw from the shared corpus;
                   cursor → (cursor + 1) % len(members).
  scripted_corpus  members[c % len(members)], corpus entry c % len(corpus),
                   both computed at fire time; c → c + 1, never wraps.
  scripted_custom  script[cursor]; cursor → (cursor + 1) % len(script).

A member that has left the scene still consumes its turn: the cursor
advances and the resolution carries no speaker. A missing or empty corpus
raises MissingReferenceError and leaves the cursor alone.
"""

from __future__ import annotations

import logging
import random
from typing import assert_never

from pydantic import BaseModel

from npc_chatter.errors import MissingReferenceError
from npc_chatter.models import (
    ConversationGroup,
    RandomGroup,
    ScriptedCorpusGroup,
    ScriptedCustomGroup,
    TurnTakingGroup,
)
from npc_chatter.scene import Corpus, CorpusProvider, EntityDirectory

logger = logging.getLogger(__name__)


class Resolution(BaseModel):
    speaker_id: str | None = None
    text: str | None = None
    next_cursor: int | None = None  # None → leave the cursor as it is
    skipped: str | None = None      # why nothing is dispatched

    @property
    def dispatchable(self) -> bool:
        return self.speaker_id is not None and self.text is not None


class CursorStore:
    """Per-group progression counters. Absent groups read as 0."""

    def __init__(self) -> None:
        self._cursors: dict[str, int] = {}

    def __contains__(self, group_id: str) -> bool:
        return group_id in self._cursors

    def get(self, group_id: str) -> int:
        return self._cursors.get(group_id, 0)

    def set(self, group_id: str, value: int) -> None:
        self._cursors[group_id] = value

    def discard(self, group_id: str) -> None:
        self._cursors.pop(group_id, None)


class GroupResolver:
    def __init__(
        self,
        directory: EntityDirectory,
        corpora: CorpusProvider,
        rng: random.Random | None = None,
    ) -> None:
        self._directory = directory
        self._corpora = corpora
        self._rng = rng or random.Random()

    async def resolve(self, group: ConversationGroup, cursor: int) -> Resolution:
        if isinstance(group, RandomGroup):
            return await self._random(group)
        elif isinstance(group, TurnTakingGroup):
            return await self._turn_taking(group, cursor)
        elif isinstance(group, ScriptedCorpusGroup):
            return await self._scripted_corpus(group, cursor)
        elif isinstance(group, ScriptedCustomGroup):
            return self._scripted_custom(group, cursor)
        else:
            assert_never(group)

    def _corpus(self, corpus_id: str) -> Corpus:
        corpus = self._corpora.resolve(corpus_id)
        if corpus is None:
            raise MissingReferenceError(f"Corpus {corpus_id} not found")
        return corpus

    def _present(self, entity_id: str) -> bool:
        return self._directory.get(entity_id) is not None

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _random(self, group: RandomGroup) -> Resolution:
        member = self._rng.choice(group.members)
        corpus_id = group.tables_by_member.get(member)
        if corpus_id is None:
            return Resolution(skipped=f"no corpus assigned to {member}")
        corpus = self._corpus(corpus_id)
        if not self._present(member):
            return Resolution(skipped=f"member {member} not in scene")
        text = await corpus.draw_random()
        if text is None:
            return Resolution(skipped=f"corpus {corpus_id} is empty")
        return Resolution(speaker_id=member, text=text)

    async def _turn_taking(self, group: TurnTakingGroup, cursor: int) -> Resolution:
        corpus = self._corpus(group.shared_corpus_id)
        if not 0 <= cursor < len(group.members):
            cursor = 0
        member = group.members[cursor]
        next_cursor = (cursor + 1) % len(group.members)
        if not self._present(member):
            return Resolution(next_cursor=next_cursor, skipped=f"member {member} not in scene")
        text = await corpus.draw_random()
        return Resolution(
            speaker_id=member,
            text=text,
            next_cursor=next_cursor,
            skipped=None if text is not None else f"corpus {corpus.id} is empty",
        )

    async def _scripted_corpus(self, group: ScriptedCorpusGroup, counter: int) -> Resolution:
        corpus = self._corpus(group.shared_corpus_id)
        length = corpus.length
        if length == 0:
            raise MissingReferenceError(f"Corpus {corpus.id} has no entries")
        member = group.members[counter % len(group.members)]
        if not self._present(member):
            return Resolution(next_cursor=counter + 1, skipped=f"member {member} not in scene")
        text = await corpus.entry_at(counter % length)
        return Resolution(
            speaker_id=member,
            text=text,
            next_cursor=counter + 1,
            skipped=None if text is not None else f"entry {counter % length} missing",
        )

    def _scripted_custom(self, group: ScriptedCustomGroup, cursor: int) -> Resolution:
        if not group.script:
            return Resolution(next_cursor=0, skipped="script exhausted")
        if not 0 <= cursor < len(group.script):
            cursor = 0
        line = group.script[cursor]
        next_cursor = (cursor + 1) % len(group.script)
        if not self._present(line.speaker_id):
            return Resolution(next_cursor=next_cursor, skipped=f"speaker {line.speaker_id} not in scene")
        return Resolution(speaker_id=line.speaker_id, text=line.text, next_cursor=next_cursor)
