"""Core domain models.

The engine, registries and HTTP layer all operate on these types.
Pydantic is used for validation and serialisation at every data boundary.

Conversation groups are a discriminated union keyed on ``mode``; each variant
carries exactly the payload its speaking mode needs and forbids the others.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class SceneEntity(BaseModel):
    """A positioned actor. ``observer`` marks entities controlled by a participant."""

    id: str
    name: str = ""
    position: Position = Field(default_factory=Position)
    observer: bool = False


# ---------------------------------------------------------------------------
# Auras
# ---------------------------------------------------------------------------

class AuraBinding(BaseModel):
    """A single-entity proximity dialogue binding, stored on the entity."""

    entity_id: str
    corpus_id: str
    corpus_name: str = ""
    range: float = Field(gt=0)
    enabled: bool = True
    last_triggered_at: float = 0.0
    delay_seconds: float | None = Field(default=None, ge=0)  # None → global default


# ---------------------------------------------------------------------------
# Conversation groups
# ---------------------------------------------------------------------------

class ScriptLine(BaseModel):
    speaker_id: str = Field(min_length=1)
    text: str


class _GroupBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    group_id: str = ""       # assigned by the registry
    created_at: float = 0.0  # assigned by the registry
    name: str = Field(min_length=1)
    members: list[str] = Field(min_length=1)  # speaking / playback order
    range: float | None = Field(default=None, gt=0)  # None → settings.default_range
    delay_seconds: float | None = Field(default=None, ge=0)  # None → settings.default_interval
    enabled: bool = True


class RandomGroup(_GroupBase):
    mode: Literal["random"] = "random"
    tables_by_member: dict[str, str]

    @model_validator(mode="after")
    def _check_tables(self) -> RandomGroup:
        if len(self.tables_by_member) < 2:
            raise ValueError("random mode needs corpora assigned to at least two members")
        strangers = sorted(set(self.tables_by_member) - set(self.members))
        if strangers:
            raise ValueError(f"corpora assigned to non-members: {', '.join(strangers)}")
        return self


class TurnTakingGroup(_GroupBase):
    mode: Literal["turn_taking"] = "turn_taking"
    shared_corpus_id: str = Field(min_length=1)


class ScriptedCorpusGroup(_GroupBase):
    mode: Literal["scripted_corpus"] = "scripted_corpus"
    shared_corpus_id: str = Field(min_length=1)


class ScriptedCustomGroup(_GroupBase):
    mode: Literal["scripted_custom"] = "scripted_custom"
    script: list[ScriptLine] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_speakers(self) -> ScriptedCustomGroup:
        strangers = sorted({line.speaker_id for line in self.script} - set(self.members))
        if strangers:
            raise ValueError(f"script speakers are not members: {', '.join(strangers)}")
        return self


ConversationGroup = Annotated[
    Union[RandomGroup, TurnTakingGroup, ScriptedCorpusGroup, ScriptedCustomGroup],
    Field(discriminator="mode"),
]

group_adapter: TypeAdapter[ConversationGroup] = TypeAdapter(ConversationGroup)
group_list_adapter: TypeAdapter[list[ConversationGroup]] = TypeAdapter(list[ConversationGroup])


class GroupStats(BaseModel):
    total: int = 0
    enabled: int = 0
    disabled: int = 0
    random: int = 0
    turn_taking: int = 0
    scripted_corpus: int = 0
    scripted_custom: int = 0


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class Utterance(BaseModel):
    """A resolved line: who says what, and which aura/group produced it."""

    speaker_id: str
    text: str
    source: Literal["aura", "group"]
    source_id: str


class FloatingText(BaseModel):
    utterance_id: str
    speaker_id: str
    speaker_name: str
    text: str
    position: Position
    timestamp: float
    duration: float


class BroadcastEnvelope(BaseModel):
    """Payload published on the broadcast channel and written to the mirror."""

    action: Literal["display_floating_text"] = "display_floating_text"
    data: FloatingText
    sender: str


class LogEntry(BaseModel):
    """A line appended to the shared text log."""

    speaker_id: str
    speaker_name: str
    text: str
    timestamp: float
