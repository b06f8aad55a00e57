"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field


class PauseBody(BaseModel):
    paused: bool


class UpsertEntity(BaseModel):
    name: str = ""
    x: float = 0.0
    y: float = 0.0
    observer: bool = False


class MoveEntity(BaseModel):
    x: float
    y: float


class UpsertCorpus(BaseModel):
    name: str
    entries: list[str] = Field(default_factory=list)


class AssignAura(BaseModel):
    corpus_id: str
    range: float | None = None
    delay_seconds: float | None = None


class UpdateAura(BaseModel):
    range: float | None = None
    enabled: bool | None = None


class ToggleGroup(BaseModel):
    enabled: bool
