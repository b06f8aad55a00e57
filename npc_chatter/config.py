"""World settings (ranges, intervals, pause, presentation toggles).

Settings live under the ``settings`` key of world storage. load_settings()
returns defaults merged with stored values; update_settings() applies a
partial update, validates the merged result, and persists it.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from npc_chatter.errors import ConfigValidationError
from npc_chatter.storage import WorldStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


class Settings(BaseModel):
    auras_enabled: bool = True
    global_pause: bool = False
    default_range: float = Field(default=30.0, gt=0)
    min_range: float = Field(default=5.0, gt=0)
    max_range: float = Field(default=120.0, gt=0)
    default_interval: float = Field(default=10.0, ge=0)  # seconds between lines
    poll_interval: float = Field(default=1.0, gt=0)
    show_floating_text: bool = True
    show_in_log: bool = True
    floating_text_duration: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> Settings:
        if self.min_range > self.max_range:
            raise ValueError("min_range must not exceed max_range")
        if not self.min_range <= self.default_range <= self.max_range:
            raise ValueError("default_range must lie between min_range and max_range")
        return self

    def check_range(self, value: float) -> str | None:
        """Return a reason string if ``value`` is outside the operator bounds."""
        if value <= 0:
            return "range must be positive"
        if value < self.min_range or value > self.max_range:
            return f"range must be between {self.min_range:g} and {self.max_range:g}"
        return None


def load_settings(store: WorldStore) -> Settings:
    stored = store.get_world(SETTINGS_KEY) or {}
    merged = Settings().model_dump()
    merged.update({k: v for k, v in stored.items() if k in merged})
    try:
        return Settings.model_validate(merged)
    except ValidationError:
        logger.warning("Stored settings are invalid, falling back to defaults")
        return Settings()


def update_settings(store: WorldStore, fields: dict[str, Any]) -> Settings:
    """Merge ``fields`` into the stored settings and persist. Returns the result."""
    current = load_settings(store).model_dump()
    unknown = sorted(set(fields) - set(current))
    if unknown:
        raise ConfigValidationError(f"Unknown settings: {', '.join(unknown)}")
    current.update(fields)
    try:
        settings = Settings.model_validate(current)
    except ValidationError as e:
        raise ConfigValidationError(str(e)) from e
    store.set_world(SETTINGS_KEY, settings.model_dump())
    return settings
