"""JSON file storage.

All durable state is stored in flat JSON files under a configurable base
directory. There is no database — reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      world.json              ← world-scoped values, keyed by logical name:
                                  settings, conversation_groups, floating_text
      scene.json              ← entities + corpora for the standalone host
      entities/
        {quoted id}.json      ← per-entity flags, e.g. {"dialogue_aura": {...}}

The engine only depends on the two protocols below; Storage implements both.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

from npc_chatter.errors import PersistenceError

logger = logging.getLogger(__name__)

_MAX_NAME = 200


def entity_file_name(entity_id: str) -> str:
    """Map any entity id to a file name that stays inside the entities directory.

    Ids are percent-encoded, so distinct ids never share a file. Ids whose
    encoding is too long for a file name fall back to a sha1 digest.
    """
    name = quote(entity_id, safe="")
    if name in ("", ".", ".."):
        name = "%" + name.encode().hex()
    if len(name) > _MAX_NAME:
        name = "%sha1-" + hashlib.sha1(entity_id.encode()).hexdigest()
    return name


class WorldStore(Protocol):
    def get_world(self, key: str, default: Any = None) -> Any: ...
    def set_world(self, key: str, value: Any) -> None: ...


class EntityFlagStore(Protocol):
    def get_entity_flag(self, entity_id: str, key: str) -> Any: ...
    def set_entity_flag(self, entity_id: str, key: str, value: Any) -> None: ...
    def unset_entity_flag(self, entity_id: str, key: str) -> None: ...


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._entity_root = base_path / "entities"
        self._entity_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _world_file(self) -> Path:
        return self._base / "world.json"

    def _scene_file(self) -> Path:
        return self._base / "scene.json"

    def _entity_file(self, entity_id: str) -> Path:
        return self._entity_root / f"{entity_file_name(entity_id)}.json"

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.is_file():
            return default
        try:
            return json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read {path.name}: {e}") from e

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2))
            tmp.replace(path)
        except OSError as e:
            raise PersistenceError(f"Could not write {path.name}: {e}") from e

    # ------------------------------------------------------------------
    # World-scoped values
    # ------------------------------------------------------------------

    def get_world(self, key: str, default: Any = None) -> Any:
        return self._read_json(self._world_file(), {}).get(key, default)

    def set_world(self, key: str, value: Any) -> None:
        world = self._read_json(self._world_file(), {})
        world[key] = value
        self._write_json(self._world_file(), world)

    # ------------------------------------------------------------------
    # Per-entity flags
    # ------------------------------------------------------------------

    def get_entity_flag(self, entity_id: str, key: str) -> Any:
        return self._read_json(self._entity_file(entity_id), {}).get(key)

    def set_entity_flag(self, entity_id: str, key: str, value: Any) -> None:
        path = self._entity_file(entity_id)
        flags = self._read_json(path, {})
        flags[key] = value
        self._write_json(path, flags)

    def unset_entity_flag(self, entity_id: str, key: str) -> None:
        path = self._entity_file(entity_id)
        flags = self._read_json(path, {})
        if key not in flags:
            return
        del flags[key]
        if not flags:
            try:
                path.unlink()
            except OSError as e:
                raise PersistenceError(f"Could not remove {path.name}: {e}") from e
            return
        self._write_json(path, flags)

    # ------------------------------------------------------------------
    # Scene snapshot (standalone host only)
    # ------------------------------------------------------------------

    def load_scene(self) -> dict[str, Any] | None:
        data = self._read_json(self._scene_file(), None)
        if data is None:
            logger.debug("No scene snapshot at %s", self._scene_file())
        return data

    def save_scene(self, data: dict[str, Any]) -> None:
        self._write_json(self._scene_file(), data)
