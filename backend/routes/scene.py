"""Scene endpoints: entities, corpora, and the shared text log.

These stand in for the host's own scene management so the service can run
standalone. Every mutation is saved to scene.json.
"""

from fastapi import APIRouter, Depends, HTTPException

from backend.host import Host
from npc_chatter.models import Position, SceneEntity
from npc_chatter.scene import ListCorpus

from .deps import get_host
from .models import MoveEntity, UpsertCorpus, UpsertEntity

router = APIRouter()


@router.get("/entities")
async def list_entities(host: Host = Depends(get_host)):
    """List all entities in the scene."""
    return host.scene.all()


@router.put("/entities/{entity_id}")
async def upsert_entity(entity_id: str, body: UpsertEntity, host: Host = Depends(get_host)):
    """Create or replace an entity."""
    entity = host.scene.upsert(SceneEntity(
        id=entity_id,
        name=body.name or entity_id,
        position=Position(x=body.x, y=body.y),
        observer=body.observer,
    ))
    host.save_scene()
    return entity


@router.post("/entities/{entity_id}/move")
async def move_entity(entity_id: str, body: MoveEntity, host: Host = Depends(get_host)):
    """Move an entity to a new position."""
    entity = host.scene.move(entity_id, body.x, body.y)
    if entity is None:
        raise HTTPException(404, "Entity not found")
    host.save_scene()
    return entity


@router.delete("/entities/{entity_id}")
async def delete_entity(entity_id: str, host: Host = Depends(get_host)):
    """Remove an entity from the scene. Its aura is removed with it."""
    if not host.scene.remove(entity_id):
        raise HTTPException(404, "Entity not found")
    host.save_scene()
    return {"ok": True}


@router.get("/corpora")
async def list_corpora(host: Host = Depends(get_host)):
    """List dialogue corpora."""
    return [
        {"id": c.id, "name": c.name, "entries": c.entries}
        for c in host.corpora.all()
    ]


@router.put("/corpora/{corpus_id}")
async def upsert_corpus(corpus_id: str, body: UpsertCorpus, host: Host = Depends(get_host)):
    """Create or replace a corpus. Scripted groups read the new entries on their next fire."""
    existing = host.corpora.resolve(corpus_id)
    if existing is not None:
        existing.name = body.name
        existing.entries = list(body.entries)
        corpus = existing
    else:
        corpus = host.corpora.put(ListCorpus(corpus_id, body.name, body.entries))
    host.save_scene()
    return {"id": corpus.id, "name": corpus.name, "entries": corpus.entries}


@router.get("/log")
async def text_log(limit: int = 50, host: Host = Depends(get_host)):
    """Most recent lines of the shared text log."""
    return host.presentation.log[-limit:] if limit > 0 else []
