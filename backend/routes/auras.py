"""Aura endpoints — one proximity dialogue binding per entity."""

from fastapi import APIRouter, Depends, HTTPException

from backend.host import Host

from .deps import get_host
from .models import AssignAura, UpdateAura

router = APIRouter()


@router.get("/auras")
async def list_auras(host: Host = Depends(get_host)):
    """List active auras."""
    return host.engine.list_auras()


@router.get("/auras/{entity_id}")
async def get_aura(entity_id: str, host: Host = Depends(get_host)):
    """Get the aura on an entity."""
    aura = host.engine.get_aura(entity_id)
    if aura is None:
        raise HTTPException(404, "Aura not found")
    return aura


@router.put("/auras/{entity_id}")
async def assign_aura(entity_id: str, body: AssignAura, host: Host = Depends(get_host)):
    """Assign a corpus to an entity, replacing any existing aura."""
    return host.engine.assign_aura(entity_id, body.corpus_id, body.range, body.delay_seconds)


@router.patch("/auras/{entity_id}")
async def update_aura(entity_id: str, body: UpdateAura, host: Host = Depends(get_host)):
    """Change an aura's range and/or enablement."""
    aura = host.engine.get_aura(entity_id)
    if aura is None:
        raise HTTPException(404, "Aura not found")
    if body.range is not None:
        aura = host.engine.update_aura_range(entity_id, body.range)
    if body.enabled is not None:
        aura = host.engine.set_aura_enabled(entity_id, body.enabled)
    return aura


@router.delete("/auras/{entity_id}")
async def remove_aura(entity_id: str, host: Host = Depends(get_host)):
    """Remove the aura from an entity."""
    if not host.engine.remove_aura(entity_id):
        raise HTTPException(404, "Aura not found")
    return {"ok": True}
