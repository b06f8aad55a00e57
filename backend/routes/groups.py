"""Conversation group endpoints.

Groups are created and replaced whole; the body is a full group config whose
``mode`` selects the payload (tables_by_member, shared_corpus_id or script).
"""

from fastapi import APIRouter, Depends, HTTPException

from backend.host import Host

from .deps import get_host
from .models import ToggleGroup

router = APIRouter()


@router.get("/groups")
async def list_groups(host: Host = Depends(get_host)):
    """List all conversation groups."""
    return [g.model_dump() for g in host.engine.list_groups()]


@router.post("/groups", status_code=201)
async def create_group(body: dict, host: Host = Depends(get_host)):
    """Create a conversation group. Invalid configs are rejected with 422."""
    return host.engine.create_group(body).model_dump()


@router.get("/groups/stats")
async def group_stats(host: Host = Depends(get_host)):
    """Counts by status and speaking mode."""
    return host.engine.group_stats()


@router.get("/groups/{group_id}")
async def get_group(group_id: str, host: Host = Depends(get_host)):
    """Get a single conversation group."""
    group = host.engine.get_group(group_id)
    if group is None:
        raise HTTPException(404, "Conversation group not found")
    return group.model_dump()


@router.put("/groups/{group_id}")
async def replace_group(group_id: str, body: dict, host: Host = Depends(get_host)):
    """Replace a group's configuration. Its id, creation time and cursor are kept."""
    return host.engine.replace_group(group_id, body).model_dump()


@router.patch("/groups/{group_id}")
async def toggle_group(group_id: str, body: ToggleGroup, host: Host = Depends(get_host)):
    """Enable or disable a group without touching its progression."""
    return host.engine.set_group_enabled(group_id, body.enabled).model_dump()


@router.delete("/groups/{group_id}")
async def delete_group(group_id: str, host: Host = Depends(get_host)):
    """Delete a group together with its cursor and cooldown state."""
    if not host.engine.delete_group(group_id):
        raise HTTPException(404, "Conversation group not found")
    return {"ok": True}


@router.get("/entities/{entity_id}/groups")
async def entity_groups(entity_id: str, host: Host = Depends(get_host)):
    """Groups the entity is a member of."""
    return [g.model_dump() for g in host.engine.groups_for_entity(entity_id)]
