"""Observation endpoints: the durable mirror and a live WebSocket stream.

A client that (re)connects to /api/observe first receives the mirrored
envelope (the latest line), then every new envelope as it is broadcast. Each
utterance_id is sent at most once per connection.
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from backend.host import Host
from npc_chatter.dispatch import MIRROR_KEY, ObserverView
from npc_chatter.models import BroadcastEnvelope

from .deps import get_host, get_ws_host

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/mirror")
async def get_mirror(host: Host = Depends(get_host)):
    """The last broadcast envelope, or null if nothing has been said yet."""
    return host.storage.get_world(MIRROR_KEY)


@router.websocket("/observe")
async def observe(websocket: WebSocket, observer_id: str = "", host: Host = Depends(get_ws_host)):
    """Stream floating-text envelopes to one observer."""
    await websocket.accept()

    async def render(envelope: BroadcastEnvelope) -> None:
        await websocket.send_json(envelope.model_dump())

    view = ObserverView(
        host.channel, host.storage, render,
        observer_id=observer_id or f"ws-{id(websocket):x}",
    )
    view.attach()
    try:
        await view.sync_from_mirror()
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Observer %s disconnected", observer_id)
    finally:
        view.detach()
