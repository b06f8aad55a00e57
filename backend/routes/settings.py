"""Health check, settings, global pause, and monitor control endpoints."""

from fastapi import APIRouter, Depends

from backend.host import Host

from .deps import get_host
from .models import PauseBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(host: Host = Depends(get_host)):
    """Get world settings (ranges, intervals, pause, presentation toggles)."""
    return host.engine.settings()


@router.patch("/settings")
async def update_settings(body: dict, host: Host = Depends(get_host)):
    """Update world settings (partial merge)."""
    return host.engine.update_settings(body)


@router.put("/pause")
async def set_pause(body: PauseBody, host: Host = Depends(get_host)):
    """Pause or resume every aura and conversation group."""
    settings = host.engine.set_global_pause(body.paused)
    return {"paused": settings.global_pause}


@router.get("/monitor")
async def monitor_status(host: Host = Depends(get_host)):
    """Whether the proximity monitor is running."""
    return {
        "running": host.engine.running,
        "auras": len(host.engine.list_auras()),
        "groups": len(host.engine.list_groups()),
    }


@router.post("/monitor/start")
async def start_monitor(host: Host = Depends(get_host)):
    """Start the proximity monitor (reloads auras from the scene)."""
    host.engine.start_monitoring()
    return {"running": host.engine.running}


@router.post("/monitor/stop")
async def stop_monitor(host: Host = Depends(get_host)):
    """Stop the proximity monitor. Registries are kept."""
    await host.engine.stop_monitoring()
    return {"running": host.engine.running}
