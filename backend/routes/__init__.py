"""FastAPI API endpoints under /api.

Endpoint groups: health + settings + pause + monitor control, scene
(entities, corpora, text log), auras (one per entity), conversation groups,
and observation (durable mirror + WebSocket stream of floating text).
Every route reaches the single TriggerEngine through the Host stored on
app.state.
"""

from fastapi import APIRouter

from .auras import router as auras_router
from .groups import router as groups_router
from .observe import router as observe_router
from .scene import router as scene_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(scene_router)
router.include_router(auras_router)
router.include_router(groups_router)
router.include_router(observe_router)
