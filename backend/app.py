"""FastAPI application factory.

Run with: uvicorn backend.app:create_app --factory
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.host import Host
from backend.routes import router
from npc_chatter.errors import (
    ConfigValidationError,
    PersistenceError,
    UnknownAuraError,
    UnknownGroupError,
)

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def create_app(data_dir: Path | None = None, autostart: bool | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    host = Host(resolved)
    if autostart is None:
        autostart = _env_flag("AUTOSTART_MONITOR", "true")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if autostart:
            host.engine.start_monitoring()
        yield
        await host.engine.stop_monitoring()
        await host.engine.drain()
        await host.channel.flush()
        host.relay.detach()

    app = FastAPI(title="NPC Chatter", lifespan=lifespan)
    app.state.host = host
    app.include_router(router, prefix="/api")

    @app.exception_handler(ConfigValidationError)
    async def invalid_config(request: Request, exc: ConfigValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    async def not_found(request: Request, exc: Exception):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    app.add_exception_handler(UnknownAuraError, not_found)
    app.add_exception_handler(UnknownGroupError, not_found)

    @app.exception_handler(PersistenceError)
    async def persistence_failed(request: Request, exc: PersistenceError):
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    return app
