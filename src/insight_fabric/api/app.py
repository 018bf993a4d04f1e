from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..graph.service import GraphService
from .errors import register_error_handlers
from .routes import build_graph_router


def create_app(service: GraphService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        try:
            yield
        finally:
            service.close()

    app = FastAPI(title="Insight Fabric - Graph Service", version=__version__, lifespan=lifespan)
    app.state.service = service
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"ok": True, "host": os.uname().nodename, "version": __version__}

    app.include_router(build_graph_router(service))
    return app
