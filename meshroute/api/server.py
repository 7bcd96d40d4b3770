"""
FastAPI server for meshroute.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import Config, get_config
from ..cost.publisher import CostPublisher, HttpCostSink
from ..router.semantic import SemanticRouter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the cost publisher with the app, then close its sink."""
    publisher: Optional[CostPublisher] = app.state.publisher
    sink: Optional[HttpCostSink] = app.state.sink
    if publisher is not None:
        await publisher.start()

    yield

    if publisher is not None:
        await publisher.close()
    if sink is not None:
        await sink.close()


def create_app(
    router: SemanticRouter,
    publisher: Optional[CostPublisher] = None,
    config: Optional[Config] = None,
    sink: Optional[HttpCostSink] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        router: Router serving /api/route
        publisher: Optional cost publisher run for the app's lifetime
        config: Configuration (defaults to the global config)
        sink: Optional HTTP sink owned by the app, closed on shutdown
    """
    from .routes import router as api_router

    config = config or get_config()

    app = FastAPI(
        title="meshroute",
        description="Cost-aware semantic routing for device meshes",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.router = router
    app.state.publisher = publisher
    app.state.sink = sink

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    # Health check
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/")
    async def root():
        return {"name": "meshroute", "version": __version__}

    return app


def run_server(
    router: SemanticRouter,
    publisher: Optional[CostPublisher] = None,
    host: str = "0.0.0.0",
    port: int = 11460,
    config: Optional[Config] = None,
    sink: Optional[HttpCostSink] = None,
):
    """Run the server with uvicorn."""
    app = create_app(router, publisher=publisher, config=config, sink=sink)
    logger.info(f"Serving meshroute on {host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )
