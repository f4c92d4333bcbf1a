"""
FastAPI application for the layer relay.

This application provides:
1. A liveness probe ({VIRTUAL_PATH}/)
2. The SSE subscription endpoint ({VIRTUAL_PATH}/subscribe?layer=<name>)
3. Per-layer health of the live-update feeds ({VIRTUAL_PATH}/health/layers)

Browsers' EventSource does not accept wildcard CORS origins, so requests
carrying an Origin outside ALLOWED_ORIGINS are turned away before routing.

Run with:
    uv run uvicorn api.main:app --port 3003
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from fanout.relay import Relay
from shared.config import RelaySettings, get_settings
from shared.errors import OriginRejected, UnknownLayer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("api")

APP_NAME = "sse-relay"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class OriginAllowListMiddleware:
    """Reject any request whose Origin header is not in the allow-list."""

    def __init__(self, app: ASGIApp, allowed_origins: list[str]):
        self.app = app
        self.allowed_origins = set(allowed_origins)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            origin = Request(scope).headers.get("origin")
            if origin is not None and origin not in self.allowed_origins:
                logger.warning(str(OriginRejected(origin)))
                response = PlainTextResponse("Not allowed by CORS", status_code=403)
                await response(scope, receive, send)
                return
        await self.app(scope, receive, send)


def get_relay(request: Request) -> Relay:
    return request.app.state.relay


def create_app(settings: Optional[RelaySettings] = None, relay: Optional[Relay] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Process settings (defaults to the environment)
        relay: A prebuilt relay, e.g. with a fake store (defaults to one built
            from settings, which reads the layers file)
    """
    settings = settings or get_settings()
    relay = relay or Relay.from_settings(settings)
    logging.getLogger().setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown."""
        logger.info(f"Starting {APP_NAME} on port {settings.port}, virtual path '{settings.virtual_path}'")
        await relay.start()
        yield
        logger.info("Shutting down")
        await relay.stop()

    app = FastAPI(
        title="SSE Layer Relay",
        description="Streams PostgreSQL change notifications to browsers, per layer, over Server-Sent Events.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.relay = relay
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(OriginAllowListMiddleware, allowed_origins=settings.allowed_origins)

    router = APIRouter(prefix=settings.virtual_path)

    # =========================================================================
    # Health
    # =========================================================================

    @router.get("/", response_class=PlainTextResponse, tags=["Health"])
    def alive():
        """Liveness probe."""
        return f"{APP_NAME} is alive!"

    @router.get("/health/layers", tags=["Health"])
    def layer_health(relay: Relay = Depends(get_relay)):
        """Whether live updates currently flow for each layer."""
        layers = relay.health()
        degraded = [name for name, report in layers.items() if not report["live"]]
        return {
            "status": "degraded" if degraded else "healthy",
            "degraded_layers": degraded,
            "layers": layers,
        }

    # =========================================================================
    # Subscription
    # =========================================================================

    @router.get("/subscribe", tags=["Subscription"])
    async def subscribe(layer: Optional[str] = None, relay: Relay = Depends(get_relay)):
        """
        Open an SSE stream for a layer.

        The stream starts with one `update` event per feature currently in the
        layer's table, followed by live `update` and `delete` events.
        """
        session = relay.new_session()
        session.open(layer)
        return StreamingResponse(session.stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    app.include_router(router)

    # =========================================================================
    # Error handlers
    # =========================================================================

    @app.exception_handler(UnknownLayer)
    async def unknown_layer_handler(request: Request, exc: UnknownLayer):
        # EventSource ignores status codes, but the 400 helps when debugging
        return PlainTextResponse("Invalid layer name", status_code=400)

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error_type": "internal_error", "error_message": str(exc)},
        )

    return app


app = create_app()
