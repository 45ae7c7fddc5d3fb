"""Doorlink application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from doorlink.access.sweeper import ExpirySweeper
from doorlink.config import settings
from doorlink.coordinator import DeviceAccessCoordinator
from doorlink.database import init_db
from doorlink.errors import DoorlinkError
from doorlink.relay.registry import SessionRegistry

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    # Import models to register them with SQLModel before init_db()
    import doorlink.access.models  # noqa: F401

    init_db()
    logger.info("Database initialized")

    registry = SessionRegistry(send_timeout=settings.send_timeout)
    app.state.registry = registry
    app.state.coordinator = DeviceAccessCoordinator(
        registry, invite_ttl_seconds=settings.invite_ttl_seconds
    )

    sweeper = ExpirySweeper(
        interval=settings.sweep_interval,
        pending_ttl_hours=settings.pending_request_ttl_hours,
    )
    await sweeper.start()
    app.state.sweeper = sweeper

    yield

    await sweeper.stop()
    logger.info("Expiry sweeper stopped")


app = FastAPI(
    title="Doorlink",
    description="Shared access and live command relay for remote-controlled doors",
    version="0.1.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response


app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(DoorlinkError)
async def doorlink_error_handler(request: Request, exc: DoorlinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Register routers
from doorlink.api.routes import router as api_router  # noqa: E402
from doorlink.relay.websocket import router as ws_router  # noqa: E402

app.include_router(api_router)
app.include_router(ws_router)


@app.get("/health")
def health(request: Request) -> dict[str, str | int]:
    return {"status": "ok", "devices_online": request.app.state.registry.online_count()}


def main() -> None:
    import uvicorn

    logger.info("Starting Doorlink on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
