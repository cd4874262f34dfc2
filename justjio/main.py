"""JustJio Realtime Server.

This is the main entry point for the JustJio chat service. Users create
rooms (events), invite friends and chat in real time: messages are stored
through REST and pushed to every attendee over a single streaming
connection per client.

Modules:
    - rooms: Rooms, attendees and paginated message history (REST)
    - realtime: Streaming endpoint and per-user push hub
    - auth: Bearer token verification
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from justjio import __version__
from justjio.config import get_config
from justjio.realtime.router import router as realtime_router
from justjio.responses import STATUS_ERROR, ApiException, ApiResponse, api_exception_handler
from justjio.rooms.router import router as rooms_router
from justjio.rooms.service import room_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every request, websockets every frame
for _noisy in (
    "httpx",
    "httpcore",
    "websockets",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in justjio.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    room_service.page_size = config.chat.page_size
    logger.info(
        f"JustJio server starting on http://{config.server.host}:{config.server.port} "
        f"(message page size {room_service.page_size})"
    )

    yield  # Application runs here

    logger.info("Application shutdown complete")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as a 400 error envelope."""
    logger.info(f"[API] {request.method} {request.url.path} -> 400: {exc.errors()}")
    return JSONResponse(
        ApiResponse(status=STATUS_ERROR, message="Review your input", data=str(exc)).model_dump(),
        status_code=400,
    )


# Create FastAPI application with metadata
app = FastAPI(
    title="JustJio API",
    description="Room chat with realtime push for JustJio events",
    version=__version__,
    lifespan=lifespan,
)

app.add_exception_handler(ApiException, api_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Register all routers
app.include_router(rooms_router)
app.include_router(realtime_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
