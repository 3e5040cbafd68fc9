"""Relay Backend Application.

This is the main entry point for the Relay chat backend. Relay is a small
realtime chat service: users join under their username, exchange direct or
global messages over a WebSocket, and load conversation history.

Modules:
    - chat: WebSocket transport, live connection registry, message routing
    - storage: DuckDB-backed message store
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.hub import ChatHub
from app.chat.router import router as chat_router
from app.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every HTTP request; httpx/httpcore log every
# connection the test client opens.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = ChatHub.from_config(config)
    app.state.chat_hub = hub
    logger.info(
        f"Chat hub ready. Server running on "
        f"http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    hub.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Relay API",
    description="Realtime chat backend: direct and global messaging over WebSocket",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
