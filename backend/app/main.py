"""Chatroom Backend Application.

This is the main entry point for the chatroom backend service: a real-time
group chat server with password-protected rooms, private messages, typing
indicators and per-connection rate limiting.

Modules:
    - chat: WebSocket session coordinator, rooms, presence and conversations
    - auth: JWT session tokens and the login/signup endpoints
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.chat.coordinator import get_coordinator
from app.chat.router import router as chat_router
from app.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request transport chatter; it drowns out room activity.
for _noisy in (
    "uvicorn.access",
    "websockets",
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
    # `logging.level: "debug"` in chatroom.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    coordinator = get_coordinator()
    coordinator.start_sweeper()
    logger.info(
        f"Chat server ready on http://{config.server.host}:{config.server.port} "
        f"(rate limit {config.rate_limit.max_events} events / "
        f"{config.rate_limit.window_seconds:.0f}s)"
    )

    yield  # Application runs here

    # Shutdown
    await coordinator.shutdown()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Chatroom API",
    description="Real-time group chat: rooms, private messages and presence",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(auth_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
