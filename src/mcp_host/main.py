"""Main entry point for the MCP Host application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI

from mcp_host.api.routes import router
from mcp_host.chat.orchestrator import ConversationOrchestrator
from mcp_host.core.broadcaster import UpdateBroadcaster
from mcp_host.core.config import Settings, get_settings
from mcp_host.core.decisions import DecisionRegistry
from mcp_host.core.logging import setup_logging
from mcp_host.core.session import HostSession
from mcp_host.core.tasks import TaskRegistry
from mcp_host.mcp.client import MCPHostClient
from mcp_host.mcp.sampling import SamplingHandler

logger = logging.getLogger(__name__)


def build_session(settings: Settings, openai_client: Optional[AsyncOpenAI] = None) -> HostSession:
    """Wire the host core together from settings."""
    if openai_client is None:
        if not settings.OPENAI_API_KEY:
            raise RuntimeError("Missing OPENAI_API_KEY: set it in the environment or config.yaml")
        openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)

    broadcaster = UpdateBroadcaster()
    decisions = DecisionRegistry()
    tasks = TaskRegistry()

    sampling = SamplingHandler(
        openai_client,
        settings.sampling_model,
        decisions,
        broadcaster,
        timeout=settings.SAMPLING_TIMEOUT,
    )
    client = MCPHostClient(
        settings.MCP_SERVER_URL,
        broadcaster,
        tasks=tasks,
        sampling_callback=sampling,
        retry_delay=settings.CONNECT_RETRY_DELAY,
        ping_interval=settings.PING_INTERVAL,
        initialize_timeout=settings.INITIALIZE_TIMEOUT,
    )
    orchestrator = ConversationOrchestrator(client, openai_client, max_iterations=settings.MAX_TOOL_ITERATIONS)

    return HostSession(
        client=client,
        orchestrator=orchestrator,
        openai=openai_client,
        model=settings.MODEL,
        sampling_model=settings.sampling_model,
        broadcaster=broadcaster,
        decisions=decisions,
        tasks=tasks,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management
    Starts the MCP client in the background and stops it on shutdown
    """
    settings: Settings = app.state.settings
    logger.info("Starting MCP Host...")

    if getattr(app.state, "session", None) is None:
        app.state.session = build_session(settings)
    session: HostSession = app.state.session

    await session.client.start()
    logger.info(
        "Host configuration",
        extra={
            "mcp_server_url": settings.MCP_SERVER_URL,
            "model": session.model,
            "sampling_model": session.sampling_model,
            "log_level": settings.LOG_LEVEL,
        }
    )

    yield

    logger.info("Shutting down MCP Host...")
    await session.client.stop()


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Custom validation error handler"""
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request validation failed",
            "errors": exc.errors()
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred"
        }
    )


def create_app(settings: Optional[Settings] = None, session: Optional[HostSession] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="MCP Host",
        description="Host mediating between a user, an OpenAI model and an MCP server",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)

    return app


# Create app instance for uvicorn to find
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting MCP Host...")

    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        server_header=False,
        date_header=True,
    )


if __name__ == "__main__":
    main()
