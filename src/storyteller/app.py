"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .config import Settings, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .openrouter import OpenRouterClient
from .routers.story import router as story_router
from .services.tts_service import TTSService

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging from LOG_LEVEL, LOG_DIR and LOG_RETENTION_HOURS."""
    # Load .env file first to ensure LOG_DIR is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)

    handlers: list[logging.Handler] = []

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        try:
            retention_hours = int(os.getenv("LOG_RETENTION_HOURS", "48"))
        except ValueError:
            retention_hours = 48
        cleanup_old_logs(log_dir, retention_hours)
        file_handler = DateStampedFileHandler(log_dir)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("storyteller").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Quiet noisy transport libraries unless debugging
    if log_level > logging.DEBUG:
        for name in ("httpx", "httpcore", "hpack", "grpc"):
            logging.getLogger(name).setLevel(logging.WARNING)


def create_app(settings: Settings | None = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = settings or get_settings()
    tts_service = TTSService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not settings.story_generation_enabled:
            logging.warning(
                "OPENROUTER_API_KEY not set. Story generation disabled, echo mode only."
            )
        try:
            yield
        finally:
            await OpenRouterClient.aclose_shared()
            try:
                await tts_service.close()
            except Exception as exc:
                logging.warning("Error closing TTS client: %s", exc)

    app = FastAPI(
        title="Storyteller Backend",
        version="0.1.0",
        description="Streams generated stories as text, speech and an illustration.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.tts_service = tts_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(story_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | bool]:
        return {
            "status": "ok",
            "story_model": settings.story_model,
            "story_generation": settings.story_generation_enabled,
        }

    # Registered last so it never shadows /ws or /health
    if settings.frontend_dir is not None and settings.frontend_dir.is_dir():
        app.mount(
            "/",
            StaticFiles(directory=settings.frontend_dir, html=True),
            name="frontend",
        )

    return app


__all__ = ["create_app"]
