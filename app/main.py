"""Kairos agents -- FastAPI application entry point."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers.agents import router as agents_router
from app.api.routers.health import router as health_router
from app.clients import llm_client
from app.config import VERSION, settings
from app.middleware import RequestIDMiddleware
from app.middleware.access_log import AccessLogMiddleware
from app.middleware.exception_handler import setup_exception_handlers
from app.repos import draft_repo
from app.repos.db import close_pool, get_pool

logger = logging.getLogger(__name__)

# Expired drafts are also caught lazily on confirm/apply; the sweep only
# keeps the table's status column honest for listings.
_EXPIRY_SWEEP_SECONDS = 300


class _ColorFormatter(logging.Formatter):
    """ANSI-colored log formatter for terminal output."""

    _COLORS = {
        logging.DEBUG:    "\033[36m",     # cyan
        logging.INFO:     "\033[32m",     # green
        logging.WARNING:  "\033[33m",     # yellow
        logging.ERROR:    "\033[31m",     # red
        logging.CRITICAL: "\033[1;31m",   # bold red
    }
    _RESET = "\033[0m"
    _DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        return (
            f"{self._DIM}{ts}{self._RESET} "
            f"{color}{record.levelname:<8s}{self._RESET} "
            f"{self._DIM}[{name:>20s}]{self._RESET} "
            f"{color}{msg}{self._RESET}"
        )


class _PlainFormatter(logging.Formatter):
    """Plain-text formatter for file logs (no ANSI codes)."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        name = record.name.split(".")[-1][:20]
        return f"{ts} {record.levelname:<8s} [{name:>20s}] {record.getMessage()}"


def configure_logging() -> None:
    """Colored stderr logging plus an optional rotating file (``LOG_FILE``)."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_ColorFormatter())
    handlers: list[logging.Handler] = [handler]

    if settings.LOG_FILE:
        from logging.handlers import RotatingFileHandler
        from pathlib import Path

        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10 MB per file
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(_PlainFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # Quiet noisy loggers -- uvicorn access logs duplicate kairos.access
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def _expire_drafts_periodically() -> None:
    while True:
        try:
            expired = await draft_repo.expire_stale_drafts()
            if expired:
                logger.info("Expired %d stale draft(s).", expired)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.warning("Draft expiry sweep failed (%s); will retry.", exc)
        except Exception:
            logger.exception("Draft expiry sweep crashed; will retry.")
        await asyncio.sleep(_EXPIRY_SWEEP_SECONDS)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    configure_logging()

    sweeper: asyncio.Task | None = None
    if "pytest" not in sys.modules:
        try:
            await get_pool()
            logger.info("Database pool initialised.")
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as exc:
            # First request will reconnect; don't crash startup.
            logger.warning("DB unavailable at startup (%s) -- will retry on first request.", exc)
        sweeper = asyncio.create_task(_expire_drafts_periodically())
    yield
    # Shutdown: stop the sweeper before closing the pool it uses.
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await llm_client.close_client()
    await close_pool()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Kairos Agents",
        version=VERSION,
        description="Draft → Confirm → Apply orchestration for LLM-proposed workspace changes",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Structured JSON errors with request_id tracing -- see
    # app/middleware/exception_handler.py.
    setup_exception_handlers(application)

    # Added first = innermost: the access log sees the request id.
    application.add_middleware(AccessLogMiddleware)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    application.include_router(health_router)
    application.include_router(agents_router)
    return application


app = create_app()
