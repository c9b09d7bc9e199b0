import logging
import time
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()
logger = logging.getLogger(__name__)

_HEAD_CACHE: dict[str, Any] = {"timestamp": 0.0, "heads": None, "skip_reason": None}
_HEAD_CACHE_TTL_SECONDS = 60


def _load_expected_heads() -> tuple[list[str] | None, str | None]:
    """Return the Alembic heads shipped with the code, cached briefly.

    When the migration files are not packaged, heads is None and the skip
    reason explains why the migration check was not run.
    """
    now = time.monotonic()
    if now - _HEAD_CACHE["timestamp"] < _HEAD_CACHE_TTL_SECONDS:
        return _HEAD_CACHE["heads"], _HEAD_CACHE["skip_reason"]

    repo_root = Path(__file__).resolve().parents[2]
    alembic_ini = repo_root / "alembic.ini"
    script_location = repo_root / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        logger.warning("migrations_check_skipped_no_alembic_files")
        _HEAD_CACHE.update({"timestamp": now, "heads": None, "skip_reason": "skipped_no_alembic_files"})
        return None, "skipped_no_alembic_files"

    try:
        cfg = Config(str(alembic_ini))
        cfg.set_main_option("script_location", str(script_location))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except Exception as exc:  # noqa: BLE001
        logger.warning("migrations_check_error_loading_alembic", extra={"extra": {"error": type(exc).__name__}})
        _HEAD_CACHE.update({"timestamp": now, "heads": [], "skip_reason": "error_loading_alembic"})
        return [], "error_loading_alembic"
    _HEAD_CACHE.update({"timestamp": now, "heads": heads, "skip_reason": None})
    return heads, None


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def _get_current_revision(session) -> str | None:
    try:
        result = await session.execute(text("SELECT version_num FROM alembic_version"))
    except SQLAlchemyError:
        return None
    row = result.first()
    return row[0] if row else None


async def _database_status(request: Request) -> dict[str, Any]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    expected_heads, skip_reason = _load_expected_heads()
    expected_heads = expected_heads or []
    if session_factory is None:
        return {
            "ok": False,
            "message": "database session factory unavailable",
            "migrations_current": False,
            "current_version": None,
            "expected_heads": expected_heads,
        }

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            current_version = await _get_current_revision(session)
    except Exception as exc:  # noqa: BLE001
        logger.debug("database_check_failed", exc_info=exc)
        return {
            "ok": False,
            "message": "database check failed",
            "migrations_current": False,
            "current_version": None,
            "expected_heads": expected_heads,
            "error": exc.__class__.__name__,
        }

    if skip_reason == "skipped_no_alembic_files":
        migrations_current = True
    elif not expected_heads:
        migrations_current = False
    else:
        migrations_current = current_version in expected_heads

    return {
        "ok": True,
        "message": "database reachable",
        "migrations_current": migrations_current,
        "current_version": current_version,
        "expected_heads": expected_heads,
        "migrations_check": skip_reason or "ok",
    }


def _lock_status(request: Request) -> dict[str, Any]:
    locker = getattr(request.app.state, "booking_locker", None)
    if locker is None:
        return {"ok": False, "backend": None}
    active = getattr(locker, "active_count", None)
    return {
        "ok": True,
        "backend": type(locker).__name__,
        "active_bookings": active() if callable(active) else None,
    }


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    database = await _database_status(request)
    locks = _lock_status(request)
    overall_ok = bool(database.get("ok")) and bool(database.get("migrations_current")) and locks["ok"]
    payload = {
        "status": "ok" if overall_ok else "unhealthy",
        "database": database,
        "booking_locks": locks,
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=payload)
