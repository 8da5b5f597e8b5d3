"""Liveness and database readiness endpoints."""

import logging
import os

from fastapi import APIRouter, Depends
from sqlalchemy import func, inspect, select, text
from sqlalchemy.engine import Engine

from affiliations.services._types import DbInfoDict
from app.dependencies import get_api_key
from config import get_settings
from db.connection import get_engine
from db.models import Base, ObservationTypes, Products

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def get_db_info(engine: Engine | None = None) -> DbInfoDict:
    """Report schema and catalog readiness. Errors end up in the ``error`` key."""
    db = get_settings().database
    info = DbInfoDict(
        backend_type="postgres" if db.uses_postgres else "sqlite",
        database_url_or_path=db.redacted_url,
        tables_present=[],
        tables_missing=sorted(Base.metadata.tables),
        schema_initialized=False,
        pid=os.getpid(),
    )
    try:
        engine = engine or get_engine()
        present: set[str] = set(inspect(engine).get_table_names())
        missing: list[str] = sorted(set(Base.metadata.tables) - present)
        info.update(
            tables_present=sorted(present),
            tables_missing=missing,
            schema_initialized=not missing,
        )
        if missing:
            return info

        with engine.connect() as conn:
            info["products"] = conn.scalar(select(func.count()).select_from(Products)) or 0
            info["observation_types"] = (
                conn.scalar(select(func.count()).select_from(ObservationTypes)) or 0
            )
            if "_migrations" in present:
                info["migrations_applied"] = list(
                    conn.scalars(text("SELECT filename FROM _migrations ORDER BY filename"))
                )
    except Exception as e:
        logger.warning("Database readiness check failed: %s", e)
        info["error"] = str(e)
    return info


@router.get("")
def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/db", dependencies=[Depends(get_api_key)])
def readiness() -> DbInfoDict:
    return get_db_info()
