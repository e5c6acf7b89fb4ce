"""
Liveness and readiness probes.

Ready means: the database answers, the schema is in place and an active
default plan exists (without one every resolution fallback and every
expiry downgrade fails).
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from webaudit.core.database import check_connection, get_engine, metadata
from webaudit.core.errors import AppError
from webaudit.features.plans.service import resolve_starter_plan

logger = logging.getLogger("webaudit.health")

root_router = APIRouter(tags=["health"])


def _not_ready(detail: str) -> JSONResponse:
    logger.warning(f"[readyz] {detail}", extra={"status": "not_ready"})
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    if not check_connection():
        return _not_ready("database unreachable")

    inspector = inspect(get_engine())
    missing = [name for name in metadata.tables if not inspector.has_table(name)]
    if missing:
        return _not_ready(f"missing tables: {', '.join(sorted(missing))}")

    try:
        starter = resolve_starter_plan()
    except AppError as e:
        return _not_ready(e.message)

    return {"status": "ok", "default_plan": starter.plan_id, "default_plan_type": starter.plan_type.value}
