"""
Web Audit Pro entitlements API.

Run locally with `python -m webaudit.main` or
`uvicorn webaudit.main:app --reload`.
"""
import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# .env must be loaded before webaudit.core.config builds its Settings
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from webaudit.api import cron, features, health, payments, plan_expiry, plans
from webaudit.core.config import settings, validate_config
from webaudit.core.database import create_all_tables
from webaudit.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from webaudit.core.logging import configure_logging
from webaudit.core.middleware.request_id import RequestIdMiddleware
from webaudit.core.validation import validate_env

logger = logging.getLogger("webaudit")

ROUTERS = (
    plans.router,
    features.router,
    plan_expiry.router,
    cron.router,
    payments.router,
    health.root_router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.startup_time = time.time()
    if settings.ENV.lower() != "production":
        # production schema is migrated out of band
        create_all_tables()
    logger.info("[startup] entitlements service ready", extra={"status": settings.ENV})
    try:
        yield
    finally:
        logger.info("[shutdown] entitlements service stopped")


def create_app() -> FastAPI:
    configure_logging(settings.ENV)
    validate_env()
    validate_config()

    application = FastAPI(title="Web Audit Pro - Entitlements", lifespan=lifespan)
    application.add_middleware(RequestIdMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(AppError, app_error_handler)
    application.add_exception_handler(HTTPException, http_error_handler)
    application.add_exception_handler(Exception, unhandled_exception_handler)

    for router in ROUTERS:
        application.include_router(router)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("webaudit.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
