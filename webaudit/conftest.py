# webaudit/conftest.py
import os

# Must be set before webaudit.core.config is imported anywhere
os.environ.setdefault("ENV", "test")
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ["SKIP_ENV_VALIDATION"] = "1"
os.environ.setdefault("ADMIN_KEY", "test-admin-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")

from datetime import datetime, timezone

import pytest
from sqlalchemy import insert

from webaudit.core.database import (
    dispose_engine,
    get_db_session,
    init_engine,
    plans,
    reset_database,
    users,
)
from webaudit.features.entitlements.cache import feature_cache

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def _sqlite_engine():
    """Point the engine at a shared in-memory SQLite database."""
    dispose_engine()
    init_engine("sqlite://")
    yield
    dispose_engine()


@pytest.fixture(autouse=True)
def _reset_db():
    """Fresh schema and empty decision cache for every test."""
    reset_database()
    feature_cache.clear()
    yield
    feature_cache.clear()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_plan():
    """Insert a plan row directly, bypassing admin validation."""

    def _make(plan_id, plan_type, features=None, max_projects=1, is_active=True, name=None, created_at=NOW):
        with get_db_session() as session:
            session.execute(
                insert(plans).values(
                    plan_id=plan_id,
                    name=name or plan_type,
                    plan_type=plan_type,
                    description="",
                    price=0,
                    currency="INR",
                    billing_cycle=None,
                    can_use_features=features,
                    max_projects=max_projects,
                    is_active=is_active,
                    sort_order=0,
                    created_at=created_at,
                    updated_at=created_at,
                )
            )
        return plan_id

    return _make


@pytest.fixture
def make_user():
    """Insert a user row directly."""

    def _make(user_id, plan_type="Starter", plan_id=None, expires_at=None, email=None, billing_cycle=None, max_projects=None):
        with get_db_session() as session:
            session.execute(
                insert(users).values(
                    user_id=user_id,
                    email=email or f"{user_id}@example.com",
                    plan_type=plan_type,
                    plan_id=plan_id,
                    plan_expires_at=expires_at,
                    billing_cycle=billing_cycle,
                    max_projects=max_projects,
                    can_use_features=None,
                    blocked=False,
                    created_at=NOW,
                    updated_at=NOW,
                )
            )
        return user_id

    return _make
