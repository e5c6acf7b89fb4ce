"""
webaudit/core/database.py

Engine, sessions and table definitions.

TEST_DATABASE_URL (read at engine creation) wins over DATABASE_URL so test
runs never touch a real database. SQLite URLs get a single shared
connection, which keeps `sqlite://` in-memory databases alive across
sessions; everything else gets a pre-pinged QueuePool.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from webaudit.core.config import settings

logger = logging.getLogger("webaudit.database")

metadata = MetaData()

POOL_OPTIONS = {
    "poolclass": QueuePool,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)create the process-wide engine and session factory."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in environment or .env file.")

    if url.startswith("sqlite"):
        _engine = create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        _engine = create_engine(url, **POOL_OPTIONS)

    _session_factory = sessionmaker(bind=_engine, autoflush=False)
    logger.info("[database] engine ready", extra={"event_type": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def dispose_engine() -> None:
    """Drop the cached engine so the next call rebuilds it."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_db_session() -> Iterator[Session]:
    """One unit of work: commit on clean exit, roll back on any exception."""
    if _session_factory is None:
        init_engine()
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    metadata.drop_all(bind=get_engine())


def reset_database() -> None:
    """Drop and recreate every table. Tests only."""
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, ValueError) as e:
        logger.warning(f"[database] connection check failed: {e}")
        return False
    return True


# Users table. Plan columns are denormalized copies of the assigned plan.
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=False, server_default=''),
    Column('plan_type', String(20), nullable=False, server_default='Starter'),
    Column('plan_id', String(50), ForeignKey('plans.plan_id'), nullable=True),
    Column('plan_expires_at', DateTime(timezone=True), nullable=True),
    Column('billing_cycle', String(20), nullable=True),
    Column('max_projects', Integer, nullable=True),
    Column('can_use_features', JSON, nullable=True),
    Column('blocked', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Expiry scan: plan_type != Starter AND plan_expires_at < now
    Index('idx_app_users_plan_expiry', 'plan_type', 'plan_expires_at'),
)

# Plans table. plan_type is not unique: inactive rows may share a type.
plans = Table(
    'plans',
    metadata,
    Column('plan_id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('plan_type', String(20), nullable=False),
    Column('description', Text, nullable=True),
    Column('price', Numeric(12, 2), nullable=False, server_default='0'),
    Column('currency', String(3), nullable=False, server_default='INR'),
    Column('billing_cycle', String(20), nullable=True),
    Column('can_use_features', JSON, nullable=True),
    Column('max_projects', Integer, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('sort_order', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_plans_type_active', 'plan_type', 'is_active'),
)

# Payments ledger (append-only)
payments = Table(
    'payments',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('plan_id', String(50), ForeignKey('plans.plan_id'), nullable=True),
    Column('transaction_ref', String(200), nullable=False, unique=True),
    Column('amount', Numeric(12, 2), nullable=False),
    Column('currency', String(3), nullable=False),
    Column('plan_name', String(200), nullable=True),
    Column('plan_type', String(20), nullable=True),
    Column('billing_cycle', String(20), nullable=True),
    Column('max_projects', Integer, nullable=True),
    Column('can_use_features', JSON, nullable=True),
    Column('payment_status', String(30), nullable=False),
    Column('payment_method', String(50), nullable=False),
    Column('payment_date', DateTime(timezone=True), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('notes', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_payments_user_date', 'user_id', 'payment_date'),
)

# Audit projects (counted for project quota only)
audit_projects = Table(
    'audit_projects',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('site_url', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Scheduled job runs
job_runs = Table(
    'job_runs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('job_name', String(100), nullable=False, index=True),
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('finished_at', DateTime(timezone=True), nullable=True),
    Column('status', String(30), nullable=False),
    Column('stats_json', Text, nullable=True),
)
