"""
webaudit/features/plans/service.py

Plan store and entitlement resolution.

Handles:
- Plan seeding (Starter, Growth, Scale)
- Plan administration (create, update, list)
- User plan assignment
- Entitlement resolution with an explicit fallback chain:
  plan_id -> plan_type -> default (Starter) plan
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update, func
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from webaudit.core.config import settings
from webaudit.core.database import get_db_session, plans, users, audit_projects
from webaudit.core.errors import (
    DatabaseUnavailableError,
    NoPlanAvailableError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
)
from webaudit.features.catalog.features import get_core_features, unknown_feature_ids, FEATURES
from webaudit.models.plan import BillingCycle, Plan, PlanType, UNLIMITED_PROJECTS
from webaudit.models.user import User


logger = logging.getLogger("webaudit.plans")

DEFAULT_MAX_PROJECTS = 1

_CORE_FEATURE_IDS = [f.id for f in get_core_features()]

# Default plan configurations
DEFAULT_PLANS: Dict[str, Dict[str, Any]] = {
    "starter": {
        "name": "Starter",
        "plan_type": PlanType.STARTER,
        "description": "Single-page audits for individuals",
        "price": Decimal("0"),
        "billing_cycle": None,
        "max_projects": 1,
        "can_use_features": _CORE_FEATURE_IDS,
        "sort_order": 0,
    },
    "growth": {
        "name": "Growth",
        "plan_type": PlanType.GROWTH,
        "description": "Full-site crawls and SEO insights for growing teams",
        "price": Decimal("999"),
        "billing_cycle": BillingCycle.MONTHLY,
        "max_projects": 10,
        "can_use_features": _CORE_FEATURE_IDS + [
            "full_site_crawl",
            "seo_structure",
            "social_share_preview",
            "google_tags_audit",
            "mobile_responsiveness",
        ],
        "sort_order": 1,
    },
    "scale": {
        "name": "Scale",
        "plan_type": PlanType.SCALE,
        "description": "Every audit, unlimited projects",
        "price": Decimal("2999"),
        "billing_cycle": BillingCycle.MONTHLY,
        "max_projects": UNLIMITED_PROJECTS,
        "can_use_features": [f.id for f in FEATURES],
        "sort_order": 2,
    },
}

# Columns an administrator may change through update_plan()
_UPDATABLE_PLAN_FIELDS = {
    "name",
    "plan_type",
    "description",
    "price",
    "currency",
    "billing_cycle",
    "can_use_features",
    "max_projects",
    "is_active",
    "sort_order",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@contextmanager
def _translate_db_errors(operation: str):
    try:
        yield
    except OperationalError as e:
        logger.error(
            "[plans] database unavailable",
            extra={"event_type": operation, "error_code": "database_unavailable"},
        )
        raise DatabaseUnavailableError(f"Database unavailable during {operation}") from e


def _stored_billing_cycle(value: Optional[str]) -> Optional[BillingCycle]:
    if not value:
        return None
    try:
        return BillingCycle(value)
    except ValueError:
        return None


def _plan_from_row(row: Row) -> Plan:
    """Build a Plan, filling defaults so callers never see null limits."""
    features = row.can_use_features if row.can_use_features is not None else []
    max_projects = row.max_projects if row.max_projects is not None else DEFAULT_MAX_PROJECTS
    return Plan(
        plan_id=row.plan_id,
        name=row.name,
        plan_type=PlanType(row.plan_type),
        can_use_features=list(features),
        max_projects=max_projects,
        is_active=bool(row.is_active),
        description=row.description,
        price=Decimal(str(row.price)) if row.price is not None else Decimal("0"),
        currency=row.currency,
        billing_cycle=_stored_billing_cycle(row.billing_cycle),
        sort_order=row.sort_order or 0,
        created_at=_as_utc(row.created_at),
    )


def _plan_or_none(row: Optional[Row]) -> Optional[Plan]:
    """Like _plan_from_row, but a row holding values outside the model is skipped."""
    if row is None:
        return None
    try:
        return _plan_from_row(row)
    except ValueError:
        logger.warning(
            "[plans] unreadable plan row skipped",
            extra={"plan_id": row.plan_id, "plan_type": row.plan_type, "error_code": "invalid_plan_row"},
        )
        return None


def _user_from_row(row: Row) -> User:
    return User(
        user_id=row.user_id,
        email=row.email or "",
        plan_type=row.plan_type or PlanType.STARTER.value,
        plan_id=row.plan_id,
        plan_expires_at=_as_utc(row.plan_expires_at),
        billing_cycle=row.billing_cycle,
        max_projects=row.max_projects,
        can_use_features=list(row.can_use_features or []),
        blocked=bool(row.blocked),
        created_at=_as_utc(row.created_at),
    )


def _coerce_plan_type(value: Any) -> PlanType:
    try:
        return PlanType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in PlanType)
        raise ValidationError(f"Invalid plan_type. Must be one of: {allowed}")


def _coerce_billing_cycle(value: Any) -> Optional[BillingCycle]:
    if value is None or value == "":
        return None
    try:
        return BillingCycle(value)
    except ValueError:
        raise ValidationError("Invalid billing_cycle. Must be monthly or yearly")


def _check_features(feature_ids: Iterable[str]) -> List[str]:
    feature_ids = list(feature_ids)
    unknown = unknown_feature_ids(feature_ids)
    if unknown:
        raise ValidationError(f"Unknown feature ids: {', '.join(unknown)}")
    # De-duplicate, keep first occurrence order
    return list(dict.fromkeys(feature_ids))


def _check_max_projects(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < UNLIMITED_PROJECTS:
        raise ValidationError("max_projects must be -1 (unlimited) or a non-negative integer")
    return value


# ---------------------------------------------------------------------------
# Seeding and administration
# ---------------------------------------------------------------------------

def seed_plans(now: Optional[datetime] = None) -> List[str]:
    """
    Seed default plans into database (idempotent).

    Creates Starter, Growth and Scale plans. Existing rows are left
    untouched so admin edits survive re-seeding.

    Returns:
        plan_ids that were inserted by this call
    """
    now = now or _utcnow()
    inserted = []

    with get_db_session() as session:
        for plan_id, config in DEFAULT_PLANS.items():
            existing = session.execute(
                select(plans.c.plan_id).where(plans.c.plan_id == plan_id)
            ).first()
            if existing:
                continue

            cycle = config["billing_cycle"]
            session.execute(
                insert(plans).values(
                    plan_id=plan_id,
                    name=config["name"],
                    plan_type=config["plan_type"].value,
                    description=config["description"],
                    price=config["price"],
                    currency=settings.LEDGER_CURRENCY,
                    billing_cycle=cycle.value if cycle else None,
                    can_use_features=list(config["can_use_features"]),
                    max_projects=config["max_projects"],
                    is_active=True,
                    sort_order=config["sort_order"],
                    created_at=now,
                    updated_at=now,
                )
            )
            inserted.append(plan_id)

    if inserted:
        logger.info("[plans] seeded default plans", extra={"event_type": "plans.seeded"})
    return inserted


def create_plan(
    *,
    name: str,
    plan_type: Any,
    can_use_features: Optional[Iterable[str]] = None,
    max_projects: int = DEFAULT_MAX_PROJECTS,
    plan_id: Optional[str] = None,
    description: Optional[str] = None,
    price: Decimal = Decimal("0"),
    currency: Optional[str] = None,
    billing_cycle: Any = None,
    is_active: bool = True,
    sort_order: int = 0,
    now: Optional[datetime] = None,
) -> Plan:
    """
    Create a plan definition.

    Raises:
        ValidationError: bad plan_type, billing_cycle, max_projects or
            feature ids that are not in the catalog
    """
    if not name or not name.strip():
        raise ValidationError("Plan name is required")
    ptype = _coerce_plan_type(plan_type)
    cycle = _coerce_billing_cycle(billing_cycle)
    features = _check_features(can_use_features or [])
    max_projects = _check_max_projects(max_projects)
    plan_id = plan_id or f"{ptype.value.lower()}-{uuid4().hex[:8]}"
    now = now or _utcnow()

    with get_db_session() as session:
        try:
            session.execute(
                insert(plans).values(
                    plan_id=plan_id,
                    name=name.strip(),
                    plan_type=ptype.value,
                    description=description or "",
                    price=price,
                    currency=currency or settings.LEDGER_CURRENCY,
                    billing_cycle=cycle.value if cycle else None,
                    can_use_features=features,
                    max_projects=max_projects,
                    is_active=is_active,
                    sort_order=sort_order,
                    created_at=now,
                    updated_at=now,
                )
            )
            session.flush()
        except IntegrityError as e:
            raise ValidationError(f"Plan {plan_id} already exists") from e

    logger.info("[plans] plan created", extra={"plan_id": plan_id, "plan_type": ptype.value})
    plan = get_plan(plan_id, active_only=False)
    return plan


def update_plan(plan_id: str, *, now: Optional[datetime] = None, **changes: Any) -> Plan:
    """
    Apply admin edits to a plan.

    User rows are not rewritten: resolution always reads the plans table,
    so edits take effect on the next resolution.
    """
    unknown_fields = set(changes) - _UPDATABLE_PLAN_FIELDS
    if unknown_fields:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown_fields))}")

    values: Dict[str, Any] = {}
    for field, value in changes.items():
        if field == "plan_type":
            values[field] = _coerce_plan_type(value).value
        elif field == "billing_cycle":
            cycle = _coerce_billing_cycle(value)
            values[field] = cycle.value if cycle else None
        elif field == "can_use_features":
            values[field] = _check_features(value or [])
        elif field == "max_projects":
            values[field] = _check_max_projects(value)
        elif field == "name":
            if not value or not str(value).strip():
                raise ValidationError("Plan name is required")
            values[field] = str(value).strip()
        else:
            values[field] = value

    with get_db_session() as session:
        existing = session.execute(
            select(plans.c.plan_id).where(plans.c.plan_id == plan_id)
        ).first()
        if not existing:
            raise NotFoundError(f"Plan {plan_id} not found")
        if values:
            values["updated_at"] = now or _utcnow()
            session.execute(update(plans).where(plans.c.plan_id == plan_id).values(**values))

    logger.info("[plans] plan updated", extra={"plan_id": plan_id})
    return get_plan(plan_id, active_only=False)


def get_plan(plan_id: str, *, active_only: bool = True) -> Optional[Plan]:
    """Get plan by ID (only active plans unless active_only=False)."""
    with _translate_db_errors("get_plan"), get_db_session() as session:
        row = _select_plan_by_id(session, plan_id, active_only=active_only)
        return _plan_or_none(row)


def get_plan_by_type(plan_type: Any) -> Optional[Plan]:
    """Earliest-created active plan of the given type."""
    ptype = _coerce_plan_type(plan_type)
    with _translate_db_errors("get_plan_by_type"), get_db_session() as session:
        row = _select_plan_by_type(session, ptype.value)
        return _plan_or_none(row)


def list_active_plans() -> List[Plan]:
    with _translate_db_errors("list_active_plans"), get_db_session() as session:
        rows = session.execute(
            select(plans)
            .where(plans.c.is_active == True)
            .order_by(plans.c.sort_order.asc(), plans.c.created_at.asc())
        ).all()
        return [plan for plan in map(_plan_or_none, rows) if plan is not None]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user(user_id: str) -> Optional[User]:
    with _translate_db_errors("get_user"), get_db_session() as session:
        row = session.execute(select(users).where(users.c.user_id == user_id)).first()
        return _user_from_row(row) if row else None


def get_or_create_user(user_id: str, email: Optional[str] = None, now: Optional[datetime] = None) -> User:
    """
    Fetch a user, creating a Starter user row when none exists.

    The row is created without a plan_id; resolution falls back to the
    active Starter plan by type.
    """
    existing = get_user(user_id)
    if existing:
        return existing

    now = now or _utcnow()
    try:
        with get_db_session() as session:
            session.execute(
                insert(users).values(
                    user_id=user_id,
                    email=email or "",
                    plan_type=PlanType.STARTER.value,
                    plan_id=None,
                    plan_expires_at=None,
                    billing_cycle=None,
                    blocked=False,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Concurrent creation won the race; read theirs
        logger.info("[plans] user created concurrently", extra={"user_id": user_id})
    else:
        logger.info("[plans] created missing user", extra={"user_id": user_id, "event_type": "user.created"})

    user = get_user(user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def count_user_projects(user_id: str) -> int:
    with _translate_db_errors("count_user_projects"), get_db_session() as session:
        count = session.execute(
            select(func.count()).select_from(audit_projects).where(audit_projects.c.user_id == user_id)
        ).scalar()
        return int(count or 0)


def assign_plan(
    user_id: str,
    plan_id: str,
    *,
    expires_at: Optional[datetime] = None,
    billing_cycle: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    """
    Assign a plan to a user, copying its limits onto the user row.

    Starter assignments never expire, so expires_at and billing_cycle are
    cleared for them.

    Raises:
        NotFoundError: plan missing or inactive
        UserNotFoundError: user missing
    """
    plan = get_plan(plan_id)
    if not plan:
        raise NotFoundError(f"Plan {plan_id} not found")

    if plan.plan_type == PlanType.STARTER:
        expires_at = None
        billing_cycle = None
    else:
        cycle = _coerce_billing_cycle(billing_cycle) or plan.billing_cycle
        billing_cycle = cycle.value if cycle else None

    now = now or _utcnow()
    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.user_id == user_id)
            .values(
                plan_type=plan.plan_type.value,
                plan_id=plan.plan_id,
                max_projects=plan.max_projects,
                can_use_features=list(plan.can_use_features),
                billing_cycle=billing_cycle,
                plan_expires_at=expires_at,
                updated_at=now,
            )
        )
        if not result.rowcount:
            raise UserNotFoundError(user_id)

    logger.info(
        "[plans] plan assigned",
        extra={"user_id": user_id, "plan_id": plan.plan_id, "plan_type": plan.plan_type.value},
    )
    return get_user(user_id)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _select_plan_by_id(session: Session, plan_id: str, *, active_only: bool = True) -> Optional[Row]:
    stmt = select(plans).where(plans.c.plan_id == plan_id)
    if active_only:
        stmt = stmt.where(plans.c.is_active == True)
    return session.execute(stmt).first()


def _select_plan_by_type(session: Session, plan_type: str) -> Optional[Row]:
    return session.execute(
        select(plans)
        .where(plans.c.plan_type == plan_type)
        .where(plans.c.is_active == True)
        .order_by(plans.c.created_at.asc(), plans.c.plan_id.asc())
        .limit(1)
    ).first()


def resolve_by_plan_id(session: Session, user: User) -> Optional[Row]:
    if not user.plan_id:
        return None
    return _select_plan_by_id(session, user.plan_id)


def resolve_by_plan_type(session: Session, user: User) -> Optional[Row]:
    if user.tier is None:
        logger.warning(
            "[plans] unknown stored plan_type",
            extra={"user_id": user.user_id, "plan_type": user.plan_type, "error_code": "invalid_plan_type"},
        )
        return None
    return _select_plan_by_type(session, user.tier.value)


def resolve_default_plan(session: Session, user: User) -> Optional[Row]:
    return _select_plan_by_type(session, PlanType.STARTER.value)


# Tried in order; first strategy returning a row wins
RESOLUTION_STRATEGIES: Tuple[Tuple[str, Callable[[Session, User], Optional[Row]]], ...] = (
    ("plan_id", resolve_by_plan_id),
    ("plan_type", resolve_by_plan_type),
    ("default", resolve_default_plan),
)


@dataclass(frozen=True)
class PlanResolution:
    plan: Plan
    source: str  # name of the strategy that produced the plan


def resolve_plan_for_user(user: User) -> PlanResolution:
    """Run the fallback chain for an already-loaded user."""
    with _translate_db_errors("resolve_plan"), get_db_session() as session:
        for source, strategy in RESOLUTION_STRATEGIES:
            plan = _plan_or_none(strategy(session, user))
            if plan is not None:
                if source != "plan_id" and user.plan_id:
                    logger.warning(
                        "[plans] plan_id did not resolve, used fallback",
                        extra={"user_id": user.user_id, "plan_id": user.plan_id, "event_type": source},
                    )
                return PlanResolution(plan=plan, source=source)

    logger.error(
        "[plans] no active default plan configured",
        extra={"user_id": user.user_id, "error_code": "no_plan_available"},
    )
    raise NoPlanAvailableError("No active Starter plan is configured")


def resolve_plan_with_source(
    user_id: str, *, create_missing: bool = False, email: Optional[str] = None
) -> PlanResolution:
    """
    Resolve the plan for a user and report which strategy produced it.

    Args:
        user_id: User to resolve
        create_missing: When True a missing user is created on Starter
            (a write). When False a missing user raises UserNotFoundError.
        email: Email stored on a newly created user

    Raises:
        UserNotFoundError, NoPlanAvailableError, DatabaseUnavailableError
    """
    user = get_user(user_id)
    if user is None:
        if not create_missing:
            raise UserNotFoundError(user_id)
        user = get_or_create_user(user_id, email=email)
    return resolve_plan_for_user(user)


def resolve_plan(user_id: str, *, create_missing: bool = False, email: Optional[str] = None) -> Plan:
    """Resolve the single Plan that determines a user's entitlements."""
    return resolve_plan_with_source(user_id, create_missing=create_missing, email=email).plan


def resolve_starter_plan() -> Plan:
    """
    Load the active default (Starter) plan.

    Raises:
        NoPlanAvailableError: configuration error, no active Starter plan
    """
    with _translate_db_errors("resolve_starter_plan"), get_db_session() as session:
        plan = _plan_or_none(_select_plan_by_type(session, PlanType.STARTER.value))
    if plan is None:
        raise NoPlanAvailableError("No active Starter plan is configured")
    return plan
