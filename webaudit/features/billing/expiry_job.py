"""
Plan expiry enforcement.

Downgrades users whose paid plan expired to the Starter plan. Runs from the
cron trigger, the manual HTTP trigger or the CLI worker; the job itself
defines no schedule.

Each user is handled in two separate steps with separate outcomes:
1. the plan downgrade (authoritative, own transaction)
2. a zero-amount ledger entry (best effort, never rolls back step 1)
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, insert
from sqlalchemy.engine import Row
from sqlalchemy.exc import SQLAlchemyError

from webaudit.core.config import settings
from webaudit.core.database import get_db_session, users, job_runs
from webaudit.core.errors import AppError, DatabaseUnavailableError, LedgerWriteError, UserNotFoundError
from webaudit.core.logging import log_event
from webaudit.features.billing.ledger import append_payment
from webaudit.features.entitlements.cache import FeatureAccessCache, feature_cache
from webaudit.features.plans.service import (
    _translate_db_errors,
    _user_from_row,
    get_user,
    resolve_starter_plan,
)
from webaudit.models.payment import PaymentRecord
from webaudit.models.plan import Plan, PlanType
from webaudit.models.user import User

logger = logging.getLogger("webaudit.expiry")

JOB_NAME = "system.plan_expiry"
CRON_METHOD = "cron_downgrade"
MANUAL_METHOD = "system_downgrade"


@dataclass
class ExpiryJobResult:
    timestamp: str
    processed: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    ledger_failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["processed_count"] = self.processed_count
        data["error_count"] = self.failed_count
        data["ledger_failure_count"] = len(self.ledger_failures)
        return data


@dataclass(frozen=True)
class PlanExpiryStatus:
    user_id: str
    plan_type: str
    is_expired: bool
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    billing_cycle: Optional[str] = None
    downgraded: bool = False
    previous_plan: Optional[str] = None
    ledger_written: Optional[bool] = None
    message: str = ""


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _expired_rows(now: datetime) -> List[Row]:
    with _translate_db_errors("select_expired_users"), get_db_session() as session:
        return list(
            session.execute(
                select(users)
                .where(users.c.plan_type != PlanType.STARTER.value)
                .where(users.c.plan_expires_at.isnot(None))
                .where(users.c.plan_expires_at < now)
                .order_by(users.c.plan_expires_at.asc(), users.c.user_id.asc())
            ).all()
        )


def select_expired_users(now: datetime) -> List[User]:
    """Paid users whose expiry is set and strictly in the past."""
    return [_user_from_row(row) for row in _expired_rows(_normalize_now(now))]


def downgrade_user(user: User, starter: Plan, now: datetime) -> None:
    """
    Move a user onto the Starter plan in its own transaction.

    Raises:
        AppError: the row was not updated (deleted or already Starter)
        SQLAlchemyError: the update failed
    """
    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.user_id == user.user_id)
            .where(users.c.plan_type != PlanType.STARTER.value)
            .values(
                plan_type=PlanType.STARTER.value,
                plan_id=starter.plan_id,
                max_projects=starter.max_projects,
                can_use_features=list(starter.can_use_features),
                billing_cycle=None,
                plan_expires_at=None,
                updated_at=now,
            )
        )
        if not result.rowcount:
            raise AppError(f"User {user.user_id} changed before downgrade", code="downgrade_skipped")


def record_downgrade(user: User, starter: Plan, now: datetime, method: str) -> int:
    """
    Append the zero-amount ledger entry for a downgrade.

    Raises:
        LedgerWriteError
    """
    expired_on = user.plan_expires_at.isoformat() if user.plan_expires_at else "unknown date"
    suffix = " (processed by cron)" if method == CRON_METHOD else ""
    entry = PaymentRecord(
        user_id=user.user_id,
        plan_id=starter.plan_id,
        transaction_ref=f"{method}_{int(now.timestamp() * 1000)}_{user.user_id}",
        amount=0,
        currency=settings.LEDGER_CURRENCY,
        plan_name=starter.name,
        plan_type=PlanType.STARTER.value,
        billing_cycle="none",
        max_projects=starter.max_projects,
        can_use_features=list(starter.can_use_features),
        payment_status="completed",
        payment_method=method,
        payment_date=now,
        expires_at=None,
        notes=f"Automatic downgrade due to plan expiry on {expired_on}{suffix}",
    )
    return append_payment(entry)


def _record_job_run(started_at: datetime, status: str, stats: Dict[str, Any]) -> None:
    try:
        with get_db_session() as session:
            session.execute(
                insert(job_runs).values(
                    job_name=JOB_NAME,
                    started_at=started_at,
                    finished_at=datetime.now(timezone.utc),
                    status=status,
                    stats_json=json.dumps(stats),
                )
            )
    except SQLAlchemyError as e:
        logger.warning("[expiry] failed to record job run", extra={"error_code": "job_run_write_failed", "status": status})
        logger.debug(f"[expiry] job run write error: {e}")


def run_expiry_job(
    now: Optional[datetime] = None,
    *,
    cache: Optional[FeatureAccessCache] = feature_cache,
) -> ExpiryJobResult:
    """
    Downgrade every user whose paid plan has expired.

    One user's failure never aborts the batch. Running twice in a row is a
    no-op the second time because downgraded users are Starter.

    Raises:
        NoPlanAvailableError: there are expired users but no active Starter
            plan to move them to (nothing is modified)
        DatabaseUnavailableError: the expired-user scan could not run
    """
    now = _normalize_now(now)
    result = ExpiryJobResult(timestamp=now.isoformat())

    try:
        expired = _expired_rows(now)
    except DatabaseUnavailableError as e:
        _record_job_run(now, "failed", {"candidates": None, "error": e.code})
        raise
    if not expired:
        logger.info("[expiry] no users with expired plans")
        _record_job_run(now, "success", {"candidates": 0, "processed": 0, "failed": 0})
        return result

    try:
        starter = resolve_starter_plan()
    except AppError as e:
        _record_job_run(now, "failed", {"candidates": len(expired), "error": e.code})
        raise

    for row in expired:
        try:
            user = _user_from_row(row)
            downgrade_user(user, starter, now)
        except Exception as e:
            logger.error(
                "[expiry] downgrade failed",
                exc_info=True,
                extra={"user_id": row.user_id, "plan_type": row.plan_type, "error_code": "downgrade_failed"},
            )
            result.failed.append({"user_id": row.user_id, "email": row.email or "", "error": str(e)})
            continue

        if cache is not None:
            cache.invalidate_user(user.user_id)

        ledger_written = True
        try:
            record_downgrade(user, starter, now, CRON_METHOD)
        except LedgerWriteError as e:
            ledger_written = False
            logger.warning(
                "[expiry] ledger write failed, downgrade kept",
                extra={"user_id": user.user_id, "error_code": e.code},
            )
            result.ledger_failures.append({"user_id": user.user_id, "error": e.message})

        result.processed.append({
            "user_id": user.user_id,
            "email": user.email,
            "previous_plan": user.plan_type,
            "new_plan": PlanType.STARTER.value,
            "expired_at": user.plan_expires_at.isoformat() if user.plan_expires_at else None,
            "ledger_written": ledger_written,
            "updated_at": now.isoformat(),
        })

    stats = {
        "candidates": len(expired),
        "processed": result.processed_count,
        "failed": result.failed_count,
        "ledger_failures": len(result.ledger_failures),
    }
    _record_job_run(now, "success" if not result.failed else "partial", stats)
    log_event(
        "info",
        f"[expiry] processed {result.processed_count} users with expired plans",
        event_type=JOB_NAME,
        status="partial" if result.failed else "success",
        extra={"ledger_failures": len(result.ledger_failures)},
    )
    return result


def _days_until(expires_at: datetime, now: datetime) -> int:
    return math.ceil((expires_at - now).total_seconds() / 86400)


def check_user_plan_expiry(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    apply: bool = False,
    cache: Optional[FeatureAccessCache] = feature_cache,
) -> PlanExpiryStatus:
    """
    Report (and with apply=True, enforce) plan expiry for one user.

    Raises:
        UserNotFoundError: no user row
        NoPlanAvailableError: expired and no Starter plan to downgrade to
    """
    now = _normalize_now(now)
    user = get_user(user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    if user.plan_type == PlanType.STARTER:
        return PlanExpiryStatus(
            user_id=user_id,
            plan_type=user.plan_type,
            is_expired=False,
            message="User is on Starter plan (no expiry)",
        )

    expires_at = user.plan_expires_at
    if not user.is_expired(now):
        return PlanExpiryStatus(
            user_id=user_id,
            plan_type=user.plan_type,
            is_expired=False,
            expires_at=expires_at,
            days_until_expiry=_days_until(expires_at, now) if expires_at else None,
            billing_cycle=user.billing_cycle,
            message="Plan is still active",
        )

    if not apply:
        return PlanExpiryStatus(
            user_id=user_id,
            plan_type=user.plan_type,
            is_expired=True,
            expires_at=expires_at,
            days_until_expiry=_days_until(expires_at, now),
            billing_cycle=user.billing_cycle,
            message="Plan has expired",
        )

    starter = resolve_starter_plan()
    downgrade_user(user, starter, now)
    if cache is not None:
        cache.invalidate_user(user_id)

    ledger_written = True
    try:
        record_downgrade(user, starter, now, MANUAL_METHOD)
    except LedgerWriteError as e:
        ledger_written = False
        logger.warning("[expiry] ledger write failed, downgrade kept", extra={"user_id": user_id, "error_code": e.code})

    logger.info(
        "[expiry] user downgraded",
        extra={"user_id": user_id, "plan_type": PlanType.STARTER.value, "event_type": MANUAL_METHOD},
    )
    return PlanExpiryStatus(
        user_id=user_id,
        plan_type=PlanType.STARTER.value,
        is_expired=True,
        expires_at=expires_at,
        downgraded=True,
        previous_plan=user.plan_type,
        ledger_written=ledger_written,
        message="Plan has expired and user has been downgraded to Starter plan",
    )
