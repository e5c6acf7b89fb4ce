"""
Payments ledger.

Append-only: rows are inserted once and never updated. Each write runs in
its own transaction so it can never roll back the plan change it records.
"""
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import insert, select, desc
from sqlalchemy.exc import SQLAlchemyError

from webaudit.core.database import get_db_session, payments
from webaudit.core.errors import LedgerWriteError
from webaudit.models.payment import PaymentRecord

logger = logging.getLogger("webaudit.ledger")


def append_payment(entry: PaymentRecord) -> int:
    """
    Insert a ledger row and return its id.

    Raises:
        LedgerWriteError: the insert failed (duplicate transaction_ref,
            connectivity, constraint violations)
    """
    try:
        with get_db_session() as session:
            result = session.execute(
                insert(payments).values(
                    user_id=entry.user_id,
                    plan_id=entry.plan_id,
                    transaction_ref=entry.transaction_ref,
                    amount=entry.amount,
                    currency=entry.currency,
                    plan_name=entry.plan_name,
                    plan_type=entry.plan_type,
                    billing_cycle=entry.billing_cycle,
                    max_projects=entry.max_projects,
                    can_use_features=list(entry.can_use_features),
                    payment_status=entry.payment_status,
                    payment_method=entry.payment_method,
                    payment_date=entry.payment_date,
                    expires_at=entry.expires_at,
                    notes=entry.notes,
                )
            )
            payment_id = result.inserted_primary_key[0]
    except SQLAlchemyError as e:
        raise LedgerWriteError(f"Failed to write ledger entry {entry.transaction_ref}: {e}") from e

    logger.info(
        "[ledger] entry appended",
        extra={"user_id": entry.user_id, "plan_id": entry.plan_id, "event_type": entry.payment_method},
    )
    return payment_id


def list_payments(user_id: str, limit: int = 50) -> List[PaymentRecord]:
    """Newest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(payments)
            .where(payments.c.user_id == user_id)
            .order_by(desc(payments.c.payment_date), desc(payments.c.id))
            .limit(limit)
        ).all()

    return [
        PaymentRecord(
            id=row.id,
            user_id=row.user_id,
            plan_id=row.plan_id,
            transaction_ref=row.transaction_ref,
            amount=row.amount,
            currency=row.currency,
            plan_name=row.plan_name,
            plan_type=row.plan_type,
            billing_cycle=row.billing_cycle,
            max_projects=row.max_projects,
            can_use_features=list(row.can_use_features or []),
            payment_status=row.payment_status,
            payment_method=row.payment_method,
            payment_date=row.payment_date,
            expires_at=row.expires_at,
            notes=row.notes,
        )
        for row in rows
    ]
