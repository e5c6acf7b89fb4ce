from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from webaudit.core.auth import get_current_user_id
from webaudit.features.billing.ledger import list_payments

router = APIRouter(prefix="/api", tags=["payments"])


class PaymentItem(BaseModel):
    id: Optional[int] = None
    transactionRef: str
    amount: Decimal
    currency: str
    planName: Optional[str] = None
    planType: Optional[str] = None
    billingCycle: Optional[str] = None
    paymentStatus: str
    paymentMethod: str
    paymentDate: datetime
    expiresAt: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentItem]
    count: int


@router.get("/payment-history", response_model=PaymentHistoryResponse)
def payment_history(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=200),
):
    """Caller's ledger entries, newest first."""
    items = [
        PaymentItem(
            id=p.id,
            transactionRef=p.transaction_ref,
            amount=p.amount,
            currency=p.currency,
            planName=p.plan_name,
            planType=p.plan_type,
            billingCycle=p.billing_cycle,
            paymentStatus=p.payment_status,
            paymentMethod=p.payment_method,
            paymentDate=p.payment_date,
            expiresAt=p.expires_at,
            notes=p.notes,
        )
        for p in list_payments(user_id, limit=limit)
    ]
    return PaymentHistoryResponse(payments=items, count=len(items))
