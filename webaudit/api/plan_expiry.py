"""
Plan expiry API.

GET reports the caller's expiry status. POST downgrades the caller to
Starter when the paid plan has expired.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from webaudit.core.auth import get_current_user_id
from webaudit.features.billing.expiry_job import PlanExpiryStatus, check_user_plan_expiry

router = APIRouter(prefix="/api", tags=["plan-expiry"])


class PlanExpiryResponse(BaseModel):
    isExpired: bool
    planType: str
    expiresAt: Optional[datetime] = None
    daysUntilExpiry: Optional[int] = None
    billingCycle: Optional[str] = None
    downgraded: bool = False
    previousPlan: Optional[str] = None
    message: str


def _to_response(status: PlanExpiryStatus) -> PlanExpiryResponse:
    return PlanExpiryResponse(
        isExpired=status.is_expired,
        planType=status.plan_type,
        expiresAt=status.expires_at,
        daysUntilExpiry=status.days_until_expiry,
        billingCycle=status.billing_cycle,
        downgraded=status.downgraded,
        previousPlan=status.previous_plan,
        message=status.message,
    )


@router.get("/check-plan-expiry", response_model=PlanExpiryResponse)
def plan_expiry_status(user_id: str = Depends(get_current_user_id)):
    return _to_response(check_user_plan_expiry(user_id))


@router.post("/check-plan-expiry", response_model=PlanExpiryResponse)
def enforce_plan_expiry(user_id: str = Depends(get_current_user_id)):
    return _to_response(check_user_plan_expiry(user_id, apply=True))
