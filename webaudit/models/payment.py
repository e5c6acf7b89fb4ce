"""
webaudit/models/payment.py

Ledger entry for the payments table. Append-only: rows are never updated,
status corrections are recorded as new rows.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    plan_id: Optional[str] = None
    transaction_ref: str
    amount: Decimal
    currency: str
    plan_name: Optional[str] = None
    plan_type: Optional[str] = None
    billing_cycle: Optional[str] = None
    max_projects: Optional[int] = None
    can_use_features: List[str] = Field(default_factory=list)
    payment_status: str = "completed"
    payment_method: str
    payment_date: datetime
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
