"""
webaudit/models/plan.py

Plan model: a named bundle of entitlements (feature list + project quota).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


UNLIMITED_PROJECTS = -1


class PlanType(str, Enum):
    """Plan tiers. Only Starter never expires."""
    STARTER = "Starter"
    GROWTH = "Growth"
    SCALE = "Scale"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Plan(BaseModel):
    """
    Plan represents a capability tier.

    Resolved plans always carry a concrete feature list and project cap;
    the store fills in defaults before handing a Plan to callers.

    max_projects:
    - -1: unlimited
    - N >= 0: hard cap, a user may own at most N projects
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    plan_type: PlanType
    can_use_features: List[str] = Field(default_factory=list)
    max_projects: int = 1
    is_active: bool = True
    description: Optional[str] = None
    price: Decimal = Decimal("0")
    currency: str = "INR"
    billing_cycle: Optional[BillingCycle] = None
    sort_order: int = 0
    created_at: datetime

    @property
    def is_unlimited(self) -> bool:
        return self.max_projects == UNLIMITED_PROJECTS
