from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from webaudit.models.plan import PlanType


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
    # Stored value as-is; legacy rows may hold tiers outside PlanType
    plan_type: str = PlanType.STARTER.value
    plan_id: Optional[str] = None
    plan_expires_at: Optional[datetime] = None
    billing_cycle: Optional[str] = None
    max_projects: Optional[int] = None
    can_use_features: List[str] = Field(default_factory=list)
    blocked: bool = False
    created_at: datetime

    @field_validator("plan_type", mode="before")
    @classmethod
    def _enum_to_value(cls, v):
        return v.value if isinstance(v, Enum) else v

    @property
    def tier(self) -> Optional[PlanType]:
        """The PlanType for plan_type, or None when the stored value is unknown."""
        try:
            return PlanType(self.plan_type)
        except ValueError:
            return None

    def is_expired(self, now: datetime) -> bool:
        """Paid plan whose expiry is strictly in the past. Starter never expires."""
        if self.plan_type == PlanType.STARTER or self.plan_expires_at is None:
            return False
        return self.plan_expires_at < now
