"""
Tests for plan, user and feature models.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from webaudit.models.plan import Plan, PlanType, UNLIMITED_PROJECTS
from webaudit.models.user import User

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_plan_is_frozen():
    plan = Plan(plan_id="starter", name="Starter", plan_type=PlanType.STARTER, created_at=NOW)
    with pytest.raises(PydanticValidationError):
        plan.max_projects = 5


def test_plan_defaults():
    plan = Plan(plan_id="starter", name="Starter", plan_type="Starter", created_at=NOW)
    assert plan.can_use_features == []
    assert plan.max_projects == 1
    assert plan.is_unlimited is False


def test_unlimited_plan():
    plan = Plan(plan_id="scale", name="Scale", plan_type=PlanType.SCALE, max_projects=UNLIMITED_PROJECTS, created_at=NOW)
    assert plan.is_unlimited is True


def test_plan_type_rejects_unknown():
    with pytest.raises(PydanticValidationError):
        Plan(plan_id="x", name="X", plan_type="Enterprise", created_at=NOW)


def test_starter_user_never_expires():
    user = User(user_id="u1", plan_type=PlanType.STARTER, plan_expires_at=NOW - timedelta(days=10), created_at=NOW)
    assert user.is_expired(NOW) is False


def test_paid_user_expiry_is_strict():
    user = User(user_id="u1", plan_type=PlanType.GROWTH, plan_expires_at=NOW, created_at=NOW)
    assert user.is_expired(NOW) is False
    assert user.is_expired(NOW + timedelta(seconds=1)) is True


def test_paid_user_without_expiry_is_not_expired():
    user = User(user_id="u1", plan_type=PlanType.SCALE, created_at=NOW)
    assert user.is_expired(NOW) is False
