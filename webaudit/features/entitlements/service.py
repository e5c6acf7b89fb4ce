"""
webaudit/features/entitlements/service.py

Feature gate: turns a resolved Plan into access decisions.

Handles:
- Pure checks over a resolved plan (has_feature, can_create_project)
- User-level checks that resolve the plan first (feature access, project
  limit, crawl access, crawl request validation)
- Deny on error: an unresolvable plan never yields access
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from webaudit.core.errors import AppError
from webaudit.features.catalog.features import feature_display_name
from webaudit.features.entitlements.cache import FeatureAccessCache, cached_feature_access
from webaudit.features.plans.service import count_user_projects, resolve_plan
from webaudit.models.plan import Plan, UNLIMITED_PROJECTS


logger = logging.getLogger(__name__)

NO_PLAN_MESSAGE = "No plan found for user"


class CrawlType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


CRAWL_FEATURES = {
    CrawlType.SINGLE: "single_page_crawl",
    CrawlType.MULTIPLE: "full_site_crawl",
}


@dataclass(frozen=True)
class FeatureAccessResult:
    has_access: bool
    plan_type: Optional[str]
    allowed_features: List[str] = field(default_factory=list)
    max_projects: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ProjectLimitResult:
    can_create: bool
    current_count: int
    max_projects: int
    error: Optional[str] = None


@dataclass(frozen=True)
class CrawlValidationResult:
    is_valid: bool
    allowed_features: List[str]
    denied_features: List[str]
    errors: List[str]


def has_feature(plan: Optional[Plan], feature_id: str) -> bool:
    """Exact membership in the plan's feature list. No plan means no access."""
    if plan is None:
        return False
    return feature_id in plan.can_use_features


def can_create_project(plan: Optional[Plan], current_project_count: int) -> bool:
    """Unlimited (-1) or strictly below the cap."""
    if plan is None:
        return False
    if plan.max_projects == UNLIMITED_PROJECTS:
        return True
    return current_project_count < plan.max_projects


def allowed_features(plan: Optional[Plan]) -> List[str]:
    return list(plan.can_use_features) if plan is not None else []


def _try_resolve(user_id: str) -> Optional[Plan]:
    try:
        return resolve_plan(user_id)
    except (AppError, SQLAlchemyError, ValueError) as e:
        logger.warning(
            "[entitlements] plan resolution failed, denying",
            extra={"user_id": user_id, "error_code": getattr(e, "code", type(e).__name__)},
        )
        return None


def check_feature_access(user_id: str, feature_id: Optional[str] = None) -> FeatureAccessResult:
    """
    Resolve the user's plan and check one feature.

    Without a feature_id the user's full plan info is returned with
    has_access=True (the user has a plan).
    """
    plan = _try_resolve(user_id)
    if plan is None:
        return FeatureAccessResult(has_access=False, plan_type=None, error=NO_PLAN_MESSAGE)

    plan_type = plan.plan_type.value
    if not feature_id:
        return FeatureAccessResult(
            has_access=True,
            plan_type=plan_type,
            allowed_features=allowed_features(plan),
            max_projects=plan.max_projects,
        )

    access = has_feature(plan, feature_id)
    if not access:
        logger.info(
            "[entitlements] feature denied",
            extra={"user_id": user_id, "feature_id": feature_id, "plan_type": plan_type},
        )
    return FeatureAccessResult(
        has_access=access,
        plan_type=plan_type,
        allowed_features=allowed_features(plan),
        max_projects=plan.max_projects,
        error=None if access else f"Feature '{feature_id}' not available in {plan_type} plan",
    )


def _resolve_access(user_id: str, feature_id: str) -> Optional[bool]:
    plan = _try_resolve(user_id)
    if plan is None:
        return None
    return has_feature(plan, feature_id)


def has_feature_access(user_id: str, feature_id: str, cache: Optional[FeatureAccessCache] = None) -> bool:
    """Boolean feature check, served from the cache when fresh."""
    return cached_feature_access(cache, user_id, feature_id, _resolve_access)


def check_project_limit(user_id: str) -> ProjectLimitResult:
    plan = _try_resolve(user_id)
    if plan is None:
        return ProjectLimitResult(can_create=False, current_count=0, max_projects=0, error=NO_PLAN_MESSAGE)

    try:
        current = count_user_projects(user_id)
    except (AppError, SQLAlchemyError):
        logger.warning("[entitlements] project count failed, denying", extra={"user_id": user_id})
        return ProjectLimitResult(
            can_create=False,
            current_count=0,
            max_projects=plan.max_projects,
            error="Failed to get project count",
        )

    allowed = can_create_project(plan, current)
    error = None
    if not allowed:
        noun = "project" if plan.max_projects == 1 else "projects"
        error = f"Project limit reached. You can create {plan.max_projects} {noun} with your current plan."
    return ProjectLimitResult(
        can_create=allowed,
        current_count=current,
        max_projects=plan.max_projects,
        error=error,
    )


def check_crawl_access(user_id: str, crawl_type: CrawlType) -> FeatureAccessResult:
    return check_feature_access(user_id, CRAWL_FEATURES[CrawlType(crawl_type)])


def validate_crawl_request(user_id: str, requested_features: Iterable[str]) -> CrawlValidationResult:
    """Split requested features into allowed and denied for the user's plan."""
    requested = list(requested_features)
    plan = _try_resolve(user_id)
    if plan is None:
        return CrawlValidationResult(
            is_valid=False,
            allowed_features=[],
            denied_features=requested,
            errors=[NO_PLAN_MESSAGE],
        )

    allowed, denied, errors = [], [], []
    for feature_id in requested:
        if has_feature(plan, feature_id):
            allowed.append(feature_id)
        else:
            denied.append(feature_id)
            errors.append(
                f"Feature '{feature_display_name(feature_id)}' is not available in your {plan.plan_type.value} plan"
            )

    return CrawlValidationResult(
        is_valid=not denied,
        allowed_features=allowed,
        denied_features=denied,
        errors=errors,
    )
