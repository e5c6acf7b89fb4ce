"""
Feature gate API.

User identity comes from get_current_user_id (Supabase JWT or X-User-Id).
None of these endpoints create users: an unknown user is denied.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from webaudit.core.auth import get_current_user_id
from webaudit.features.catalog.features import FEATURE_CATEGORIES, FEATURES
from webaudit.features.entitlements.cache import feature_cache
from webaudit.features.entitlements.service import (
    check_feature_access,
    check_project_limit,
    has_feature_access,
    validate_crawl_request,
)

logger = logging.getLogger("webaudit.api.features")

router = APIRouter(prefix="/api", tags=["features"])


class FeatureItem(BaseModel):
    id: str
    name: str
    description: str
    category: str
    categoryName: str
    isCore: bool


class FeatureAccessRequest(BaseModel):
    featureId: Optional[str] = None


class FeatureAccessResponse(BaseModel):
    hasAccess: bool
    planType: Optional[str] = None
    allowedFeatures: List[str] = Field(default_factory=list)
    maxProjects: Optional[int] = None
    error: Optional[str] = None


class CachedAccessResponse(BaseModel):
    featureId: str
    hasAccess: bool


class ProjectLimitResponse(BaseModel):
    canCreate: bool
    currentCount: int
    maxProjects: int
    error: Optional[str] = None


class CrawlValidationRequest(BaseModel):
    features: List[str] = Field(default_factory=list)


class CrawlValidationResponse(BaseModel):
    isValid: bool
    allowedFeatures: List[str]
    deniedFeatures: List[str]
    errors: List[str]


@router.get("/features", response_model=List[FeatureItem])
def list_features():
    return [
        FeatureItem(
            id=f.id,
            name=f.name,
            description=f.description,
            category=f.category.value,
            categoryName=FEATURE_CATEGORIES[f.category],
            isCore=f.is_core,
        )
        for f in FEATURES
    ]


@router.post("/check-feature-access", response_model=FeatureAccessResponse)
def check_feature_access_endpoint(body: FeatureAccessRequest, user_id: str = Depends(get_current_user_id)):
    result = check_feature_access(user_id, body.featureId)
    return FeatureAccessResponse(
        hasAccess=result.has_access,
        planType=result.plan_type,
        allowedFeatures=result.allowed_features,
        maxProjects=result.max_projects,
        error=result.error,
    )


@router.get("/feature-access/{feature_id}", response_model=CachedAccessResponse)
def cached_feature_access_endpoint(feature_id: str, user_id: str = Depends(get_current_user_id)):
    """Boolean check served from the short-TTL cache."""
    return CachedAccessResponse(
        featureId=feature_id,
        hasAccess=has_feature_access(user_id, feature_id, cache=feature_cache),
    )


@router.get("/project-limit", response_model=ProjectLimitResponse)
def project_limit(user_id: str = Depends(get_current_user_id)):
    result = check_project_limit(user_id)
    return ProjectLimitResponse(
        canCreate=result.can_create,
        currentCount=result.current_count,
        maxProjects=result.max_projects,
        error=result.error,
    )


@router.post("/validate-crawl", response_model=CrawlValidationResponse)
def validate_crawl(body: CrawlValidationRequest, user_id: str = Depends(get_current_user_id)):
    result = validate_crawl_request(user_id, body.features)
    if not result.is_valid:
        logger.info(
            "[features] crawl request rejected",
            extra={"user_id": user_id, "feature_id": ",".join(result.denied_features)},
        )
    return CrawlValidationResponse(
        isValid=result.is_valid,
        allowedFeatures=result.allowed_features,
        deniedFeatures=result.denied_features,
        errors=result.errors,
    )
