"""
Admin and scheduler authentication.

- X-Admin-Key: shared secret for plan administration endpoints.
- x-cron-secret: shared secret for the scheduled expiry trigger. When
  CRON_SECRET is not configured the trigger is open (local development).
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import Request

from webaudit.core.config import settings
from webaudit.core.errors import AppError, PermissionError


logger = logging.getLogger("webaudit.admin_auth")


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


@dataclass
class AdminActor:
    """Represents an authenticated admin or scheduler caller."""
    actor_type: Literal["admin_key", "cron", "anonymous_cron"]
    actor_id: str


def _key_fingerprint(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def _matches(provided: Optional[str], expected: str) -> bool:
    return bool(provided) and hmac.compare_digest(provided.strip(), expected)


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency guarding admin endpoints."""
    expected = settings.ADMIN_KEY
    if not expected:
        logger.warning("[admin_auth] ADMIN_KEY not configured, rejecting admin request")
        raise PermissionError("Admin access is not configured")

    provided = request.headers.get("X-Admin-Key")
    if not _matches(provided, expected):
        logger.warning(
            "[admin_auth] invalid admin key attempt",
            extra={"path": request.url.path},
        )
        raise PermissionError("Invalid or missing X-Admin-Key header")

    return AdminActor(actor_type="admin_key", actor_id=f"admin:{_key_fingerprint(expected)}")


def require_cron_secret(request: Request) -> AdminActor:
    """FastAPI dependency guarding the scheduled expiry trigger."""
    expected = settings.CRON_SECRET
    if not expected:
        return AdminActor(actor_type="anonymous_cron", actor_id="cron:unverified")

    provided = request.headers.get("x-cron-secret")
    if not _matches(provided, expected):
        logger.warning("[admin_auth] rejected cron trigger", extra={"path": request.url.path})
        raise UnauthorizedError("Unauthorized")

    return AdminActor(actor_type="cron", actor_id=f"cron:{_key_fingerprint(expected)}")
