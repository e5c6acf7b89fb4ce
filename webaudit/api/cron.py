"""
Scheduled trigger for the plan expiry job.

The schedule itself lives in the deployment (e.g. a daily cron hitting this
endpoint). Guarded by x-cron-secret when CRON_SECRET is configured.
"""

import logging

from fastapi import APIRouter, Depends

from webaudit.core.admin_auth import AdminActor, require_cron_secret
from webaudit.features.billing.expiry_job import run_expiry_job

logger = logging.getLogger("webaudit.api.cron")

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _run(actor: AdminActor) -> dict:
    logger.info("[cron] expiry job triggered", extra={"event_type": actor.actor_type})
    result = run_expiry_job()
    payload = result.to_dict()
    payload["success"] = True
    payload["message"] = f"Processed {result.processed_count} users with expired plans"
    return payload


@router.get("/check-expired-plans")
def check_expired_plans(actor: AdminActor = Depends(require_cron_secret)):
    return _run(actor)


@router.post("/check-expired-plans")
def check_expired_plans_post(actor: AdminActor = Depends(require_cron_secret)):
    return _run(actor)
