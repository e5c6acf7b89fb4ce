"""
Run the plan expiry job from the command line.

Usage:
    python -m webaudit.workers.expire_plans [--dry-run] [--now 2026-01-31T00:00:00+00:00]

--dry-run lists the users that would be downgraded without writing.
"""
from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

from webaudit.core.config import settings
from webaudit.core.logging import configure_logging, request_context
from webaudit.features.billing.expiry_job import run_expiry_job, select_expired_users


def _parse_now(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def expire_plans(*, dry_run: bool = False, now: Optional[datetime] = None) -> Dict:
    now = now or datetime.now(timezone.utc)
    if dry_run:
        candidates: List[Dict] = [
            {
                "user_id": u.user_id,
                "plan_type": u.plan_type,
                "plan_expires_at": u.plan_expires_at.isoformat() if u.plan_expires_at else None,
            }
            for u in select_expired_users(now)
        ]
        return {"dry_run": True, "timestamp": now.isoformat(), "candidates": candidates, "count": len(candidates)}

    report = run_expiry_job(now)
    payload = report.to_dict()
    payload["dry_run"] = False
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Downgrade users whose paid plan has expired.")
    parser.add_argument("--dry-run", action="store_true", help="List expired users without writing.")
    parser.add_argument("--now", default=None, help="ISO timestamp to evaluate expiry against (default: now, UTC).")
    args = parser.parse_args(argv)

    with request_context(prefix="job") as run_id:
        report = expire_plans(dry_run=args.dry_run, now=_parse_now(args.now))
    report["run_id"] = run_id
    print(json.dumps(report, indent=2, default=str))
    return 1 if report.get("failed") else 0


if __name__ == "__main__":
    configure_logging(settings.ENV)
    raise SystemExit(main())
